"""
Flow graph: the chatbot script data model, its editor and its lint
"""

from .schema import (
    END, Flow, Step, StepBase, PromptStep, MediaStep, EndStep, Route, Position,
    StepType, ValidationKind, CycleDetectionResult, ValidationReport,
)
from .errors import GraphEditError, StepNotFoundError, DanglingReferenceError
from .editor import GraphEditor, CARD_DEFAULTS
from .graph_builder import GraphBuilder
from .validator import validate_flow
from .toposort import kahn_toposort
from .preprocess import load_json, save_json, normalize_raw_to_flow
from .builder import build_nx_graph

__all__ = [
    'END', 'Flow', 'Step', 'StepBase', 'PromptStep', 'MediaStep', 'EndStep', 'Route', 'Position',
    'StepType', 'ValidationKind', 'CycleDetectionResult', 'ValidationReport',
    'GraphEditError', 'StepNotFoundError', 'DanglingReferenceError',
    'GraphEditor', 'CARD_DEFAULTS',
    'GraphBuilder',
    'validate_flow',
    'kahn_toposort',
    'load_json', 'save_json', 'normalize_raw_to_flow',
    'build_nx_graph',
]
