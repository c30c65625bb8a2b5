from .base import BaseExecutor
from .builtins import PromptExecutor, MediaExecutor, EndExecutor
from .factory import ExecutorFactory, executor_factory

__all__ = [
    'BaseExecutor', 'PromptExecutor', 'MediaExecutor', 'EndExecutor',
    'ExecutorFactory', 'executor_factory',
]
