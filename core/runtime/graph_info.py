from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional
import networkx as nx

from flowgraph.graph_builder import GraphBuilder
from flowgraph.schema import Flow, ValidationReport


@dataclass
class FlowRuntime:
    flow: Flow
    graph: nx.DiGraph
    report: ValidationReport

    @property
    def start_node(self) -> Optional[str]:
        return self.report.entry

    @property
    def end_nodes(self) -> List[str]:
        return self.report.end_nodes


def load_and_validate(json_path: str, strict: bool = False) -> FlowRuntime:
    """Load a flow from JSON, build its graph view and lint it.

    Broken references are tolerated (they end the conversation at runtime)
    unless ``strict`` is set.
    """
    gb = GraphBuilder()
    if not gb.load_from_json(json_path):
        raise ValueError(f"Invalid JSON or failed to load: {json_path}")
    ok = gb.build_graph()
    if strict and not ok:
        raise ValueError(f"Flow validation failed: {gb.report.errors}")

    return FlowRuntime(flow=gb.flow, graph=gb.graph, report=gb.report)


def load_flow(json_path: str) -> Flow:
    return load_and_validate(json_path).flow
