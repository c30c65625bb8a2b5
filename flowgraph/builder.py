from __future__ import annotations

from typing import Any, Dict

import networkx as nx

from .schema import END, Flow


def build_nx_graph(flow: Flow, include_end: bool = True) -> nx.DiGraph:
    """Directed view of a flow: one node per step, one edge per jump.

    Default edges and routes sharing a target collapse into one edge whose
    ``conditions`` list keeps the route conditions in order. Edges to unknown
    steps are left out (the validator reports them).
    """
    g: nx.DiGraph = nx.DiGraph()

    # add nodes
    for idx, step in enumerate(flow.steps):
        attrs: Dict[str, Any] = {
            "index": idx,
            "step_type": step.step_type,
            "skip_wait": step.skip_wait,
            "label": step.custom_label or step.id,
        }
        g.add_node(step.id, **attrs)

    # add edges
    for step in flow.steps:
        if step.default_next:
            _add_edge(g, flow, step.id, step.default_next, kind="default", condition=None,
                      include_end=include_end)
        for route in step.routes:
            _add_edge(g, flow, step.id, route.target_id, kind="route", condition=route.condition,
                      include_end=include_end)

    return g


def _add_edge(g: nx.DiGraph, flow: Flow, source: str, target: str, kind: str,
              condition: Any, include_end: bool) -> None:
    if target == END:
        if not include_end:
            return
        if END not in g:
            g.add_node(END, step_type="END", skip_wait=False, label=END)
    elif flow.index_of(target) < 0:
        return

    if g.has_edge(source, target):
        data = g.edges[source, target]
        data["kinds"].append(kind)
        if condition is not None:
            data["conditions"].append(condition)
        return
    g.add_edge(source, target, kinds=[kind], conditions=[condition] if condition is not None else [])
