from __future__ import annotations

from typing import List

import networkx as nx

from .builder import build_nx_graph
from .schema import END, Flow, ValidationReport
from .toposort import kahn_toposort


def validate_flow(flow: Flow) -> ValidationReport:
    """Lint a flow for the author. Only dangling references are errors;
    loops and unreachable steps are legal and reported as warnings."""
    warnings: List[str] = []
    errors: List[str] = []

    if not flow.steps:
        warnings.append("Flow has no steps; it ends as soon as it starts.")
        return ValidationReport(ok=True, warnings=warnings)

    dangling: List[str] = []
    for step in flow.steps:
        for target in step.targets():
            if not flow.has_target(target):
                dangling.append(step.id)
                errors.append(f"Step '{step.id}' points at unknown step '{target}'.")

    g = build_nx_graph(flow)
    entry = flow.steps[flow.entry_index()].id

    self_loops = sorted(n for n, _ in nx.selfloop_edges(g))
    for n in self_loops:
        warnings.append(f"Step '{n}' is connected to itself (likely infinite loop).")

    # skip_wait steps only ever follow their default edge
    auto = nx.DiGraph()
    for step in flow.steps:
        if step.skip_wait:
            auto.add_node(step.id)
    for u, v, data in g.edges(data=True):
        if u in auto and v in auto and "default" in data["kinds"]:
            auto.add_edge(u, v)
    auto_cycle = kahn_toposort(auto)
    if not auto_cycle.success:
        looping = sorted(n for n in auto_cycle.cyclic_nodes if _on_cycle(auto, n))
        if looping:
            warnings.append(
                f"Steps {looping} skip waiting and loop into each other; "
                f"the conversation will be closed when the chain is detected."
            )

    topo = kahn_toposort(g)
    cyclic = sorted(n for n in topo.cyclic_nodes if n != END and _on_cycle(g, n))
    if cyclic:
        warnings.append(f"Steps {cyclic} are part of a loop.")

    reachable = nx.descendants(g, entry) | {entry}
    unreachable = [s.id for s in flow.steps if s.id not in reachable]
    if unreachable and not flow.linear_fallback:
        warnings.append(f"Unreachable from '{entry}': {sorted(unreachable)}")

    open_ended = [s.id for s in flow.steps if not s.is_end and not s.targets()]
    if open_ended and not flow.linear_fallback:
        warnings.append(f"Steps with no next step end the flow: {open_ended}")

    catch_all = [s.id for s in flow.steps if any(not r.condition.strip() for r in s.routes)]
    if catch_all:
        warnings.append(f"Steps with an empty route condition send every reply down that route: {catch_all}")

    end_nodes = [s.id for s in flow.steps if s.is_end]
    if not end_nodes:
        warnings.append("Flow has no end step; the default end message will be used.")

    return ValidationReport(
        ok=not errors,
        warnings=warnings,
        errors=errors,
        entry=entry,
        end_nodes=end_nodes,
        dangling=sorted(set(dangling)),
        self_loops=self_loops,
        cyclic_nodes=cyclic,
        unreachable_nodes=[] if flow.linear_fallback else unreachable,
    )


def _on_cycle(g: nx.DiGraph, node: str) -> bool:
    if g.has_edge(node, node):
        return True
    return any(node in nx.descendants(g, succ) for succ in g.successors(node))
