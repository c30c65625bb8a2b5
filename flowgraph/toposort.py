from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional

import networkx as nx

from .schema import CycleDetectionResult


def kahn_toposort(g: nx.DiGraph, nodes: Optional[Iterable[str]] = None) -> CycleDetectionResult:
    """Kahn's algorithm over ``g`` (or the subgraph induced by ``nodes``).

    Whatever cannot be ordered sits on a cycle or downstream of one.
    """
    view = g.subgraph(nodes) if nodes is not None else g

    remaining: Dict[str, int] = dict(view.in_degree())
    starts: List[str] = [n for n, d in remaining.items() if d == 0 and view.out_degree(n) > 0]
    ends: List[str] = [n for n in view.nodes() if view.out_degree(n) == 0 and view.in_degree(n) > 0]

    ready: deque[str] = deque(n for n, d in remaining.items() if d == 0)
    order: List[str] = []
    while ready:
        cur = ready.popleft()
        order.append(cur)
        for nb in view.successors(cur):
            remaining[nb] -= 1
            if remaining[nb] == 0:
                ready.append(nb)

    ordered = set(order)
    return CycleDetectionResult(
        success=len(order) == view.number_of_nodes(),
        order=order,
        cyclic_nodes=[n for n in view.nodes() if n not in ordered],
        start_nodes=starts,
        end_nodes=ends,
    )
