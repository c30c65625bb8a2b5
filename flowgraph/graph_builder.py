from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import networkx as nx
from pydantic import ValidationError

from .builder import build_nx_graph
from .preprocess import load_json, normalize_raw_to_flow
from .schema import Flow, ValidationReport
from .toposort import kahn_toposort
from .validator import validate_flow

logger = logging.getLogger(__name__)


class GraphBuilder:
    def __init__(self) -> None:
        self.graph: nx.DiGraph = nx.DiGraph()
        self.flow: Optional[Flow] = None
        self.report: Optional[ValidationReport] = None

    def load_from_json(self, json_path: str) -> bool:
        try:
            raw = load_json(json_path)
            self.flow = normalize_raw_to_flow(raw)
            logger.info(f"Flow loaded: {json_path} ({len(self.flow.steps)} steps)")
            return True

        except FileNotFoundError:
            logger.error(f"Flow file not found: {json_path}")
            return False
        except json.JSONDecodeError as e:
            logger.error(f"Flow JSON parse error: {e}")
            return False
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid flow definition: {e}")
            return False

    def load_flow(self, flow: Flow) -> None:
        self.flow = flow

    def build_graph(self) -> bool:
        if self.flow is None:
            logger.error("No flow loaded.")
            return False

        self.graph = build_nx_graph(self.flow)
        logger.debug(f"Graph built: {self.graph.number_of_nodes()} nodes, {self.graph.number_of_edges()} edges")

        self.report = validate_flow(self.flow)
        for w in self.report.warnings:
            logger.warning(w)
        for e in self.report.errors:
            logger.error(e)
        return self.report.ok

    def detect_cycles(self) -> Dict[str, Any]:
        result = kahn_toposort(self.graph)
        if result.success:
            logger.info("No loops: the flow graph is a DAG.")
        else:
            logger.info(f"Loop detected around: {sorted(result.cyclic_nodes)}")
        return {
            "success": result.success,
            "order": result.order,
            "cyclic_nodes": result.cyclic_nodes,
        }

    def export_graph_info(self) -> Dict[str, Any]:
        nodes_payload = []
        for node in self.graph.nodes():
            attrs = dict(self.graph.nodes[node])
            nodes_payload.append({"id": node, **attrs})

        edges_payload = []
        for u, v, attrs in self.graph.edges(data=True):
            edges_payload.append({"from": u, "to": v, **attrs})

        cycle_result = kahn_toposort(self.graph)
        graph_stats = {
            "nodes": self.graph.number_of_nodes(),
            "edges": self.graph.number_of_edges(),
            "is_dag": cycle_result.success,
        }

        type_groups: Dict[str, List[str]] = {}
        for step in (self.flow.steps if self.flow else []):
            type_groups.setdefault(step.step_type, []).append(step.id)

        return {
            "nodes": nodes_payload,
            "edges": edges_payload,
            "graph_stats": graph_stats,
            "type_groups": type_groups,
        }

    def get_predecessors(self, step_id: str) -> List[str]:
        if step_id not in self.graph:
            return []
        return list(self.graph.predecessors(step_id))

    def get_successors(self, step_id: str) -> List[str]:
        if step_id not in self.graph:
            return []
        return list(self.graph.successors(step_id))
