from __future__ import annotations

import os
from flowgraph.graph_builder import GraphBuilder


def main() -> None:
    print("=" * 60)
    print("Flow graph check")
    print("=" * 60)

    base_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(base_dir, 'config', 'sample_flow.json')

    builder = GraphBuilder()

    if not builder.load_from_json(config_path):
        return

    if not builder.build_graph():
        print("\n❌ Flow has broken references:")
        for error in builder.report.errors:
            print(f"   - {error}")

    cycle_result = builder.detect_cycles()
    if not cycle_result["success"]:
        print(f"\n🔁 Loop through: {cycle_result['cyclic_nodes']}")

    graph_info = builder.export_graph_info()
    print(f"\nSteps: {graph_info['graph_stats']['nodes']}")
    print(f"Edges: {graph_info['graph_stats']['edges']}")
    print(f"DAG: {graph_info['graph_stats']['is_dag']}")
    for step_type, ids in graph_info['type_groups'].items():
        print(f"   {step_type}: {', '.join(ids)}")

    for warning in builder.report.warnings:
        print(f"⚠️  {warning}")


if __name__ == "__main__":
    main()
