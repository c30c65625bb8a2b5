from flowgraph.builder import build_nx_graph
from flowgraph.graph_builder import GraphBuilder
from flowgraph.schema import END
from flowgraph.toposort import kahn_toposort
from flowgraph.validator import validate_flow


def test_clean_flow_has_no_findings(welcome_name_end_flow):
    report = validate_flow(welcome_name_end_flow)
    assert report.ok
    assert report.errors == []
    assert report.warnings == []
    assert report.entry == "welcome"
    assert report.end_nodes == ["end"]


def test_dangling_target_is_an_error(build_flow):
    flow = build_flow([
        {"id": "a", "stepType": "question", "nextStepId": "ghost"},
        {"id": "e", "stepType": "end"},
    ])
    report = validate_flow(flow)
    assert not report.ok
    assert report.dangling == ["a"]
    assert any("ghost" in e for e in report.errors)


def test_self_loop_is_flagged(build_flow):
    flow = build_flow([{"id": "a", "stepType": "question", "nextStepId": "a"}])
    report = validate_flow(flow)
    assert report.ok
    assert report.self_loops == ["a"]
    assert any("connected to itself" in w for w in report.warnings)


def test_empty_route_condition_is_flagged(build_flow):
    flow = build_flow([
        {"id": "menu", "stepType": "menu", "nextStepId": "b", "routes": [
            {"id": "r1", "condition": "  ", "targetStepId": "b"},
        ]},
        {"id": "b", "stepType": "end"},
    ])
    report = validate_flow(flow)
    assert report.ok
    assert any("empty route condition" in w and "menu" in w for w in report.warnings)


def test_skip_wait_cycle_is_flagged(build_flow):
    flow = build_flow([
        {"id": "a", "stepType": "welcome", "skipWait": True, "nextStepId": "b"},
        {"id": "b", "stepType": "image", "skipWait": True, "nextStepId": "a"},
    ])
    report = validate_flow(flow)
    assert report.cyclic_nodes == ["a", "b"]
    assert any("skip waiting" in w for w in report.warnings)


def test_unreachable_and_open_ended_steps(build_flow):
    flow = build_flow([
        {"id": "a", "stepType": "question", "nextStepId": END},
        {"id": "orphan", "stepType": "question"},
    ])
    report = validate_flow(flow)
    assert report.unreachable_nodes == ["orphan"]
    assert any("no next step" in w for w in report.warnings)
    assert any("no end step" in w for w in report.warnings)


def test_empty_flow_is_a_warning(build_flow):
    report = validate_flow(build_flow([]))
    assert report.ok
    assert report.warnings


def test_graph_merges_default_and_route_edges(build_flow):
    flow = build_flow([
        {"id": "m", "stepType": "menu", "nextStepId": "b", "routes": [
            {"id": "r", "condition": "sim", "targetStepId": "b"},
            {"id": "r2", "condition": "não", "targetStepId": END},
        ]},
        {"id": "b", "stepType": "question"},
    ])
    g = build_nx_graph(flow)
    assert g.edges["m", "b"]["kinds"] == ["default", "route"]
    assert g.edges["m", "b"]["conditions"] == ["sim"]
    assert g.has_edge("m", END)
    assert END not in build_nx_graph(flow, include_end=False)


def test_kahn_toposort_reports_cycle(build_flow):
    flow = build_flow([
        {"id": "a", "stepType": "question", "nextStepId": "b"},
        {"id": "b", "stepType": "question", "nextStepId": "a"},
        {"id": "c", "stepType": "question", "nextStepId": "a"},
    ])
    result = kahn_toposort(build_nx_graph(flow))
    assert not result.success
    assert result.order == ["c"]
    assert sorted(result.cyclic_nodes) == ["a", "b"]


def test_graph_builder_loads_sample(sample_flow_path):
    gb = GraphBuilder()
    assert gb.load_from_json(str(sample_flow_path))
    assert gb.build_graph()
    info = gb.export_graph_info()
    assert info["graph_stats"]["nodes"] == len(gb.flow.steps)
    assert info["type_groups"]["end"] == ["fim"]
    assert set(gb.get_successors("menu")) == {"financeiro", "catalogo", "pergunta"}
    assert gb.get_predecessors("boas_vindas") == []


def test_graph_builder_reports_missing_file(tmp_path):
    assert not GraphBuilder().load_from_json(str(tmp_path / "missing.json"))
