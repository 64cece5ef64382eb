import logging

import pandas as pd
import pytest

import gradgen.generate as generate_module
from gradgen import (
    AdjointRegistry,
    CompilationMode,
    ConfigurationError,
    GradGenError,
    GraphMutatedError,
    Kind,
    TrainingConfig,
    UnsupportedOperatorError,
    generate_gradient_nodes,
    zero_seed,
)
from gradgen.pending import PendingGraph


def test_infer_mode_is_rejected(mlp):
    with pytest.raises(ConfigurationError, match="INFER"):
        generate_gradient_nodes(mlp.graph, mode=CompilationMode.INFER)
    assert len(mlp.graph) == 9


def test_unknown_mode_is_rejected(mlp):
    with pytest.raises(ConfigurationError):
        generate_gradient_nodes(mlp.graph, mode=7)


def test_invalid_config_is_rejected_before_any_work(mlp):
    with pytest.raises(ConfigurationError, match="learning_rate"):
        generate_gradient_nodes(mlp.graph, TrainingConfig(learning_rate=0.0))
    assert len(mlp.graph) == 9


def test_pass_appends_after_forward_nodes(mlp):
    before = len(mlp.graph)
    report = generate_gradient_nodes(mlp.graph)
    new = list(mlp.graph)[before:]
    assert len(new) == len(report.nodes) + len(report.variables)
    assert all(n.synthesized for n in new)
    assert not any(n.synthesized for n in list(mlp.graph)[:before])
    assert [n.id for n in new] == list(range(before, len(mlp.graph)))


def test_unsupported_kind_in_forward_graph(graph):
    x = graph.create_variable("x", (2,))
    z = graph.create_zero("stray", x.type)
    graph.create_save("out", graph.create_add("s", x, z))
    before = len(graph)
    with pytest.raises(UnsupportedOperatorError) as excinfo:
        generate_gradient_nodes(graph)
    assert excinfo.value.node is z
    assert "kind='zero'" in str(excinfo.value)
    assert len(graph) == before


def test_empty_registry_lists_every_missing_kind(mlp):
    with pytest.raises(UnsupportedOperatorError) as excinfo:
        generate_gradient_nodes(mlp.graph, registry=AdjointRegistry())
    message = str(excinfo.value)
    for kind in ("fully_connected", "relu", "regression", "save"):
        assert f"kind='{kind}'" in message
    assert len(mlp.graph) == 9


def test_failed_pass_is_logged(mlp, caplog):
    mlp.graph.create_variable("orphan", (1,), trainable=True)
    caplog.set_level(logging.ERROR, logger="gradgen")
    with pytest.raises(GradGenError):
        generate_gradient_nodes(mlp.graph)
    assert any("left unchanged" in r.getMessage() for r in caplog.records)


def test_report_is_logged_at_info(mlp, caplog):
    caplog.set_level(logging.INFO, logger="gradgen")
    generate_gradient_nodes(mlp.graph)
    messages = [r.getMessage() for r in caplog.records if r.name == "gradgen.generate"]
    assert any("gradient pass over 'mlp' (TRAIN)" in m for m in messages)


def test_second_pass_builds_independent_backward_graph(mlp):
    first = generate_gradient_nodes(mlp.graph)
    size = len(mlp.graph)
    second = generate_gradient_nodes(mlp.graph)

    assert all(n.id >= size for n in second.nodes)
    assert [n.kind for n in second.nodes] == [n.kind for n in first.nodes]
    assert len([n for n in mlp.graph.nodes if n.kind is Kind.SGD]) == 4
    assert len([n for n in mlp.graph.nodes if n.kind is Kind.RELU_GRAD]) == 2


def test_graph_growing_mid_pass_is_detected(mlp):
    def sneaky_seed(builder, save):
        mlp.graph.create_variable("sneak", (1,))
        return zero_seed(builder, save)

    with pytest.raises(GraphMutatedError):
        generate_gradient_nodes(mlp.graph, seed=sneaky_seed)
    assert len(mlp.graph) == 10
    assert mlp.graph.node(9).name == "sneak"


def test_pending_graph_commits_once(graph):
    x = graph.create_variable("x", (2,))
    pending = PendingGraph(graph)
    z = pending.create_zero("z", x.type)
    assert z.id == 1
    assert z.synthesized
    assert pending.node(0) is x
    assert len(graph) == 1
    assert pending.commit() == [z]
    assert graph.node(1) is z
    with pytest.raises(RuntimeError):
        pending.commit()
    with pytest.raises(RuntimeError):
        pending.create_zero("late", x.type)


def test_pending_graph_refuses_stale_base(graph):
    x = graph.create_variable("x", (2,))
    pending = PendingGraph(graph)
    pending.create_zero("z", x.type)
    graph.create_relu("r", x)
    with pytest.raises(GraphMutatedError):
        pending.commit()
    assert len(graph) == 2


def test_verify_flag_runs_verification(mlp, monkeypatch):
    calls = []
    monkeypatch.setattr(generate_module, "verify_graph", calls.append)
    generate_gradient_nodes(mlp.graph, verify=True)
    assert calls == [mlp.graph]


def test_verify_defaults_to_environment(mlp, monkeypatch):
    calls = []
    monkeypatch.setattr(generate_module, "verify_graph", calls.append)
    monkeypatch.setenv("GRADGEN_VERIFY", "1")
    generate_gradient_nodes(mlp.graph)
    monkeypatch.setenv("GRADGEN_VERIFY", "0")
    generate_gradient_nodes(mlp.graph)
    assert calls == [mlp.graph]


def test_summary_table(mlp):
    report = generate_gradient_nodes(mlp.graph, mode=CompilationMode.TRAIN_DEBUG)
    table = report.summary_table()
    assert isinstance(table, pd.DataFrame)
    assert list(table.columns) == ["id", "name", "kind", "inputs", "output_shapes", "role"]
    assert len(table) == len(report.nodes) + len(report.variables)
    assert table["id"].is_monotonic_increasing
    roles = table["role"].value_counts().to_dict()
    assert roles["update"] == 2
    assert roles["accumulator"] == 2
    assert roles["debug"] == 5
    assert roles["inspection"] == 5
    sgd_rows = table[table["kind"] == "sgd"]
    assert list(sgd_rows["name"]) == ["w", "b"]


def test_report_counts_and_str(mlp):
    report = generate_gradient_nodes(mlp.graph)
    counts = report.counts_by_kind()
    assert counts["sgd"] == 2
    assert counts["zero"] == 1
    assert str(report).startswith("gradient pass over 'mlp' (TRAIN): 6 nodes, 2 variables")
