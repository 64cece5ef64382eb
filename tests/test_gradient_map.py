import pytest

from gradgen import ArithmeticMode, GradientMap, Kind, MissingGradientError, Value


def test_first_contribution_is_stored_as_is(graph):
    x = graph.create_variable("x", (3,))
    g = graph.create_variable("g", (3,))
    grads = GradientMap(graph)
    assert not grads.has_gradient(x.result())
    assert grads.add_gradient(x.result(), g.result()) == g.result()
    assert grads.get_gradient(x.result()) == g.result()
    assert len(graph) == 2


def test_second_contribution_creates_add_node(graph):
    x = graph.create_variable("x", (3,))
    g1 = graph.create_variable("g1", (3,))
    g2 = graph.create_variable("g2", (3,))
    grads = GradientMap(graph)
    grads.add_gradient(x.result(), g1.result())
    total = grads.add_gradient(x.result(), g2.result())

    add = graph.node(total.node_id)
    assert add.kind is Kind.ARITHMETIC
    assert add.name == "updateGrad"
    assert add.mode is ArithmeticMode.ADD
    assert add.inputs == (g1.result(), g2.result())
    assert grads.get_gradient(x.result()) == total


def test_contributions_chain_into_running_sum(graph):
    x = graph.create_variable("x", (2,))
    parts = [graph.create_variable(f"g{i}", (2,)) for i in range(3)]
    grads = GradientMap(graph)
    for p in parts:
        grads.add_gradient(x.result(), p.result())
    adds = [n for n in graph.nodes if n.name == "updateGrad"]
    assert len(adds) == 2
    assert adds[1].inputs == (adds[0].result(), parts[2].result())
    assert len(grads) == 1


def test_missing_gradient_names_producer(graph):
    x = graph.create_variable("weights", (2,))
    grads = GradientMap(graph)
    with pytest.raises(MissingGradientError) as excinfo:
        grads.get_gradient(x.result())
    assert excinfo.value.value == x.result()
    assert "weights" in str(excinfo.value)


def test_missing_gradient_of_unknown_node(graph):
    grads = GradientMap(graph)
    with pytest.raises(MissingGradientError, match="unknown node"):
        grads.get_gradient(Value(42, 0))


def test_as_dict_is_a_copy(graph):
    x = graph.create_variable("x", (2,))
    g = graph.create_variable("g", (2,))
    grads = GradientMap(graph)
    grads.add_gradient(x.result(), g.result())
    snapshot = grads.as_dict()
    snapshot.clear()
    assert x.result() in grads
    assert dict(grads.items()) == {x.result(): g.result()}
