import pytest

from gradgen import ArithmeticMode, Graph, Kind, PoolMode, generate_gradient_nodes
from gradgen.graph import KERNEL_GRAD_KINDS


def _conv(g):
    img = g.create_variable("img", (1, 4, 4, 2))
    f = g.create_variable("filter", (3, 3, 3, 2))
    b = g.create_variable("bias", (3,))
    return g.create_convolution("conv", img, f, b, kernel=3, pad=1)


def _pool(g):
    return g.create_pool("pool", g.create_variable("x", (1, 4, 4, 2)), PoolMode.MAX, kernel=2, stride=2)


def _fully_connected(g):
    x = g.create_variable("x", (2, 3))
    return g.create_fully_connected("fc", x, g.create_variable("w", (3, 4)), g.create_variable("b", (4,)))


def _batch_norm(g):
    x = g.create_variable("x", (2, 3))
    params = [g.create_variable(n, (3,)) for n in ("scale", "bias", "mean", "var")]
    return g.create_batch_normalization("bn", x, *params)


def _lrn(g):
    return g.create_local_response_normalization("lrn", g.create_variable("x", (1, 2, 2, 4)))


def _softmax(g):
    return g.create_softmax("softmax", g.create_variable("x", (2, 5)), g.create_variable("selected", (2, 1)))


def _regression(g):
    return g.create_regression("regression", g.create_variable("x", (2, 3)), g.create_variable("y", (2, 3)))


def _arithmetic(g):
    a = g.create_variable("a", (2, 2))
    return g.create_arithmetic("sub", a, g.create_variable("b", (2, 2)), ArithmeticMode.SUB)


def _relu(g):
    return g.create_relu("relu", g.create_variable("x", (3,)))


def _sigmoid(g):
    return g.create_sigmoid("sigmoid", g.create_variable("x", (3,)))


def _tanh(g):
    return g.create_tanh("tanh", g.create_variable("x", (3,)))


BUILDERS = {
    Kind.CONVOLUTION: _conv,
    Kind.POOL: _pool,
    Kind.FULLY_CONNECTED: _fully_connected,
    Kind.BATCH_NORMALIZATION: _batch_norm,
    Kind.LOCAL_RESPONSE_NORMALIZATION: _lrn,
    Kind.SOFTMAX: _softmax,
    Kind.REGRESSION: _regression,
    Kind.ARITHMETIC: _arithmetic,
    Kind.RELU: _relu,
    Kind.SIGMOID: _sigmoid,
    Kind.TANH: _tanh,
}


def test_every_kernel_has_a_builder():
    assert set(BUILDERS) == set(KERNEL_GRAD_KINDS)


@pytest.mark.parametrize("kind", list(BUILDERS), ids=lambda k: k.value)
def test_kernel_adjoint_wiring(kind):
    g = Graph(kind.value)
    forward = BUILDERS[kind](g)
    g.create_save("out", forward)
    report = generate_gradient_nodes(g)

    (grad,) = report.nodes_of_kind(KERNEL_GRAD_KINDS[kind])
    assert grad.name == f"{forward.name}.grad"
    assert grad.synthesized
    assert grad.attrs["forward"] == forward.id
    n_in = len(forward.inputs)
    assert grad.inputs[:n_in] == forward.inputs
    assert grad.inputs[n_in] == forward.result()
    assert grad.inputs[n_in + 1] == report.gradient_of(forward)
    assert grad.output_types == tuple(g.type_of(v) for v in forward.inputs)
    for slot, operand in enumerate(forward.inputs):
        assert report.gradient_of(operand) == grad.result(slot)


def test_kernel_attrs_reach_the_gradient_node(graph):
    pool = graph.create_pool("p", graph.create_variable("x", (1, 6, 6, 1)), PoolMode.AVG, kernel=3, stride=3)
    graph.create_save("out", pool)
    report = generate_gradient_nodes(graph)
    (grad,) = report.nodes_of_kind(Kind.POOL_GRAD)
    assert grad.attrs["mode"] is PoolMode.AVG
    assert grad.attrs["kernel"] == 3
    assert grad.attrs["stride"] == 3


def test_fan_out_gradients_are_summed(graph):
    x = graph.create_variable("x", (2,))
    a = graph.create_relu("a", x)
    b = graph.create_tanh("b", x)
    graph.create_save("out", graph.create_add("s", a, b))
    report = generate_gradient_nodes(graph)

    total = graph.node(report.gradient_of(x).node_id)
    assert total.kind is Kind.ARITHMETIC
    assert total.name == "updateGrad"
    assert total.mode is ArithmeticMode.ADD
    sources = {graph.node(v.node_id).kind for v in total.inputs}
    assert sources == {Kind.RELU_GRAD, Kind.TANH_GRAD}


def test_same_value_in_two_operand_positions(graph):
    x = graph.create_variable("x", (2,))
    sq = graph.create_mul("sq", x, x)
    graph.create_save("out", sq)
    report = generate_gradient_nodes(graph)

    (grad,) = report.nodes_of_kind(Kind.ARITHMETIC_GRAD)
    total = graph.node(report.gradient_of(x).node_id)
    assert total.name == "updateGrad"
    assert total.inputs == (grad.result(0), grad.result(1))


def test_mlp_backward_graph(mlp):
    report = generate_gradient_nodes(mlp.graph)
    kinds = [n.kind for n in report.nodes]
    assert kinds == [
        Kind.ZERO,
        Kind.REGRESSION_GRAD,
        Kind.RELU_GRAD,
        Kind.FULLY_CONNECTED_GRAD,
        Kind.SGD,
        Kind.SGD,
    ]
    (fc_grad,) = report.nodes_of_kind(Kind.FULLY_CONNECTED_GRAD)
    assert report.gradient_of(mlp.w) == fc_grad.result(1)
    assert report.gradient_of(mlp.b) == fc_grad.result(2)
    assert fc_grad.output_types[1] == mlp.w.type
