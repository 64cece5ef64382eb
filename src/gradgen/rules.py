"""
Adjoint Rule Registry
=====================

One adjoint rule per forward operator kind.  A rule receives the forward
node and an :class:`AdjointContext`; it reads the fully accumulated gradient
of the node's outputs from ``ctx.grads``, builds the backward nodes on
``ctx.builder`` and registers one gradient per input with
``ctx.grads.add_gradient``.

The table is closed: :data:`RULE_TABLE` lists every forward kind with a
human readable description, and :data:`ADJOINT_REGISTRY` must hold exactly
those kinds (checked at import).  Kinds that only the backward pass emits
(``zero``, ``insert_tensor``, ``sgd``, the ``*_grad`` kernels, ...) have no
rule; meeting one during a pass is a builder defect.

Registry structure
------------------
Each :data:`RULE_TABLE` entry is a dictionary with keys::

    {
      "arity": str,
      "signature": str,
      "backward": str,   # what the rule emits
      "notes": str,
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

from .errors import ShapeMismatchError, UnsupportedOperatorError
from .gradient_map import GradientMap
from .graph.factory import NodeFactory, is_permutation
from .graph.nodes import KERNEL_GRAD_KINDS, Kind, Node
from .seeds import SeedFn, zero_seed


@dataclass
class AdjointContext:
    """State shared by every rule during one pass."""

    builder: NodeFactory
    grads: GradientMap
    seed: SeedFn = zero_seed


AdjointFn = Callable[[Node, AdjointContext], None]


_KERNEL_NOTES = "Closed-form adjoint computed by the kernel's own *_grad node; one gradient per input."

RULE_TABLE: Dict[Kind, Dict[str, str]] = {
    Kind.CONVOLUTION: {
        "arity": "ternary",
        "signature": "y = conv(x, filter, bias; kernel, stride, pad)",
        "backward": "convolution_grad(x, filter, bias, y, gy) -> (gx, gfilter, gbias)",
        "notes": _KERNEL_NOTES,
    },
    Kind.POOL: {
        "arity": "unary",
        "signature": "y = pool(x; mode, kernel, stride, pad)",
        "backward": "pool_grad(x, y, gy) -> gx",
        "notes": _KERNEL_NOTES,
    },
    Kind.FULLY_CONNECTED: {
        "arity": "ternary",
        "signature": "y = flatten(x) @ w + b",
        "backward": "fully_connected_grad(x, w, b, y, gy) -> (gx, gw, gb)",
        "notes": _KERNEL_NOTES,
    },
    Kind.BATCH_NORMALIZATION: {
        "arity": "n-ary",
        "signature": "y = batchnorm(x, scale, bias, mean, var; channel_idx, epsilon, momentum)",
        "backward": "batch_normalization_grad(...) -> (gx, gscale, gbias, gmean, gvar)",
        "notes": _KERNEL_NOTES,
    },
    Kind.LOCAL_RESPONSE_NORMALIZATION: {
        "arity": "unary",
        "signature": "y = lrn(x; half_window, alpha, beta, k)",
        "backward": "local_response_normalization_grad(x, y, gy) -> gx",
        "notes": _KERNEL_NOTES,
    },
    Kind.SOFTMAX: {
        "arity": "binary",
        "signature": "y = softmax(x); selected names the expected class",
        "backward": "softmax_grad(x, selected, y, gy) -> (gx, gselected)",
        "notes": _KERNEL_NOTES,
    },
    Kind.REGRESSION: {
        "arity": "binary",
        "signature": "y = regression(x, expected)",
        "backward": "regression_grad(x, expected, y, gy) -> (gx, gexpected)",
        "notes": _KERNEL_NOTES,
    },
    Kind.ARITHMETIC: {
        "arity": "binary",
        "signature": "y = lhs <mode> rhs (elementwise)",
        "backward": "arithmetic_grad(lhs, rhs, y, gy; mode) -> (glhs, grhs)",
        "notes": _KERNEL_NOTES,
    },
    Kind.RELU: {
        "arity": "unary",
        "signature": "y = max(x, 0)",
        "backward": "relu_grad(x, y, gy) -> gx",
        "notes": _KERNEL_NOTES,
    },
    Kind.SIGMOID: {
        "arity": "unary",
        "signature": "y = 1 / (1 + exp(-x))",
        "backward": "sigmoid_grad(x, y, gy) -> gx",
        "notes": _KERNEL_NOTES,
    },
    Kind.TANH: {
        "arity": "unary",
        "signature": "y = tanh(x)",
        "backward": "tanh_grad(x, y, gy) -> gx",
        "notes": _KERNEL_NOTES,
    },
    Kind.SAVE: {
        "arity": "binary",
        "signature": "save(x, out)",
        "backward": "seed = seed(save); gx += seed; gout += seed",
        "notes": "Entry point of backpropagation. The default seed is zeros; pass splat_seed(1.0) for a loss.",
    },
    Kind.RESHAPE: {
        "arity": "unary",
        "signature": "y = reshape(x, shape)",
        "backward": "gx = reshape(gy, x.shape)",
        "notes": "Shapes simply swap.",
    },
    Kind.TRANSPOSE: {
        "arity": "unary",
        "signature": "y = transpose(x, shuffle); y axis i is x axis shuffle[i]",
        "backward": "inv[shuffle[i]] = i; gx = transpose(gy, inv)",
        "notes": "Pure reindexing; the shuffle must be a permutation of range(rank).",
    },
    Kind.SLICE: {
        "arity": "unary",
        "signature": "y = x[start : start + y.shape]",
        "backward": "gx = insert_tensor(zeros_like(x), gy, start)",
        "notes": "Scatter-add at the extraction offset; zero outside the window.",
    },
    Kind.CONCAT: {
        "arity": "n-ary",
        "signature": "y = concat([x_0, ..., x_n], dim)",
        "backward": "gx_j = slice(gy, offset_j, x_j.shape); offset_j = sum(x_k.shape[dim] for k < j)",
        "notes": "One extraction per input in original order.",
    },
}


class AdjointRegistry:
    """Map operator kinds to adjoint rules."""

    def __init__(self) -> None:
        self._methods: Dict[Kind, AdjointFn] = {}

    def register(self, kind: Kind, fn: AdjointFn) -> None:
        """Register ``fn`` as the adjoint of ``kind``."""
        self._methods[Kind(kind)] = fn

    def register_from_module(self, module: Any) -> "AdjointRegistry":
        """Discover and register every ``adj_<kind>`` function in ``module``."""
        for attr in dir(module):
            if attr.startswith("adj_"):
                self.register(Kind(attr[4:]), getattr(module, attr))
        return self

    @property
    def kinds(self) -> List[Kind]:
        return list(self._methods)

    def __contains__(self, kind: object) -> bool:
        return kind in self._methods

    def lookup(self, node: Node) -> AdjointFn:
        fn = self._methods.get(node.kind)
        if fn is None:
            raise UnsupportedOperatorError(node)
        return fn

    def missing(self, nodes: Iterable[Node]) -> List[Dict[str, Any]]:
        """Diagnostics for every non-variable node lacking a rule."""
        report: List[Dict[str, Any]] = []
        for node in nodes:
            if node.kind is Kind.VARIABLE or node.kind in self._methods:
                continue
            report.append(
                {
                    "node_id": node.id,
                    "kind": node.kind.value,
                    "name": node.name,
                    "synthesized": node.synthesized,
                }
            )
        return report


# ---------------------------------------------------------------------------
# rules
# ---------------------------------------------------------------------------


def inverse_permutation(shuffle: Sequence[int]) -> Tuple[int, ...]:
    """Return ``r`` with ``r[shuffle[i]] == i`` for every ``i``."""
    inverse = [0] * len(shuffle)
    for i, s in enumerate(shuffle):
        inverse[s] = i
    return tuple(inverse)


def kernel_adjoint(node: Node, ctx: AdjointContext) -> None:
    output_grads = [ctx.grads.get_gradient(r) for r in node.results]
    grad = ctx.builder.create_kernel_grad(node, output_grads)
    for slot, operand in enumerate(node.inputs):
        ctx.grads.add_gradient(operand, grad.result(slot))


def adj_save(node: Node, ctx: AdjointContext) -> None:
    seed = ctx.seed(ctx.builder, node)
    source, storage = node.inputs
    ctx.grads.add_gradient(source, seed)
    ctx.grads.add_gradient(storage, seed)


def adj_reshape(node: Node, ctx: AdjointContext) -> None:
    out_grad = ctx.grads.get_gradient(node.result())
    (source,) = node.inputs
    x = ctx.builder.create_reshape(node.name, out_grad, ctx.builder.type_of(source).shape)
    ctx.grads.add_gradient(source, x.result())


def adj_transpose(node: Node, ctx: AdjointContext) -> None:
    (source,) = node.inputs
    shuffle = node.shuffle
    if not is_permutation(shuffle, ctx.builder.type_of(source).rank):
        raise ShapeMismatchError(f"{node.describe()}: shuffle {shuffle} is not a permutation of its input axes")
    out_grad = ctx.grads.get_gradient(node.result())
    x = ctx.builder.create_transpose(node.name, out_grad, inverse_permutation(shuffle))
    ctx.grads.add_gradient(source, x.result())


def adj_slice(node: Node, ctx: AdjointContext) -> None:
    (source,) = node.inputs
    out_grad = ctx.grads.get_gradient(node.result())
    zero = ctx.builder.create_zero("expand", ctx.builder.type_of(source))
    insert = ctx.builder.create_insert_tensor("insert.slice.grad", zero, out_grad, node.start)
    ctx.grads.add_gradient(source, insert.result())


def adj_concat(node: Node, ctx: AdjointContext) -> None:
    out_grad = ctx.grads.get_gradient(node.result())
    dim = node.dim
    # extraction starts at the origin and advances along ``dim``
    offsets = [0] * node.type.rank
    for operand in node.inputs:
        ty = ctx.builder.type_of(operand)
        x = ctx.builder.create_slice("extract", out_grad, offsets, ty.shape)
        offsets[dim] += ty.shape[dim]
        ctx.grads.add_gradient(operand, x.result())


def _build_registry() -> AdjointRegistry:
    import sys

    registry = AdjointRegistry().register_from_module(sys.modules[__name__])
    for kind in KERNEL_GRAD_KINDS:
        registry.register(kind, kernel_adjoint)
    stray = set(registry.kinds) ^ set(RULE_TABLE)
    if stray:
        names = ", ".join(sorted(k.value for k in stray))
        raise RuntimeError(f"adjoint registry and rule table disagree on: {names}")
    return registry


# Global registry used by the gradient pass
ADJOINT_REGISTRY = _build_registry()


__all__ = [
    "ADJOINT_REGISTRY",
    "AdjointContext",
    "AdjointFn",
    "AdjointRegistry",
    "RULE_TABLE",
    "adj_concat",
    "kernel_adjoint",
    "adj_reshape",
    "adj_save",
    "adj_slice",
    "adj_transpose",
    "inverse_permutation",
]
