"""Node constructors with shape inference and validation.

:class:`NodeFactory` is mixed into both :class:`~gradgen.graph.graph.Graph`
(nodes land in the arena immediately) and
:class:`~gradgen.pending.PendingGraph` (nodes are buffered until a gradient
pass commits).  Concrete classes provide ``_allocate_id``, ``_emit``,
``type_of`` and the ``synthesizing`` flag.

Every constructor validates its operands before the node exists and raises
:class:`~gradgen.errors.ShapeMismatchError` naming the node it refused to
build.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence, Tuple, Union

import numpy as np

from ..errors import ShapeMismatchError
from .nodes import (
    ArithmeticMode,
    InitKind,
    KERNEL_GRAD_KINDS,
    Kind,
    Node,
    PoolMode,
    Value,
    Variable,
)
from .types import TensorType

Operand = Union[Value, Node]


def _fail(kind: Kind, name: str, message: str) -> ShapeMismatchError:
    return ShapeMismatchError(f"{kind.value} node '{name}': {message}")


def is_permutation(shuffle: Sequence[int], rank: int) -> bool:
    """Return ``True`` when ``shuffle`` reorders ``range(rank)``."""
    if len(shuffle) != rank:
        return False
    try:
        arr = np.asarray(shuffle, dtype=np.int64)
    except (TypeError, ValueError):
        return False
    return bool(np.array_equal(np.sort(arr), np.arange(rank)))


def _conv_extent(size: int, kernel: int, stride: int, pad: int) -> int:
    return (size + 2 * pad - kernel) // stride + 1


class NodeFactory:
    """Mixin providing ``create_*`` constructors for every node kind."""

    synthesizing: bool = False

    # hooks supplied by the concrete graph ---------------------------------
    def _allocate_id(self) -> int:  # pragma: no cover - abstract
        raise NotImplementedError

    def _emit(self, node: Node) -> Node:  # pragma: no cover - abstract
        raise NotImplementedError

    def type_of(self, value: Value) -> TensorType:  # pragma: no cover - abstract
        raise NotImplementedError

    # helpers ---------------------------------------------------------------
    @staticmethod
    def _value(operand: Operand) -> Value:
        if isinstance(operand, Value):
            return operand
        if isinstance(operand, Node):
            return operand.result(0)
        raise TypeError(f"expected a Value or Node operand, got {type(operand).__name__}")

    def _new(
        self,
        kind: Kind,
        name: str,
        inputs: Iterable[Value] = (),
        output_types: Iterable[TensorType] = (),
        attrs: Dict[str, Any] | None = None,
    ) -> Node:
        node = Node(
            id=self._allocate_id(),
            kind=kind,
            name=name,
            inputs=tuple(inputs),
            output_types=tuple(output_types),
            attrs=dict(attrs or {}),
            synthesized=self.synthesizing,
        )
        return self._emit(node)

    # leaves and terminals ----------------------------------------------------
    def create_variable(
        self,
        name: str,
        ty: TensorType | Sequence[int],
        *,
        trainable: bool = False,
        init: InitKind = InitKind.EXTERN,
        value: float = 0.0,
        dtype: str = "float32",
    ) -> Variable:
        if not isinstance(ty, TensorType):
            ty = TensorType(tuple(ty), dtype)
        var = Variable(
            id=self._allocate_id(),
            kind=Kind.VARIABLE,
            name=name,
            output_types=(ty,),
            synthesized=self.synthesizing,
            trainable=trainable,
            init=init,
            init_value=float(value),
        )
        return self._emit(var)

    def create_save(self, name: str, input: Operand, output: Variable | None = None) -> Node:
        """Store ``input`` into ``output`` (a fresh extern variable by default)."""
        src = self._value(input)
        ty = self.type_of(src)
        if output is None:
            output = self.create_variable(name, ty)
        elif output.type != ty:
            raise _fail(Kind.SAVE, name, f"cannot store {ty} into variable of type {output.type}")
        return self._new(Kind.SAVE, f"save.{name}", (src, output.result()))

    # dense kernels -----------------------------------------------------------
    def create_arithmetic(self, name: str, lhs: Operand, rhs: Operand, mode: ArithmeticMode) -> Node:
        a, b = self._value(lhs), self._value(rhs)
        ta, tb = self.type_of(a), self.type_of(b)
        if ta != tb:
            raise _fail(Kind.ARITHMETIC, name, f"operand types differ: {ta} vs {tb}")
        return self._new(Kind.ARITHMETIC, name, (a, b), (ta,), {"mode": ArithmeticMode(mode)})

    def create_add(self, name: str, lhs: Operand, rhs: Operand) -> Node:
        return self.create_arithmetic(name, lhs, rhs, ArithmeticMode.ADD)

    def create_mul(self, name: str, lhs: Operand, rhs: Operand) -> Node:
        return self.create_arithmetic(name, lhs, rhs, ArithmeticMode.MUL)

    def _create_unary(self, kind: Kind, name: str, input: Operand) -> Node:
        src = self._value(input)
        return self._new(kind, name, (src,), (self.type_of(src),))

    def create_relu(self, name: str, input: Operand) -> Node:
        return self._create_unary(Kind.RELU, name, input)

    def create_sigmoid(self, name: str, input: Operand) -> Node:
        return self._create_unary(Kind.SIGMOID, name, input)

    def create_tanh(self, name: str, input: Operand) -> Node:
        return self._create_unary(Kind.TANH, name, input)

    def create_softmax(self, name: str, input: Operand, selected: Operand) -> Node:
        src, sel = self._value(input), self._value(selected)
        ti, ts = self.type_of(src), self.type_of(sel)
        if ti.rank != 2:
            raise _fail(Kind.SOFTMAX, name, f"expected a (batch, classes) input, got {ti}")
        if ts.shape != (ti.shape[0], 1):
            raise _fail(Kind.SOFTMAX, name, f"selected must be ({ti.shape[0]}, 1), got {ts.shape}")
        return self._new(Kind.SOFTMAX, name, (src, sel), (ti,))

    def create_regression(self, name: str, input: Operand, expected: Operand) -> Node:
        src, exp = self._value(input), self._value(expected)
        ti, te = self.type_of(src), self.type_of(exp)
        if ti != te:
            raise _fail(Kind.REGRESSION, name, f"expected type {te} does not match input {ti}")
        return self._new(Kind.REGRESSION, name, (src, exp), (ti,))

    def create_fully_connected(self, name: str, input: Operand, weights: Operand, bias: Operand) -> Node:
        src, w, b = self._value(input), self._value(weights), self._value(bias)
        ti, tw, tb = self.type_of(src), self.type_of(w), self.type_of(b)
        if ti.rank < 2:
            raise _fail(Kind.FULLY_CONNECTED, name, f"input must have a batch dimension, got {ti}")
        flat = int(np.prod(ti.shape[1:], dtype=np.int64))
        if tw.rank != 2 or tw.shape[0] != flat:
            raise _fail(Kind.FULLY_CONNECTED, name, f"weights must be ({flat}, depth), got {tw.shape}")
        depth = tw.shape[1]
        if tb.shape != (depth,):
            raise _fail(Kind.FULLY_CONNECTED, name, f"bias must be ({depth},), got {tb.shape}")
        out = ti.with_shape((ti.shape[0], depth))
        return self._new(Kind.FULLY_CONNECTED, name, (src, w, b), (out,), {"depth": depth})

    def create_convolution(
        self,
        name: str,
        input: Operand,
        filter: Operand,
        bias: Operand,
        *,
        kernel: int,
        stride: int = 1,
        pad: int = 0,
    ) -> Node:
        """NHWC convolution; ``filter`` is ``(depth, kernel, kernel, channels)``."""
        src, f, b = self._value(input), self._value(filter), self._value(bias)
        ti, tf, tb = self.type_of(src), self.type_of(f), self.type_of(b)
        if ti.rank != 4:
            raise _fail(Kind.CONVOLUTION, name, f"expected NHWC input, got {ti}")
        n, h, w, c = ti.shape
        if stride < 1 or kernel < 1 or pad < 0:
            raise _fail(Kind.CONVOLUTION, name, f"bad geometry kernel={kernel} stride={stride} pad={pad}")
        if tf.rank != 4 or tf.shape[1:] != (kernel, kernel, c):
            raise _fail(Kind.CONVOLUTION, name, f"filter must be (depth, {kernel}, {kernel}, {c}), got {tf.shape}")
        depth = tf.shape[0]
        if tb.shape != (depth,):
            raise _fail(Kind.CONVOLUTION, name, f"bias must be ({depth},), got {tb.shape}")
        oh, ow = _conv_extent(h, kernel, stride, pad), _conv_extent(w, kernel, stride, pad)
        if oh < 1 or ow < 1:
            raise _fail(Kind.CONVOLUTION, name, f"kernel {kernel} does not fit input {ti.shape}")
        attrs = {"kernel": kernel, "stride": stride, "pad": pad, "depth": depth}
        return self._new(Kind.CONVOLUTION, name, (src, f, b), (ti.with_shape((n, oh, ow, depth)),), attrs)

    def create_pool(
        self,
        name: str,
        input: Operand,
        mode: PoolMode,
        *,
        kernel: int,
        stride: int = 1,
        pad: int = 0,
    ) -> Node:
        src = self._value(input)
        ti = self.type_of(src)
        if ti.rank != 4:
            raise _fail(Kind.POOL, name, f"expected NHWC input, got {ti}")
        n, h, w, c = ti.shape
        if stride < 1 or kernel < 1 or pad < 0:
            raise _fail(Kind.POOL, name, f"bad geometry kernel={kernel} stride={stride} pad={pad}")
        oh, ow = _conv_extent(h, kernel, stride, pad), _conv_extent(w, kernel, stride, pad)
        if oh < 1 or ow < 1:
            raise _fail(Kind.POOL, name, f"kernel {kernel} does not fit input {ti.shape}")
        attrs = {"mode": PoolMode(mode), "kernel": kernel, "stride": stride, "pad": pad}
        return self._new(Kind.POOL, name, (src,), (ti.with_shape((n, oh, ow, c)),), attrs)

    def create_batch_normalization(
        self,
        name: str,
        input: Operand,
        scale: Operand,
        bias: Operand,
        mean: Operand,
        var: Operand,
        *,
        channel_idx: int | None = None,
        epsilon: float = 1e-5,
        momentum: float = 0.9,
    ) -> Node:
        src = self._value(input)
        ti = self.type_of(src)
        if channel_idx is None:
            channel_idx = ti.rank - 1
        if not 0 <= channel_idx < ti.rank:
            raise _fail(Kind.BATCH_NORMALIZATION, name, f"channel_idx {channel_idx} out of range for {ti}")
        channels = ti.shape[channel_idx]
        params = [self._value(p) for p in (scale, bias, mean, var)]
        for label, p in zip(("scale", "bias", "mean", "var"), params):
            if self.type_of(p).shape != (channels,):
                raise _fail(
                    Kind.BATCH_NORMALIZATION,
                    name,
                    f"{label} must be ({channels},), got {self.type_of(p).shape}",
                )
        attrs = {"channel_idx": channel_idx, "epsilon": epsilon, "momentum": momentum}
        return self._new(Kind.BATCH_NORMALIZATION, name, (src, *params), (ti,), attrs)

    def create_local_response_normalization(
        self,
        name: str,
        input: Operand,
        *,
        half_window: int = 2,
        alpha: float = 1e-4,
        beta: float = 0.75,
        k: float = 2.0,
    ) -> Node:
        src = self._value(input)
        ti = self.type_of(src)
        if half_window < 0:
            raise _fail(Kind.LOCAL_RESPONSE_NORMALIZATION, name, f"negative half_window {half_window}")
        attrs = {"half_window": half_window, "alpha": alpha, "beta": beta, "k": k}
        return self._new(Kind.LOCAL_RESPONSE_NORMALIZATION, name, (src,), (ti,), attrs)

    # layout ----------------------------------------------------------------
    def create_reshape(self, name: str, input: Operand, shape: Sequence[int]) -> Node:
        src = self._value(input)
        ti = self.type_of(src)
        shape = tuple(int(d) for d in shape)
        out = ti.with_shape(shape)
        if out.size != ti.size:
            raise _fail(Kind.RESHAPE, name, f"cannot reshape {ti.shape} ({ti.size} elements) to {shape}")
        return self._new(Kind.RESHAPE, name, (src,), (out,), {"shape": shape})

    def create_transpose(self, name: str, input: Operand, shuffle: Sequence[int]) -> Node:
        """Permute axes: output axis ``i`` takes input axis ``shuffle[i]``."""
        src = self._value(input)
        ti = self.type_of(src)
        if not is_permutation(shuffle, ti.rank):
            raise _fail(Kind.TRANSPOSE, name, f"shuffle {tuple(shuffle)} is not a permutation of range({ti.rank})")
        shuffle = tuple(int(s) for s in shuffle)
        out = ti.with_shape(ti.shape[s] for s in shuffle)
        return self._new(Kind.TRANSPOSE, name, (src,), (out,), {"shuffle": shuffle})

    def _check_window(self, kind: Kind, name: str, outer: TensorType, start, shape) -> Tuple[int, ...]:
        if len(start) != outer.rank or len(shape) != outer.rank:
            raise _fail(kind, name, f"start {tuple(start)} / shape {tuple(shape)} do not match rank of {outer}")
        start = tuple(int(s) for s in start)
        for axis, (o, n, total) in enumerate(zip(start, shape, outer.shape)):
            if o < 0 or o + n > total:
                raise _fail(
                    kind,
                    name,
                    f"window [{o}, {o + n}) exceeds extent {total} of axis {axis}",
                )
        return start

    def create_slice(self, name: str, input: Operand, start: Sequence[int], shape: Sequence[int]) -> Node:
        src = self._value(input)
        ti = self.type_of(src)
        shape = tuple(int(d) for d in shape)
        start = self._check_window(Kind.SLICE, name, ti, start, shape)
        return self._new(Kind.SLICE, name, (src,), (ti.with_shape(shape),), {"start": start})

    def create_concat(self, name: str, inputs: Sequence[Operand], dim: int) -> Node:
        values = [self._value(v) for v in inputs]
        if not values:
            raise _fail(Kind.CONCAT, name, "needs at least one input")
        types = [self.type_of(v) for v in values]
        first = types[0]
        if not 0 <= dim < first.rank:
            raise _fail(Kind.CONCAT, name, f"dimension {dim} out of range for {first}")
        for t in types[1:]:
            compatible = t.rank == first.rank and t.dtype == first.dtype
            if not compatible or any(a != b for i, (a, b) in enumerate(zip(t.shape, first.shape)) if i != dim):
                raise _fail(Kind.CONCAT, name, f"{t} cannot be stacked with {first} along dimension {dim}")
        shape = list(first.shape)
        shape[dim] = sum(t.shape[dim] for t in types)
        return self._new(Kind.CONCAT, name, values, (first.with_shape(shape),), {"dim": dim})

    # gradient-pass building blocks --------------------------------------------
    def create_zero(self, name: str, ty: TensorType) -> Node:
        return self._new(Kind.ZERO, name, (), (ty,))

    def create_splat(self, name: str, ty: TensorType, value: float) -> Node:
        return self._new(Kind.SPLAT, name, (), (ty,), {"value": float(value)})

    def create_insert_tensor(self, name: str, big: Operand, small: Operand, start: Sequence[int]) -> Node:
        """Add ``small`` into a copy of ``big`` at offset ``start``."""
        b, s = self._value(big), self._value(small)
        tb, ts = self.type_of(b), self.type_of(s)
        start = self._check_window(Kind.INSERT_TENSOR, name, tb, start, ts.shape)
        return self._new(Kind.INSERT_TENSOR, name, (b, s), (tb,), {"start": start})

    def create_sgd(
        self,
        name: str,
        gradient: Operand,
        weight: Operand,
        accumulator: Operand,
        *,
        l1_decay: float,
        l2_decay: float,
        learning_rate: float,
        momentum: float,
        batch_size: int,
    ) -> Node:
        g, w, acc = self._value(gradient), self._value(weight), self._value(accumulator)
        tg, tw, ta = self.type_of(g), self.type_of(w), self.type_of(acc)
        if tg != tw:
            raise _fail(Kind.SGD, name, f"gradient {tg} does not match weight {tw}")
        if ta != tw and not ta.is_void:
            raise _fail(Kind.SGD, name, f"accumulator {ta} must match weight {tw} or be void")
        attrs = {
            "l1_decay": l1_decay,
            "l2_decay": l2_decay,
            "learning_rate": learning_rate,
            "momentum": momentum,
            "batch_size": batch_size,
        }
        return self._new(Kind.SGD, name, (g, w, acc), (), attrs)

    def create_kernel_grad(self, forward: Node, output_grads: Sequence[Value]) -> Node:
        """Adjoint node for a dense kernel.

        Inputs are the forward inputs, then the forward outputs, then the
        gradients of the forward outputs.  Output slot ``i`` is the gradient
        of forward input ``i``.
        """
        grad_kind = KERNEL_GRAD_KINDS.get(forward.kind)
        name = f"{forward.name}.grad"
        if grad_kind is None:
            raise ShapeMismatchError(f"{forward.describe()} is not a dense kernel")
        if len(output_grads) != len(forward.output_types):
            raise _fail(
                grad_kind,
                name,
                f"expected {len(forward.output_types)} output gradients, got {len(output_grads)}",
            )
        for slot, g in enumerate(output_grads):
            if self.type_of(g) != forward.output_types[slot]:
                raise _fail(
                    grad_kind,
                    name,
                    f"gradient {self.type_of(g)} does not match output {slot} type {forward.output_types[slot]}",
                )
        inputs = (*forward.inputs, *forward.results, *output_grads)
        outputs = tuple(self.type_of(v) for v in forward.inputs)
        attrs = dict(forward.attrs)
        attrs["forward"] = forward.id
        return self._new(grad_kind, name, inputs, outputs, attrs)


__all__ = ["NodeFactory", "Operand", "is_permutation"]
