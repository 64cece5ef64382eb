"""Node and value records for the static tensor graph.

Every node lives in an arena owned by :class:`~gradgen.graph.graph.Graph`
and is addressed by its integer ``id`` (its position in the arena).  A
:class:`Value` names one output slot of one node, so value identity is a
pair of integers and survives any amount of appending to the graph.

Nodes are plain records: the ``kind`` tag selects the operator and
``attrs`` holds the kind-specific parameters (shape, shuffle, start offsets,
concat dimension, arithmetic mode, hyperparameters, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

from .types import TensorType


class Kind(Enum):
    """Closed set of operator kinds a graph may contain."""

    # Parameters and storage
    VARIABLE = "variable"

    # Dense learnable / elementwise kernels
    CONVOLUTION = "convolution"
    POOL = "pool"
    FULLY_CONNECTED = "fully_connected"
    BATCH_NORMALIZATION = "batch_normalization"
    LOCAL_RESPONSE_NORMALIZATION = "local_response_normalization"
    SOFTMAX = "softmax"
    REGRESSION = "regression"
    ARITHMETIC = "arithmetic"
    RELU = "relu"
    SIGMOID = "sigmoid"
    TANH = "tanh"

    # Terminal outputs
    SAVE = "save"

    # Layout
    RESHAPE = "reshape"
    TRANSPOSE = "transpose"
    SLICE = "slice"
    CONCAT = "concat"

    # Emitted by the gradient pass only
    ZERO = "zero"
    SPLAT = "splat"
    INSERT_TENSOR = "insert_tensor"
    SGD = "sgd"
    CONVOLUTION_GRAD = "convolution_grad"
    POOL_GRAD = "pool_grad"
    FULLY_CONNECTED_GRAD = "fully_connected_grad"
    BATCH_NORMALIZATION_GRAD = "batch_normalization_grad"
    LOCAL_RESPONSE_NORMALIZATION_GRAD = "local_response_normalization_grad"
    SOFTMAX_GRAD = "softmax_grad"
    REGRESSION_GRAD = "regression_grad"
    ARITHMETIC_GRAD = "arithmetic_grad"
    RELU_GRAD = "relu_grad"
    SIGMOID_GRAD = "sigmoid_grad"
    TANH_GRAD = "tanh_grad"


# Dense kernels and the kind of the node that computes their adjoint.
KERNEL_GRAD_KINDS: Dict[Kind, Kind] = {
    Kind.CONVOLUTION: Kind.CONVOLUTION_GRAD,
    Kind.POOL: Kind.POOL_GRAD,
    Kind.FULLY_CONNECTED: Kind.FULLY_CONNECTED_GRAD,
    Kind.BATCH_NORMALIZATION: Kind.BATCH_NORMALIZATION_GRAD,
    Kind.LOCAL_RESPONSE_NORMALIZATION: Kind.LOCAL_RESPONSE_NORMALIZATION_GRAD,
    Kind.SOFTMAX: Kind.SOFTMAX_GRAD,
    Kind.REGRESSION: Kind.REGRESSION_GRAD,
    Kind.ARITHMETIC: Kind.ARITHMETIC_GRAD,
    Kind.RELU: Kind.RELU_GRAD,
    Kind.SIGMOID: Kind.SIGMOID_GRAD,
    Kind.TANH: Kind.TANH_GRAD,
}


class ArithmeticMode(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MAX = "max"
    MIN = "min"


class PoolMode(Enum):
    MAX = "max"
    AVG = "avg"


class InitKind(Enum):
    """How a variable's storage is filled before the first run."""

    EXTERN = "extern"  # loaded by the caller
    BROADCAST = "broadcast"  # every element set to ``init_value``
    XAVIER = "xavier"  # random, scaled by ``init_value``


@dataclass(frozen=True, order=True)
class Value:
    """One output slot of one node."""

    node_id: int
    slot: int = 0

    def __str__(self) -> str:
        return f"%{self.node_id}.{self.slot}"


@dataclass(eq=False)
class Node:
    """Single operator instance in the graph arena.

    Attributes
    ----------
    id:
        Arena index; never reused.
    kind:
        Operator tag.
    name:
        Debug name, not required to be unique.
    inputs:
        Operand values in positional order.
    output_types:
        One type per output slot.
    attrs:
        Kind-specific parameters.
    synthesized:
        ``True`` for nodes emitted by a gradient pass rather than by the
        forward builder.
    """

    id: int
    kind: Kind
    name: str
    inputs: Tuple[Value, ...] = ()
    output_types: Tuple[TensorType, ...] = ()
    attrs: Dict[str, Any] = field(default_factory=dict)
    synthesized: bool = False

    def result(self, slot: int = 0) -> Value:
        if not 0 <= slot < len(self.output_types):
            raise IndexError(f"{self.describe()} has no output slot {slot}")
        return Value(self.id, slot)

    @property
    def results(self) -> Tuple[Value, ...]:
        return tuple(Value(self.id, i) for i in range(len(self.output_types)))

    @property
    def type(self) -> TensorType:
        return self.output_types[0]

    # kind-specific accessors
    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.attrs["shape"])

    @property
    def shuffle(self) -> Tuple[int, ...]:
        return tuple(self.attrs["shuffle"])

    @property
    def start(self) -> Tuple[int, ...]:
        return tuple(self.attrs["start"])

    @property
    def dim(self) -> int:
        return int(self.attrs["dim"])

    @property
    def mode(self) -> Any:
        return self.attrs["mode"]

    def describe(self) -> str:
        return f"{self.kind.value} node '{self.name}' (id={self.id})"

    def __repr__(self) -> str:
        args = ", ".join(str(v) for v in self.inputs)
        outs = ", ".join(str(t) for t in self.output_types)
        return f"Node(%{self.id} {self.kind.value} '{self.name}' ({args}) -> [{outs}])"


@dataclass(eq=False, repr=False)
class Variable(Node):
    """Graph leaf holding a parameter or a storage buffer."""

    trainable: bool = False
    init: InitKind = InitKind.EXTERN
    init_value: float = 0.0

    def __repr__(self) -> str:
        flag = "trainable" if self.trainable else "const"
        return f"Variable(%{self.id} '{self.name}' {self.type} {flag} init={self.init.value})"


__all__ = [
    "ArithmeticMode",
    "InitKind",
    "KERNEL_GRAD_KINDS",
    "Kind",
    "Node",
    "PoolMode",
    "Value",
    "Variable",
]
