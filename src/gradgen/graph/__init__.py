"""Forward graph model consumed and extended by the gradient pass."""
from __future__ import annotations

from .factory import NodeFactory, is_permutation
from .graph import Graph
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

__all__ = [
    "ArithmeticMode",
    "Graph",
    "InitKind",
    "KERNEL_GRAD_KINDS",
    "Kind",
    "Node",
    "NodeFactory",
    "PoolMode",
    "TensorType",
    "Value",
    "Variable",
    "is_permutation",
]
