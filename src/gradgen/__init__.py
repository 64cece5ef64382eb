"""Reverse-mode gradient generation for static tensor graphs."""
from __future__ import annotations

from .config import CompilationMode, TrainingConfig, resolve_mode
from .errors import (
    ConfigurationError,
    GradGenError,
    GraphMutatedError,
    GraphVerificationError,
    MissingGradientError,
    ShapeMismatchError,
    UnsupportedOperatorError,
)
from .generate import dispatch, generate_gradient_nodes
from .gradient_map import GradientMap
from .graph import (
    ArithmeticMode,
    Graph,
    InitKind,
    Kind,
    Node,
    PoolMode,
    TensorType,
    Value,
    Variable,
)
from .report import GradientPassReport
from .rules import ADJOINT_REGISTRY, RULE_TABLE, AdjointRegistry, inverse_permutation
from .seeds import splat_seed, zero_seed
from .traversal import backward_order, post_order
from .verify import verify_graph

__all__ = [
    "ADJOINT_REGISTRY",
    "AdjointRegistry",
    "ArithmeticMode",
    "CompilationMode",
    "ConfigurationError",
    "GradGenError",
    "GradientMap",
    "GradientPassReport",
    "Graph",
    "GraphMutatedError",
    "GraphVerificationError",
    "InitKind",
    "Kind",
    "MissingGradientError",
    "Node",
    "PoolMode",
    "RULE_TABLE",
    "ShapeMismatchError",
    "TensorType",
    "TrainingConfig",
    "UnsupportedOperatorError",
    "Value",
    "Variable",
    "backward_order",
    "dispatch",
    "generate_gradient_nodes",
    "inverse_permutation",
    "post_order",
    "resolve_mode",
    "splat_seed",
    "verify_graph",
    "zero_seed",
]
