
"""Tensor type descriptors shared by every node in a graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np


VOID_DTYPE = "void"


@dataclass(frozen=True)
class TensorType:
    """Shape and element type of a single node output.

    Types are immutable and compared by value, so two outputs with the same
    shape and dtype share a type without any interning.
    """

    shape: Tuple[int, ...]
    dtype: str = "float32"

    def __post_init__(self) -> None:
        shape = tuple(int(d) for d in self.shape)
        if any(d < 0 for d in shape):
            raise ValueError(f"negative dimension in shape {shape}")
        object.__setattr__(self, "shape", shape)

    @classmethod
    def void(cls) -> "TensorType":
        """Return the zero-footprint placeholder type."""
        return cls(shape=(), dtype=VOID_DTYPE)

    @property
    def is_void(self) -> bool:
        return self.dtype == VOID_DTYPE

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        if self.is_void:
            return 0
        return int(np.prod(self.shape, dtype=np.int64))

    def with_shape(self, shape: Iterable[int]) -> "TensorType":
        return TensorType(tuple(shape), self.dtype)

    def __str__(self) -> str:
        if self.is_void:
            return "void"
        dims = "x".join(str(d) for d in self.shape)
        return f"{self.dtype}<{dims}>"


__all__ = ["TensorType", "VOID_DTYPE"]
