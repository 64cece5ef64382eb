"""Exception types raised while building graphs and gradient passes.

All of these are deterministic: the pass is a pure function of the forward
graph and its configuration, so none of them is worth retrying.
"""

from __future__ import annotations

from typing import Any


class GradGenError(Exception):
    """Base class for every error raised by :mod:`gradgen`."""


class UnsupportedOperatorError(GradGenError, RuntimeError):
    """A visited node has no registered adjoint rule."""

    def __init__(self, node: Any, message: str | None = None) -> None:
        self.node = node
        if message is None:
            describe = getattr(node, "describe", None)
            where = describe() if callable(describe) else repr(node)
            message = f"no adjoint rule registered for {where}"
        super().__init__(message)


class MissingGradientError(GradGenError, ValueError):
    """A rule asked for the gradient of a value nobody contributed to."""

    def __init__(self, value: Any, message: str | None = None) -> None:
        self.value = value
        super().__init__(message or f"no gradient recorded for value {value}")


class ConfigurationError(GradGenError, ValueError):
    """Invalid training configuration, mode or node parameters."""


class ShapeMismatchError(ConfigurationError):
    """Shapes, offsets or permutations that cannot describe a valid node."""


class GraphVerificationError(GradGenError, RuntimeError):
    """The graph violates a structural invariant."""


class GraphMutatedError(GradGenError, RuntimeError):
    """The graph changed underneath a pass before it could commit."""


__all__ = [
    "ConfigurationError",
    "GradGenError",
    "GraphMutatedError",
    "GraphVerificationError",
    "MissingGradientError",
    "ShapeMismatchError",
    "UnsupportedOperatorError",
]
