"""Accumulated gradient per forward value."""

from __future__ import annotations

from typing import Dict, Iterator, Tuple

from .errors import MissingGradientError
from .graph.factory import NodeFactory
from .graph.nodes import ArithmeticMode, Value
from .logger import get_gradgen_logger

logger = get_gradgen_logger("gradient_map")


class GradientMap:
    """Map each forward :class:`Value` to its current gradient value.

    A value holds at most one gradient at a time.  A second contribution is
    merged through a new elementwise ``add`` node built on ``builder``; the
    sum replaces the entry while the earlier gradient stays an operand of the
    sum.
    """

    def __init__(self, builder: NodeFactory) -> None:
        self.builder = builder
        self._map: Dict[Value, Value] = {}

    def add_gradient(self, value: Value, grad: Value) -> Value:
        current = self._map.get(value)
        if current is None:
            self._map[value] = grad
            return grad
        total = self.builder.create_arithmetic("updateGrad", current, grad, ArithmeticMode.ADD)
        logger.debug("accumulate gradient of %s: %s + %s -> %s", value, current, grad, total.result())
        self._map[value] = total.result()
        return self._map[value]

    def has_gradient(self, value: Value) -> bool:
        return value in self._map

    def get_gradient(self, value: Value) -> Value:
        try:
            return self._map[value]
        except KeyError:
            try:
                where = self.builder.node(value.node_id).describe()
            except (AttributeError, KeyError):
                where = "an unknown node"
            raise MissingGradientError(
                value,
                f"no gradient recorded for output {value.slot} of {where}; "
                "its consumers never contributed one",
            ) from None

    def __contains__(self, value: object) -> bool:
        return value in self._map

    def __len__(self) -> int:
        return len(self._map)

    def items(self) -> Iterator[Tuple[Value, Value]]:
        return iter(self._map.items())

    def as_dict(self) -> Dict[Value, Value]:
        return dict(self._map)


__all__ = ["GradientMap"]
