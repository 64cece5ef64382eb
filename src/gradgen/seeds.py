"""Seed gradients planted at terminal outputs.

A seed is a callable ``seed(builder, save_node) -> Value`` returning the
gradient that enters the backward graph at a save node.  The default plants
zeros; a loss that should drive training wants ``splat_seed(1.0)``.
"""

from __future__ import annotations

from typing import Callable

from .graph.factory import NodeFactory
from .graph.nodes import Node, Value

SeedFn = Callable[[NodeFactory, Node], Value]


def _saved_type(builder: NodeFactory, save: Node):
    return builder.type_of(save.inputs[0])


def zero_seed(builder: NodeFactory, save: Node) -> Value:
    """Plant a zero tensor shaped like the saved value."""
    return builder.create_zero(save.name, _saved_type(builder, save)).result()


def splat_seed(value: float) -> SeedFn:
    """Return a seed that fills the gradient with ``value``."""

    def seed(builder: NodeFactory, save: Node) -> Value:
        return builder.create_splat(save.name, _saved_type(builder, save), value).result()

    seed.__name__ = f"splat_seed({value!r})"
    return seed


__all__ = ["SeedFn", "splat_seed", "zero_seed"]
