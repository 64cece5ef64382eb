"""Scratch overlay that buffers new nodes until a pass commits them."""

from __future__ import annotations

from typing import Dict, List

from .errors import GraphMutatedError
from .graph import Graph, NodeFactory
from .graph.nodes import Node, Value, Variable
from .graph.types import TensorType


class PendingGraph(NodeFactory):
    """Read-through view of ``graph`` plus a list of not-yet-added nodes.

    New node ids continue the graph's arena, so values created here are
    already the values they will be once committed.  Nothing touches the
    underlying graph until :meth:`commit`; dropping the overlay discards the
    whole pass.
    """

    synthesizing = True

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self.base = len(graph)
        self._pending: List[Node] = []
        self._gradient_links: Dict[int, int] = {}
        self.committed = False

    def _allocate_id(self) -> int:
        return self.base + len(self._pending)

    def _emit(self, node: Node) -> Node:
        if self.committed:
            raise RuntimeError("cannot add nodes to a committed pass")
        self._pending.append(node)
        return node

    def node(self, node_id: int) -> Node:
        if node_id < self.base:
            return self.graph.node(node_id)
        try:
            return self._pending[node_id - self.base]
        except IndexError:
            raise KeyError(f"no pending node with id {node_id}") from None

    def type_of(self, value: Value) -> TensorType:
        node = self.node(value.node_id)
        try:
            return node.output_types[value.slot]
        except IndexError:
            raise KeyError(f"{node.describe()} has no output slot {value.slot}") from None

    def link_gradient_variable(self, param: Variable, inspection: Variable) -> None:
        self._gradient_links[param.id] = inspection.id

    def commit(self) -> List[Node]:
        """Append every buffered node to the graph in creation order."""
        if self.committed:
            raise RuntimeError("pass already committed")
        if len(self.graph) != self.base:
            raise GraphMutatedError(
                f"graph '{self.graph.name}' grew from {self.base} to {len(self.graph)} nodes during the pass"
            )
        self.graph.extend(self._pending)
        self.graph.gradient_variables.update(self._gradient_links)
        self.committed = True
        return list(self._pending)


__all__ = ["PendingGraph"]
