"""Static tensor graph: an append-only arena of nodes and variables."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List

import networkx as nx

from .factory import NodeFactory
from .nodes import Kind, Node, Value, Variable
from .types import TensorType


class Graph(NodeFactory):
    """Append-only arena of :class:`Node` records.

    A node's ``id`` is its arena index.  Nodes are never removed or edited
    once added, so ``Value(node_id, slot)`` stays valid for the lifetime of
    the graph.
    """

    def __init__(self, name: str = "graph") -> None:
        self.name = name
        self._arena: List[Node] = []
        # parameter variable id -> inspection variable id (TrainDebug)
        self.gradient_variables: Dict[int, int] = {}

    # ------------------------------------------------------------------
    # arena access
    # ------------------------------------------------------------------
    def _allocate_id(self) -> int:
        return len(self._arena)

    def _emit(self, node: Node) -> Node:
        if node.id != len(self._arena):
            raise ValueError(f"node id {node.id} does not extend arena of size {len(self._arena)}")
        self._arena.append(node)
        return node

    def extend(self, nodes: Iterable[Node]) -> None:
        """Append pre-built nodes whose ids continue the arena."""
        for node in nodes:
            self._emit(node)

    def __len__(self) -> int:
        return len(self._arena)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._arena)

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, int) and 0 <= node_id < len(self._arena)

    def node(self, node_id: int) -> Node:
        try:
            return self._arena[node_id]
        except IndexError:
            raise KeyError(f"no node with id {node_id} in graph '{self.name}'") from None

    def type_of(self, value: Value) -> TensorType:
        node = self.node(value.node_id)
        try:
            return node.output_types[value.slot]
        except IndexError:
            raise KeyError(f"{node.describe()} has no output slot {value.slot}") from None

    @property
    def nodes(self) -> List[Node]:
        """Operator nodes (everything but variables) in insertion order."""
        return [n for n in self._arena if n.kind is not Kind.VARIABLE]

    @property
    def variables(self) -> List[Variable]:
        return [n for n in self._arena if n.kind is Kind.VARIABLE]

    # ------------------------------------------------------------------
    # export utilities
    # ------------------------------------------------------------------
    def to_networkx(self) -> nx.DiGraph:
        """Return the dependency structure as a :class:`networkx.DiGraph`.

        Vertices are node ids carrying ``kind``, ``name`` and ``synthesized``.
        An edge ``u -> v`` means ``v`` consumes an output of ``u``; its
        ``uses`` attribute lists ``(slot, arg_pos)`` pairs since one producer
        may feed several operand positions of the same consumer.
        """
        g = nx.DiGraph()
        for node in self._arena:
            g.add_node(
                node.id,
                kind=node.kind,
                name=node.name,
                synthesized=node.synthesized,
                trainable=getattr(node, "trainable", False),
            )
        for node in self._arena:
            for pos, v in enumerate(node.inputs):
                if g.has_edge(v.node_id, node.id):
                    g.edges[v.node_id, node.id]["uses"].append((v.slot, pos))
                else:
                    g.add_edge(v.node_id, node.id, uses=[(v.slot, pos)])
        return g

    def dump(self, max_nodes: int | None = None) -> str:
        """Return a human readable listing of the arena."""
        lines = [f"graph '{self.name}': {len(self.variables)} variables, {len(self.nodes)} nodes"]
        shown = self._arena if max_nodes is None else self._arena[:max_nodes]
        for node in shown:
            marker = "*" if node.synthesized else " "
            lines.append(f"{marker} {node!r}")
        if max_nodes is not None and len(self._arena) > max_nodes:
            lines.append(f"... ({len(self._arena) - max_nodes} more nodes)")
        return "\n".join(lines)


__all__ = ["Graph"]
