"""Global post-order traversal of a forward graph."""

from __future__ import annotations

from typing import Iterable, Iterator, List, Set, Tuple

from .errors import GraphVerificationError
from .graph.nodes import Node, Value


def default_roots(graph) -> List[Node]:
    """Every variable, then every node the forward builder created.

    Nodes synthesized by earlier gradient passes are left out, so a new pass
    only ever sees the forward graph.
    """
    roots: List[Node] = list(graph.variables)
    roots.extend(n for n in graph.nodes if not n.synthesized)
    return roots


def post_order(graph, roots: Iterable[Node] | None = None) -> List[Node]:
    """Return nodes reachable from ``roots`` with every input before its user.

    The walk is an explicit-stack depth first search, so deep graphs do not
    hit the interpreter's recursion limit.  Ties between independent
    subgraphs follow root order but callers must not rely on that.
    """
    if roots is None:
        roots = default_roots(graph)

    visited: Set[int] = set()
    on_stack: Set[int] = set()
    order: List[Node] = []

    for root in roots:
        if root.id in visited:
            continue
        visited.add(root.id)
        on_stack.add(root.id)
        stack: List[Tuple[Node, Iterator[Value]]] = [(root, iter(root.inputs))]
        while stack:
            node, operands = stack[-1]
            for v in operands:
                if v.node_id in on_stack:
                    raise GraphVerificationError(
                        f"cycle detected: {node.describe()} depends on node {v.node_id} which is still being visited"
                    )
                if v.node_id in visited:
                    continue
                child = graph.node(v.node_id)
                visited.add(child.id)
                on_stack.add(child.id)
                stack.append((child, iter(child.inputs)))
                break
            else:
                stack.pop()
                on_stack.discard(node.id)
                order.append(node)
    return order


def backward_order(graph, roots: Iterable[Node] | None = None) -> List[Node]:
    """Reverse of :func:`post_order`: every user before its producers."""
    return list(reversed(post_order(graph, roots)))


def is_topological(order: Iterable[Node]) -> bool:
    """Return ``True`` when every input in ``order`` precedes its user."""
    pos = {}
    nodes = list(order)
    for i, node in enumerate(nodes):
        pos[node.id] = i
    for node in nodes:
        for v in node.inputs:
            if v.node_id in pos and pos[v.node_id] > pos[node.id]:
                return False
    return True


__all__ = ["backward_order", "default_roots", "is_topological", "post_order"]
