"""Structural checks over a whole graph."""

from __future__ import annotations

from typing import List

import networkx as nx

from .errors import GraphVerificationError
from .graph.graph import Graph
from .graph.nodes import Kind


def graph_problems(graph: Graph) -> List[str]:
    """Return a description of every structural problem found in ``graph``."""
    problems: List[str] = []
    for index, node in enumerate(graph):
        if node.id != index:
            problems.append(f"{node.describe()} sits at arena index {index}")
        for pos, v in enumerate(node.inputs):
            if v.node_id not in graph:
                problems.append(f"{node.describe()} operand {pos} refers to missing node {v.node_id}")
                continue
            producer = graph.node(v.node_id)
            if not 0 <= v.slot < len(producer.output_types):
                problems.append(f"{node.describe()} operand {pos} reads slot {v.slot} of {producer.describe()}")
        if node.kind is Kind.SAVE and len(node.inputs) == 2 and node.inputs[1].node_id in graph:
            if graph.node(node.inputs[1].node_id).kind is not Kind.VARIABLE:
                problems.append(f"{node.describe()} does not store into a variable")
        if node.kind is Kind.SGD and len(node.inputs) == 3:
            try:
                weight, accumulator = (graph.type_of(v) for v in node.inputs[1:])
            except KeyError:
                continue
            if accumulator != weight and not accumulator.is_void:
                problems.append(f"{node.describe()} accumulator {accumulator} does not match weight {weight}")

    for param_id, grad_id in graph.gradient_variables.items():
        for nid in (param_id, grad_id):
            if nid not in graph or graph.node(nid).kind is not Kind.VARIABLE:
                problems.append(f"gradient variable link {param_id} -> {grad_id} names a non-variable")

    if not problems and not nx.is_directed_acyclic_graph(graph.to_networkx()):
        cycle = nx.find_cycle(graph.to_networkx())
        problems.append(f"graph contains a cycle through nodes {[u for u, _ in cycle]}")
    return problems


def verify_graph(graph: Graph) -> None:
    """Raise :class:`GraphVerificationError` if ``graph`` is malformed."""
    problems = graph_problems(graph)
    if problems:
        raise GraphVerificationError(
            f"graph '{graph.name}' failed verification:\n" + "\n".join(problems)
        )


__all__ = ["graph_problems", "verify_graph"]
