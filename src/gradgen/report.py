"""Summary of what one gradient pass added to a graph.

:class:`GradientPassReport` keeps the most detailed view of the pass so
tooling can introspect it: the committed nodes and variables in creation
order, the final gradient of every forward value, and which of the new nodes
are parameter updates or debug saves.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List

import pandas as pd

from .config import CompilationMode, TrainingConfig
from .errors import MissingGradientError
from .graph.nodes import Kind, Node, Value, Variable


@dataclass
class GradientPassReport:
    graph_name: str
    mode: CompilationMode
    config: TrainingConfig
    nodes: List[Node] = field(default_factory=list)
    variables: List[Variable] = field(default_factory=list)
    gradients: Dict[Value, Value] = field(default_factory=dict)
    update_nodes: List[Node] = field(default_factory=list)
    accumulators: List[Variable] = field(default_factory=list)
    debug_saves: List[Node] = field(default_factory=list)

    def gradient_of(self, value: Value | Node) -> Value:
        """Return the final gradient of ``value`` (a node means its slot 0)."""
        if isinstance(value, Node):
            value = value.result()
        try:
            return self.gradients[value]
        except KeyError:
            raise MissingGradientError(value) from None

    def nodes_of_kind(self, kind: Kind) -> List[Node]:
        return [n for n in self.nodes if n.kind is kind]

    def counts_by_kind(self) -> Dict[str, int]:
        return dict(Counter(n.kind.value for n in self.nodes))

    # ------------------------------------------------------------------
    # Tabulation helpers
    # ------------------------------------------------------------------
    def _role_of(self, node: Node) -> str:
        if node.kind is Kind.VARIABLE:
            if any(node is v for v in self.accumulators):
                return "accumulator"
            return "inspection"
        if any(node is n for n in self.update_nodes):
            return "update"
        if any(node is n for n in self.debug_saves):
            return "debug"
        return "backward"

    def summary_table(self) -> pd.DataFrame:
        """Return one row per node or variable the pass created."""
        rows: List[Dict[str, Any]] = []
        for node in sorted([*self.nodes, *self.variables], key=lambda n: n.id):
            rows.append(
                {
                    "id": node.id,
                    "name": node.name,
                    "kind": node.kind.value,
                    "inputs": [str(v) for v in node.inputs],
                    "output_shapes": [t.shape for t in node.output_types],
                    "role": self._role_of(node),
                }
            )
        columns = ["id", "name", "kind", "inputs", "output_shapes", "role"]
        return pd.DataFrame(rows, columns=columns).reset_index(drop=True)

    def __str__(self) -> str:
        return (
            f"gradient pass over '{self.graph_name}' ({self.mode.name}): "
            f"{len(self.nodes)} nodes, {len(self.variables)} variables, "
            f"{len(self.update_nodes)} updates, {len(self.debug_saves)} debug saves"
        )


__all__ = ["GradientPassReport"]
