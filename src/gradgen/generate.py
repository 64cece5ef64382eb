"""Reverse-mode gradient generation for a static forward graph.

:func:`generate_gradient_nodes` appends to a forward graph everything needed
to train it:

* the backward graph, one adjoint rule per forward node visited in reverse
  topological order so every rule sees the fully accumulated gradient of its
  outputs;
* an ``sgd`` update node (and velocity buffer) for every trainable variable;
* in ``TRAIN_DEBUG`` mode, a save node exposing each parameter gradient.

All new nodes are buffered in a :class:`~gradgen.pending.PendingGraph` and
appended in one step once the whole pass succeeded.  A failing pass leaves
the graph exactly as it was.
"""

from __future__ import annotations

import os
from typing import Iterable

from .config import CompilationMode, TrainingConfig
from .errors import ConfigurationError, GradGenError, UnsupportedOperatorError
from .gradient_map import GradientMap
from .graph.graph import Graph
from .graph.nodes import Kind, Node
from .logger import get_gradgen_logger
from .pending import PendingGraph
from .report import GradientPassReport
from .rules import ADJOINT_REGISTRY, AdjointContext, AdjointRegistry
from .seeds import SeedFn, zero_seed
from .traversal import post_order
from .updates import generate_update_nodes
from .verify import verify_graph

logger = get_gradgen_logger("generate")

VERIFY_ENV = "GRADGEN_VERIFY"


def _verify_from_env() -> bool:
    return os.environ.get(VERIFY_ENV, "0") not in ("0", "false", "False", "")


def dispatch(
    nodes: Iterable[Node],
    ctx: AdjointContext,
    registry: AdjointRegistry = ADJOINT_REGISTRY,
) -> None:
    """Apply one adjoint rule per non-variable node, in the given order."""
    for node in nodes:
        if node.kind is Kind.VARIABLE:
            continue
        rule = registry.lookup(node)
        logger.debug("adjoint of %s", node.describe())
        rule(node, ctx)


def generate_gradient_nodes(
    graph: Graph,
    config: TrainingConfig | None = None,
    mode: CompilationMode = CompilationMode.TRAIN,
    *,
    seed: SeedFn | None = None,
    verify: bool | None = None,
    registry: AdjointRegistry | None = None,
) -> GradientPassReport:
    """Append the backward graph and parameter updates to ``graph``.

    Parameters
    ----------
    graph:
        Forward graph; only ever appended to.
    config:
        Optimizer hyperparameters, :class:`TrainingConfig` defaults if omitted.
    mode:
        ``TRAIN`` or ``TRAIN_DEBUG``.
    seed:
        Gradient planted at every save node; zeros unless given.
    verify:
        Run :func:`~gradgen.verify.verify_graph` after committing.  ``None``
        reads ``GRADGEN_VERIFY``.
    registry:
        Adjoint rules to use instead of :data:`~gradgen.rules.ADJOINT_REGISTRY`.
    """
    config = (config if config is not None else TrainingConfig()).validate()
    try:
        mode = CompilationMode(mode)
    except ValueError as exc:
        raise ConfigurationError(f"unknown compilation mode {mode!r}") from exc
    if mode == CompilationMode.INFER:
        raise ConfigurationError("gradient generation needs TRAIN or TRAIN_DEBUG, got INFER")
    if registry is None:
        registry = ADJOINT_REGISTRY
    if verify is None:
        verify = _verify_from_env()

    pending = PendingGraph(graph)
    grads = GradientMap(pending)
    ctx = AdjointContext(builder=pending, grads=grads, seed=seed or zero_seed)

    try:
        order = post_order(graph)
        missing = registry.missing(order)
        if missing:
            lines = [f"missing adjoint for kind='{m['kind']}' name='{m['name']}' id={m['node_id']}" for m in missing]
            raise UnsupportedOperatorError(
                graph.node(missing[0]["node_id"]),
                "no adjoint rule for reachable nodes:\n" + "\n".join(lines),
            )
        dispatch(reversed(order), ctx, registry)
        updates = generate_update_nodes(pending, grads, graph.variables, config, mode)
        committed = pending.commit()
    except GradGenError as exc:
        logger.error("gradient pass over '%s' aborted, graph left unchanged: %s", graph.name, exc)
        raise

    report = GradientPassReport(
        graph_name=graph.name,
        mode=mode,
        config=config,
        nodes=[n for n in committed if n.kind is not Kind.VARIABLE],
        variables=[n for n in committed if n.kind is Kind.VARIABLE],
        gradients=grads.as_dict(),
        update_nodes=updates.update_nodes,
        accumulators=updates.accumulators,
        debug_saves=updates.debug_saves,
    )
    logger.info("%s", report)

    if verify:
        verify_graph(graph)
    return report


__all__ = ["VERIFY_ENV", "dispatch", "generate_gradient_nodes"]
