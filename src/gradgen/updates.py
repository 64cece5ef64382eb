"""Optimizer update nodes for trainable variables.

For each variable, once every gradient contribution has been accumulated:

1. in ``TRAIN_DEBUG`` mode a variable with a gradient gets an extra save
   node (``_grad_<name>``) so the gradient can be inspected after a run;
2. non-trainable variables stop here;
3. trainable variables get a velocity buffer (void when momentum is off) and
   one ``sgd`` node wiring ``(gradient, parameter, velocity)`` together with
   the hyperparameters.

Only the wiring happens here; the execution layer realizes the step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from .config import CompilationMode, TrainingConfig
from .gradient_map import GradientMap
from .graph.nodes import InitKind, Node, Variable
from .graph.types import TensorType
from .logger import get_gradgen_logger
from .pending import PendingGraph

logger = get_gradgen_logger("updates")


@dataclass
class UpdateResult:
    update_nodes: List[Node] = field(default_factory=list)
    accumulators: List[Variable] = field(default_factory=list)
    debug_saves: List[Node] = field(default_factory=list)


def generate_update_nodes(
    builder: PendingGraph,
    grads: GradientMap,
    variables: Iterable[Variable],
    config: TrainingConfig,
    mode: CompilationMode,
) -> UpdateResult:
    result = UpdateResult()
    for var in variables:
        value = var.result()
        if mode == CompilationMode.TRAIN_DEBUG and grads.has_gradient(value):
            save = builder.create_save(f"_grad_{var.name}", grads.get_gradient(value))
            inspection = builder.node(save.inputs[1].node_id)
            builder.link_gradient_variable(var, inspection)
            result.debug_saves.append(save)

        if not var.trainable:
            continue

        ty = var.type if config.momentum > 0 else TensorType.void()
        velocity = builder.create_variable(
            f"{var.name}.velocity",
            ty,
            init=InitKind.BROADCAST,
            value=0.0,
        )
        sgd = builder.create_sgd(
            var.name,
            grads.get_gradient(value),
            value,
            velocity.result(),
            l1_decay=config.l1_decay,
            l2_decay=config.l2_decay,
            learning_rate=config.learning_rate,
            momentum=config.momentum,
            batch_size=config.batch_size,
        )
        logger.debug("sgd update for %r via %s (velocity %s)", var.name, sgd.inputs[0], ty)
        result.accumulators.append(velocity)
        result.update_nodes.append(sgd)
    return result


__all__ = ["UpdateResult", "generate_update_nodes"]
