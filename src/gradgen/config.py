"""Training hyperparameters and compilation modes for a gradient pass."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from enum import IntEnum

from .errors import ConfigurationError


class CompilationMode(IntEnum):
    """What the compiled graph is for."""

    INFER = 0  # forward only, no gradient pass
    TRAIN = 1  # backward graph plus parameter updates
    TRAIN_DEBUG = 2  # TRAIN, and every parameter gradient is saved for inspection


MODE_ENV = "GRADGEN_MODE"


def resolve_mode(default: CompilationMode = CompilationMode.TRAIN) -> CompilationMode:
    """Return ``default`` unless ``GRADGEN_MODE`` forces another mode."""
    forced = os.environ.get(MODE_ENV)
    if forced:
        try:
            return CompilationMode[forced.upper()]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown compilation mode override: {forced}") from exc
    return default


_ENV_KEYS = {
    "learning_rate": ("GRADGEN_LEARNING_RATE", float),
    "momentum": ("GRADGEN_MOMENTUM", float),
    "l1_decay": ("GRADGEN_L1_DECAY", float),
    "l2_decay": ("GRADGEN_L2_DECAY", float),
    "batch_size": ("GRADGEN_BATCH_SIZE", int),
}


@dataclass(frozen=True)
class TrainingConfig:
    """Optimizer hyperparameters baked into the generated update nodes.

    Parameters
    ----------
    learning_rate:
        SGD step size.
    momentum:
        Velocity decay in ``[0, 1)``.  Zero disables the velocity buffers.
    l1_decay, l2_decay:
        Regularization coefficients.
    batch_size:
        Divisor used to normalize the accumulated gradient.
    """

    learning_rate: float = 0.01
    momentum: float = 0.0
    l1_decay: float = 0.0
    l2_decay: float = 0.0
    batch_size: int = 1

    def validate(self) -> "TrainingConfig":
        if not self.learning_rate > 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0.0 <= self.momentum < 1.0:
            raise ConfigurationError(f"momentum must be in [0, 1), got {self.momentum}")
        if not (self.l1_decay >= 0 and self.l2_decay >= 0):
            raise ConfigurationError(
                f"decay coefficients must be non-negative, got l1={self.l1_decay} l2={self.l2_decay}"
            )
        if isinstance(self.batch_size, bool) or int(self.batch_size) != self.batch_size or self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size}")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "TrainingConfig":
        """Build a config from ``GRADGEN_*`` environment variables.

        Explicit keyword ``overrides`` win over the environment, which wins
        over the dataclass defaults.
        """
        values = {}
        for f in fields(cls):
            env_name, cast = _ENV_KEYS[f.name]
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                values[f.name] = cast(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{env_name}={raw!r} is not a valid {cast.__name__}") from exc
        values.update(overrides)
        return cls(**values).validate()


__all__ = ["CompilationMode", "MODE_ENV", "TrainingConfig", "resolve_mode"]
