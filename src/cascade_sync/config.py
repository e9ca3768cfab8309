"""Configuration primitives for the cascade timing engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from .errors import ConfigError

DEFAULT_DECAY_CONSTANT = 0.0302011
DEFAULT_LAYER_COUNT = 33
DEFAULT_PRIMES: tuple[int, ...] = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31)

# Energy level below which the driver logs that the threshold was crossed.
# Only used for that log line.
RESONANCE_THRESHOLD = 0.4041

# Aggregate relative deviation below which a run counts as converged.
DEVIATION_THRESHOLD = 0.10


@dataclass(frozen=True)
class CascadeConfig:
    """Holds tunable constants for a cascade run.

    **Cascade:**
    - decay_constant, layer_count: E(d) = exp(-decay_constant * d) for d < layer_count
    - prime_set: ascending, pairwise distinct primes used for delay modulation

    **Thresholds:**
    - convergence_threshold: energy level reported by the threshold log event
    - deviation_threshold: verdict gate on the aggregate relative deviation

    **Scheduling:**
    - delay_scale_ms: converts an energy value into milliseconds
    - jitter_amplitude_ms: amplitude of the sin/cos phase jitter

    **Run policy:**
    - passes: number of times the full cascade is triggered per run
    - max_retunes: reruns allowed with a perturbed decay constant (0 = log only)
    - retune_seed: seed for the perturbation generator

    **Stimuli:**
    - visual_hold_factor_ms, frame_loop_factor_ms: duration bounds as multiples of energy
    - frame_interval_ms: tick of the per-frame loop
    - compute_iterations, compute_teardown_ms: isolated compute size and teardown timer
    """

    decay_constant: float = DEFAULT_DECAY_CONSTANT
    layer_count: int = DEFAULT_LAYER_COUNT
    prime_set: tuple[int, ...] = DEFAULT_PRIMES
    convergence_threshold: float = RESONANCE_THRESHOLD
    log_every_n: int = 5

    deviation_threshold: float = DEVIATION_THRESHOLD
    delay_scale_ms: float = 1000.0
    jitter_amplitude_ms: float = 50.0

    passes: int = 1
    max_retunes: int = 0
    retune_seed: Optional[int] = None

    visual_hold_factor_ms: float = 500.0
    frame_loop_factor_ms: float = 100.0
    frame_interval_ms: float = 16.0
    compute_iterations: int = 1_000_000
    compute_teardown_ms: float = 100.0

    broadcast_topic: str = "cascade-temporal-channel"
    bridge_storage_key: str = "cascade_bridge"

    _primes: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "prime_set", tuple(int(p) for p in self.prime_set))
        object.__setattr__(self, "_primes", np.asarray(self.prime_set, dtype=np.int64))

    @property
    def primes(self) -> np.ndarray:
        """Prime set as an integer array."""
        return self._primes

    def validate(self) -> None:
        """Raise :class:`ConfigError` if the cascade cannot run with these parameters."""
        if self.layer_count <= 0:
            raise ConfigError(
                f"layer_count must be positive, got {self.layer_count}.\n"
                f"A cascade needs at least one layer."
            )
        if not self.decay_constant > 0:
            raise ConfigError(
                f"decay_constant must be positive, got {self.decay_constant}.\n"
                f"Energy levels must be strictly decreasing."
            )
        if len(self.prime_set) == 0:
            raise ConfigError("prime_set must contain at least one element.")
        if np.any(np.diff(self._primes) <= 0):
            raise ConfigError(
                f"prime_set must be ascending and pairwise distinct, got {list(self.prime_set)}."
            )
        if np.any(self._primes <= 0):
            raise ConfigError(
                f"prime_set elements must be positive, got {list(self.prime_set)}."
            )
        if self.passes <= 0:
            raise ConfigError(f"passes must be at least 1, got {self.passes}.")
        if self.max_retunes < 0:
            raise ConfigError(f"max_retunes must be non-negative, got {self.max_retunes}.")
        if self.log_every_n <= 0:
            raise ConfigError(f"log_every_n must be positive, got {self.log_every_n}.")
        if not self.delay_scale_ms > 0:
            raise ConfigError(f"delay_scale_ms must be positive, got {self.delay_scale_ms}.")
        for name in ("frame_interval_ms", "compute_teardown_ms"):
            value = getattr(self, name)
            if not value > 0:
                raise ConfigError(
                    f"{name} must be positive, got {value}.\n"
                    f"Stimuli must stay bounded in time."
                )
        for name in ("visual_hold_factor_ms", "frame_loop_factor_ms", "compute_iterations"):
            value = getattr(self, name)
            if value < 0:
                raise ConfigError(f"{name} must be non-negative, got {value}.")

    def with_decay(self, decay_constant: float) -> "CascadeConfig":
        """Return a copy of this config with a different decay constant."""
        return replace(self, decay_constant=decay_constant)
