"""Exponential-decay energy cascade.

Layer ``d`` carries energy ``E(d) = exp(-decay_constant * d)`` for
``d = 0 .. layer_count - 1``. The sequence is strictly decreasing, starts at
exactly 1 and stays in (0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .config import CascadeConfig


@dataclass(frozen=True)
class CascadeLevels:
    """Immutable energy levels of one cascade run.

    Attributes:
        decay_constant: Decay constant the levels were computed with.
        energies: Read-only array of per-layer energy values.
        total_energy: Sum of all levels.
    """

    decay_constant: float
    energies: np.ndarray
    total_energy: float
    _cumulative: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.energies.setflags(write=False)
        cumulative = np.cumsum(self.energies)
        cumulative.setflags(write=False)
        object.__setattr__(self, "_cumulative", cumulative)

    def __len__(self) -> int:
        return int(self.energies.size)

    def __getitem__(self, layer: int) -> float:
        return float(self.energies[layer])

    def cumulative(self, layer: int) -> float:
        """Sum of energies of layers 0..layer inclusive."""
        return float(self._cumulative[layer])

    def expected_delay_ms(self, layer: int, scale_ms: float = 1000.0) -> float:
        """Theoretical delay of a layer: its energy expressed in milliseconds."""
        return self[layer] * scale_ms

    def as_list(self) -> list[float]:
        return [float(e) for e in self.energies]


def compute_levels(config: CascadeConfig) -> CascadeLevels:
    """Compute the energy cascade for ``config``.

    Raises:
        ConfigError: if ``layer_count <= 0``, ``decay_constant <= 0`` or the
            prime set is invalid.
    """
    config.validate()
    depth = np.arange(config.layer_count, dtype=np.float64)
    energies = np.exp(-config.decay_constant * depth)
    return CascadeLevels(
        decay_constant=config.decay_constant,
        energies=energies,
        total_energy=float(np.sum(energies)),
    )
