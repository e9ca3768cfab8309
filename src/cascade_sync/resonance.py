"""Resonance analysis: observed layer delays versus the theoretical cascade.

The analyzer is a two-state machine. While ``Collecting`` it accepts delay
samples per layer. ``finalize()`` moves it to ``Finalized`` once every layer
has at least one sample and caches the verdict.

For every layer with at least two samples:

    expected  = E(layer) * 1000
    deviation = |mean(samples) - expected| / expected

The aggregate deviation is the mean over qualifying layers. When no layer
qualifies the aggregate is undefined (NaN) and the run is not converged.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .cascade import CascadeLevels
from .config import DEVIATION_THRESHOLD
from .errors import CascadeError

MIN_SAMPLES_PER_LAYER = 2


class AnalyzerState(Enum):
    COLLECTING = "collecting"
    FINALIZED = "finalized"


class AnalyzerStateError(CascadeError, RuntimeError):
    """An analyzer transition was attempted from the wrong state."""


@dataclass(frozen=True)
class ResonanceVerdict:
    """Outcome of one cascade run.

    Attributes:
        per_layer_deviation: Relative deviation for each qualifying layer.
        aggregate_deviation: Mean of the per-layer deviations (NaN if none qualify).
        converged: True when the aggregate deviation is below the threshold.
    """

    per_layer_deviation: Mapping[int, float]
    aggregate_deviation: float
    converged: bool
    threshold: float = DEVIATION_THRESHOLD
    qualifying_layers: Tuple[int, ...] = field(default=())

    @property
    def defined(self) -> bool:
        return not math.isnan(self.aggregate_deviation)


class ResonanceAnalyzer:
    """Accumulates per-layer delay samples and computes a :class:`ResonanceVerdict`."""

    def __init__(
        self,
        levels: CascadeLevels,
        scale_ms: float = 1000.0,
        threshold: float = DEVIATION_THRESHOLD,
    ) -> None:
        self.levels = levels
        self.scale_ms = scale_ms
        self.threshold = threshold
        self._samples: Dict[int, List[float]] = {}
        self._state = AnalyzerState.COLLECTING
        self._verdict: Optional[ResonanceVerdict] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> AnalyzerState:
        return self._state

    @property
    def layer_count(self) -> int:
        return len(self.levels)

    def samples(self) -> Dict[int, Tuple[float, ...]]:
        """Snapshot of the frequency samples, layer -> observed delays in order."""
        with self._lock:
            return {layer: tuple(values) for layer, values in sorted(self._samples.items())}

    def record(self, layer_index: int, observed_delay: float) -> None:
        """Append one observed delay (ms) for ``layer_index``."""
        if not 0 <= layer_index < self.layer_count:
            raise ValueError(
                f"layer_index {layer_index} out of range for a cascade of {self.layer_count} layers."
            )
        with self._lock:
            if self._state is not AnalyzerState.COLLECTING:
                raise AnalyzerStateError("Cannot record samples after the analyzer was finalized.")
            self._samples.setdefault(layer_index, []).append(float(observed_delay))

    def missing_layers(self) -> List[int]:
        with self._lock:
            return [layer for layer in range(self.layer_count) if not self._samples.get(layer)]

    def finalize(self) -> ResonanceVerdict:
        """Compute the verdict. Repeated calls return the cached verdict."""
        with self._lock:
            if self._verdict is not None:
                return self._verdict
            missing = [layer for layer in range(self.layer_count) if not self._samples.get(layer)]
            if missing:
                raise AnalyzerStateError(
                    f"Cannot finalize: {len(missing)} layer(s) have no samples yet "
                    f"(first missing layer: {missing[0]})."
                )

            per_layer: Dict[int, float] = {}
            for layer, values in sorted(self._samples.items()):
                if len(values) < MIN_SAMPLES_PER_LAYER:
                    continue
                expected = self.levels.expected_delay_ms(layer, self.scale_ms)
                per_layer[layer] = float(abs(np.mean(values) - expected) / expected)

            if per_layer:
                aggregate = float(np.mean(list(per_layer.values())))
                converged = aggregate < self.threshold
            else:
                aggregate = math.nan
                converged = False

            self._verdict = ResonanceVerdict(
                per_layer_deviation=MappingProxyType(per_layer),
                aggregate_deviation=aggregate,
                converged=converged,
                threshold=self.threshold,
                qualifying_layers=tuple(per_layer),
            )
            self._state = AnalyzerState.FINALIZED
            return self._verdict
