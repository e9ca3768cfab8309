"""Prime-modulated delay scheduling.

The delay of a layer is its energy scaled by the first prime that divides
the layer index, plus a phase jitter taken from an explicit clock sample:

    prime_factor = first p in prime_set with layer % p == 0, else 1
    base_delay   = energy * prime_factor * 1000
    jitter       = 50 * (sin(clock) if layer is even else cos(clock))
    delay        = max(1, base_delay + jitter)

The clock sample is an argument so the function stays pure.
"""

from __future__ import annotations

import math

from .config import CascadeConfig

MIN_DELAY_MS = 1.0


def prime_factor(layer_index: int, config: CascadeConfig) -> int:
    """Return the first prime in ``config.prime_set`` dividing ``layer_index``, else 1.

    Layer 0 is divisible by every prime, so it always maps to the smallest one.
    """
    for prime in config.prime_set:
        if layer_index % prime == 0:
            return prime
    return 1


def phase(layer_index: int, clock_sample: float) -> float:
    """Sine phase on even layers, cosine phase on odd layers."""
    if layer_index % 2 == 0:
        return math.sin(clock_sample)
    return math.cos(clock_sample)


def compute_delay(layer_index: int, energy: float, config: CascadeConfig, clock_sample: float) -> float:
    """Return the wait duration for a layer in milliseconds (always >= 1).

    Args:
        layer_index: Zero-based layer index.
        energy: Energy level of the layer.
        config: Cascade configuration providing the prime set and scales.
        clock_sample: Clock reading in seconds supplied by the caller.
    """
    base_delay = energy * prime_factor(layer_index, config) * config.delay_scale_ms
    jitter = phase(layer_index, clock_sample) * config.jitter_amplitude_ms
    return max(MIN_DELAY_MS, base_delay + jitter)
