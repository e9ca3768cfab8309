"""Reporting utilities for cascade runs."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from tabulate import tabulate

from .cascade import CascadeLevels
from .resonance import ResonanceVerdict


@dataclass(frozen=True)
class LayerTiming:
    layer: int
    energy: float
    expected_ms: float
    mean_observed_ms: float
    n_samples: int
    deviation: float


def layer_timings(
    levels: CascadeLevels,
    samples: Mapping[int, Sequence[float]],
    verdict: ResonanceVerdict,
    scale_ms: float = 1000.0,
) -> List[LayerTiming]:
    """Per-layer timing rows; deviation is NaN for layers excluded from the verdict."""
    rows: List[LayerTiming] = []
    for layer in range(len(levels)):
        values = samples.get(layer, ())
        rows.append(
            LayerTiming(
                layer=layer,
                energy=levels[layer],
                expected_ms=levels.expected_delay_ms(layer, scale_ms),
                mean_observed_ms=float(np.mean(values)) if len(values) else math.nan,
                n_samples=len(values),
                deviation=float(verdict.per_layer_deviation.get(layer, math.nan)),
            )
        )
    return rows


def timing_frame(
    levels: CascadeLevels,
    samples: Mapping[int, Sequence[float]],
    verdict: ResonanceVerdict,
    scale_ms: float = 1000.0,
) -> pd.DataFrame:
    rows = layer_timings(levels, samples, verdict, scale_ms)
    return pd.DataFrame(
        {
            "layer": [row.layer for row in rows],
            "energy": [row.energy for row in rows],
            "expected_ms": [row.expected_ms for row in rows],
            "mean_observed_ms": [row.mean_observed_ms for row in rows],
            "n_samples": [row.n_samples for row in rows],
            "deviation": [row.deviation for row in rows],
        }
    ).set_index("layer")


def summarize_verdict(
    levels: CascadeLevels,
    samples: Mapping[int, Sequence[float]],
    verdict: ResonanceVerdict,
    scale_ms: float = 1000.0,
) -> str:
    table_rows: list[tuple] = []
    for row in layer_timings(levels, samples, verdict, scale_ms):
        table_rows.append(
            (
                row.layer,
                f"{row.energy:.4f}",
                f"{row.expected_ms:.1f}",
                f"{row.mean_observed_ms:.1f}",
                row.n_samples,
                "-" if math.isnan(row.deviation) else f"{row.deviation * 100.0:.2f}",
            )
        )
    table = tabulate(
        table_rows,
        headers=[
            "Layer",
            "Energy",
            "Expected [ms]",
            "Mean observed [ms]",
            "N",
            "Deviation [%]",
        ],
        tablefmt="github",
    )
    if verdict.defined:
        aggregate = f"{verdict.aggregate_deviation * 100.0:.2f}%"
    else:
        aggregate = "undefined (no layer has two samples)"
    status = "converged" if verdict.converged else "not converged"
    overall = (
        f"Total cascade energy: {levels.total_energy:.2f}\n"
        f"Aggregate deviation: {aggregate} -> {status}"
    )
    return table + "\n" + overall


def plot_timing(
    levels: CascadeLevels,
    samples: Mapping[int, Sequence[float]],
    out_path: str | Path,
    scale_ms: float = 1000.0,
) -> Path:
    """Plot expected versus observed delay per layer and save it to ``out_path``."""
    out_path = Path(out_path)
    layers = np.arange(len(levels))
    expected = levels.energies * scale_ms

    plt.figure(figsize=(7.5, 5.0))
    plt.plot(layers, expected, "-", label="Expected E(d)·1000", linewidth=2.0)
    for layer, values in sorted(samples.items()):
        plt.scatter([layer] * len(values), values, color="tab:orange", s=12, alpha=0.7)
    plt.scatter([], [], color="tab:orange", s=12, label="Observed")
    plt.xlabel("Layer d")
    plt.ylabel("Delay [ms]")
    plt.title(f"Cascade timing (alpha={levels.decay_constant:.7f}, L={len(levels)})")
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
    return out_path
