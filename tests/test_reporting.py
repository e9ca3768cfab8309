"""Unit tests for reporting.py module."""

import math

import matplotlib

matplotlib.use("Agg")

import pytest

from cascade_sync.cascade import compute_levels
from cascade_sync.config import CascadeConfig
from cascade_sync.reporting import layer_timings, plot_timing, summarize_verdict, timing_frame
from cascade_sync.resonance import ResonanceAnalyzer


@pytest.fixture
def single_pass():
    levels = compute_levels(CascadeConfig())
    analyzer = ResonanceAnalyzer(levels)
    for layer in range(len(levels)):
        analyzer.record(layer, levels.expected_delay_ms(layer))
    return levels, analyzer.samples(), analyzer.finalize()


@pytest.fixture
def two_passes():
    levels = compute_levels(CascadeConfig(layer_count=4))
    analyzer = ResonanceAnalyzer(levels)
    for _ in range(2):
        for layer in range(4):
            analyzer.record(layer, levels.expected_delay_ms(layer) * 1.02)
    return levels, analyzer.samples(), analyzer.finalize()


class TestSummary:
    """Test the verdict table."""

    def test_undefined_aggregate(self, single_pass):
        """Test a single-sample run reports an undefined aggregate."""
        text = summarize_verdict(*single_pass)
        assert "Layer" in text.splitlines()[0]
        assert "Deviation [%]" in text
        assert "Total cascade energy: 21.21" in text
        assert text.endswith("Aggregate deviation: undefined (no layer has two samples) -> not converged")

    def test_defined_aggregate(self, two_passes):
        """Test a qualifying run reports its aggregate as a percentage."""
        text = summarize_verdict(*two_passes)
        assert text.endswith("Aggregate deviation: 2.00% -> converged")


class TestTimingFrame:
    def test_rows(self, single_pass):
        frame = timing_frame(*single_pass)
        assert len(frame) == 33
        assert list(frame.columns) == [
            "energy",
            "expected_ms",
            "mean_observed_ms",
            "n_samples",
            "deviation",
        ]
        assert frame.loc[0, "expected_ms"] == pytest.approx(1000.0)
        assert frame["deviation"].isna().all()

    def test_deviation_per_layer(self, two_passes):
        rows = layer_timings(*two_passes)
        assert [row.n_samples for row in rows] == [2, 2, 2, 2]
        assert all(row.deviation == pytest.approx(0.02) for row in rows)
        assert not math.isnan(rows[0].mean_observed_ms)


class TestPlot:
    def test_writes_file(self, tmp_path, two_passes):
        """Test the timing plot is saved to the requested path."""
        levels, samples, _ = two_passes
        out = plot_timing(levels, samples, tmp_path / "timing.png")
        assert out.exists()
        assert out.stat().st_size > 0
