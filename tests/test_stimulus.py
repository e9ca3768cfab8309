"""Unit tests for stimulus.py module."""

import asyncio
import math
from concurrent.futures import Executor, Future

import numpy as np
import pytest

from cascade_sync.config import CascadeConfig
from cascade_sync.errors import ConfigError
from cascade_sync.eventlog import EventLog
from cascade_sync.stimulus import (
    AsyncStimulusDispatcher,
    NullStimulusDispatcher,
    PressureMarker,
    PressureSurface,
    resonance_pressure,
)


class StalledExecutor(Executor):
    """Executor whose work never finishes."""

    def submit(self, fn, *args, **kwargs):
        return Future()


def make_dispatcher(fake_clock=None, **kwargs):
    config = kwargs.pop("config", CascadeConfig(compute_iterations=1000))
    if fake_clock is not None:
        kwargs.setdefault("sleep", fake_clock.sleep)
    return AsyncStimulusDispatcher(config, log=EventLog(verbosity=0), **kwargs)


class TestResonancePressure:
    """Test the isolated compute kernel."""

    def test_matches_direct_sum(self):
        """Test the vectorised sum matches the scalar definition."""
        decay = 0.0302011
        result = resonance_pressure(decay, 4, 500)
        energy = math.exp(-decay * 4)
        steps = int(energy * 500)
        expected = sum(math.sin(i * decay) for i in range(steps))
        assert result.layer == 4
        assert result.energy == pytest.approx(energy)
        assert result.pressure == pytest.approx(expected)

    def test_zero_steps(self):
        """Test no iterations gives zero pressure."""
        assert resonance_pressure(0.1, 0, 0).pressure == 0.0


class TestVisualStimulus:
    """Test fire_visual."""

    def test_marker_lifecycle(self, fake_clock):
        """Test the marker is shown, transformed and removed."""
        surface = PressureSurface()
        dispatcher = make_dispatcher(fake_clock, surface=surface)

        async def runner():
            dispatcher.fire_visual(3, 0.5)
            await asyncio.sleep(0)
            assert len(surface.markers) == 1
            marker = surface.markers[0]
            await dispatcher.drain()
            return marker

        marker = asyncio.run(runner())
        assert surface.markers == []
        assert surface.peak == 1
        assert marker.size == pytest.approx(50.0)
        assert marker.rotation == pytest.approx(3 * 11 + 180)
        assert marker.scale == pytest.approx(1.5)
        # Hold time is bounded by energy * 500 ms plus one frame.
        assert fake_clock.sleeps == pytest.approx([0.016, 0.25])

    def test_returns_immediately(self, fake_clock):
        """Test firing does not run the stimulus inline."""
        surface = PressureSurface()
        dispatcher = make_dispatcher(fake_clock, surface=surface)

        async def runner():
            dispatcher.fire_visual(0, 1.0)
            assert surface.markers == []
            assert dispatcher.fired == 1
            await dispatcher.drain()

        asyncio.run(runner())


class TestFrameLoop:
    """Test fire_frame_loop."""

    def test_zero_frame_interval_rejected(self):
        """Test a dispatcher cannot be built with a frame loop that never ends."""
        with pytest.raises(ConfigError, match="frame_interval_ms"):
            AsyncStimulusDispatcher(CascadeConfig(frame_interval_ms=0))

    def test_opacity_updates_bounded(self, fake_clock):
        """Test the loop runs for energy * 100 ms worth of frames."""
        surface = PressureSurface()
        marker = PressureMarker(layer=0, size=1.0, rotation=0.0, opacity=1.0)
        surface.add(marker)
        dispatcher = make_dispatcher(fake_clock, surface=surface)

        async def runner():
            dispatcher.fire_frame_loop(0, 1.0)
            await dispatcher.drain()

        asyncio.run(runner())
        # 100 ms at 16 ms per frame -> frames at 0, 16, ..., 96
        assert len(fake_clock.sleeps) == 7
        assert marker.opacity == pytest.approx(math.sin(96 * 0.01) * 0.5 + 0.5)


class TestIsolatedCompute:
    """Test fire_isolated_compute."""

    def test_result_is_logged(self):
        """Test a finished computation is delivered to the log only."""
        config = CascadeConfig(compute_iterations=1000, compute_teardown_ms=5000)
        dispatcher = make_dispatcher(config=config)

        async def runner():
            dispatcher.fire_isolated_compute(2)
            await dispatcher.drain()

        asyncio.run(runner())
        assert len(dispatcher.compute_results) == 1
        result = dispatcher.compute_results[0]
        assert result.layer == 2
        steps = int(math.exp(-0.0302011 * 2) * 1000)
        assert result.pressure == pytest.approx(float(np.sum(np.sin(np.arange(steps) * 0.0302011))))
        assert dispatcher.log.last("compute_result")["layer"] == 2

    def test_late_result_dropped_at_teardown(self):
        """Test a result not ready within the teardown timer is dropped."""
        config = CascadeConfig(compute_teardown_ms=10)
        dispatcher = make_dispatcher(config=config, executor=StalledExecutor())

        async def runner():
            dispatcher.fire_isolated_compute(5)
            await dispatcher.drain()

        asyncio.run(runner())
        assert dispatcher.compute_results == []
        assert dispatcher.log.last("compute_dropped") == {"event": "compute_dropped", "layer": 5}

    def test_unavailable_primitive_is_swallowed(self):
        """Test a missing compute primitive only produces a debug event."""
        dispatcher = make_dispatcher(compute_available=False)

        async def runner():
            dispatcher.fire_isolated_compute(1)
            await dispatcher.drain()

        asyncio.run(runner())
        failure = dispatcher.log.last("stimulus_failed")
        assert failure["stimulus"] == "isolated_compute"
        assert "unavailable" in failure["error"]
        assert dispatcher.fired == 0


class TestFailureContainment:
    """Test stimuli never raise into the caller."""

    def test_no_event_loop(self):
        """Test firing outside an event loop is logged, not raised."""
        dispatcher = make_dispatcher()
        dispatcher.fire_visual(0, 1.0)
        dispatcher.fire_frame_loop(0, 1.0)
        dispatcher.fire_isolated_compute(0)
        failures = dispatcher.log.named("stimulus_failed")
        assert [f["stimulus"] for f in failures] == ["visual", "frame_loop", "isolated_compute"]

    def test_failing_task_is_reaped(self):
        """Test an exception inside a running stimulus is logged at debug level."""

        async def broken_sleep(seconds):
            raise RuntimeError("surface lost")

        dispatcher = make_dispatcher(sleep=broken_sleep)

        async def runner():
            dispatcher.fire_visual(2, 0.9)
            await dispatcher.drain()
            await asyncio.sleep(0)

        asyncio.run(runner())
        failure = dispatcher.log.last("stimulus_failed")
        assert failure == {"event": "stimulus_failed", "stimulus": "visual", "layer": 2, "error": "surface lost"}
        assert dispatcher.surface.markers == []

    def test_null_dispatcher(self):
        """Test the null dispatcher accepts every call."""
        dispatcher = NullStimulusDispatcher()
        dispatcher.fire_visual(0, 1.0)
        dispatcher.fire_isolated_compute(0)
        dispatcher.fire_frame_loop(0, 1.0)
