"""Fire-and-forget background stimuli triggered once per layer.

Each ``fire_*`` call returns immediately and starts a bounded background
task. Nothing a stimulus produces feeds back into the cascade: the only
output is a pressure marker on a :class:`PressureSurface` and, for isolated
compute, a :class:`~cascade_sync.messages.ComputeResult` that is logged.
Failures are logged at debug level and never raised to the caller.
"""

from __future__ import annotations

import asyncio
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Awaitable, Callable, Coroutine, List, Optional, Protocol, Set

import numpy as np

from .config import CascadeConfig
from .errors import StimulusError
from .eventlog import EventLog
from .messages import ComputeResult

Sleep = Callable[[float], Awaitable[None]]


class StimulusDispatcher(Protocol):
    def fire_visual(self, layer_index: int, energy: float) -> None: ...

    def fire_isolated_compute(self, layer_index: int) -> None: ...

    def fire_frame_loop(self, layer_index: int, energy: float) -> None: ...


class NullStimulusDispatcher:
    """Dispatcher that starts nothing."""

    def fire_visual(self, layer_index: int, energy: float) -> None:
        pass

    def fire_isolated_compute(self, layer_index: int) -> None:
        pass

    def fire_frame_loop(self, layer_index: int, energy: float) -> None:
        pass


@dataclass
class PressureMarker:
    layer: int
    size: float
    rotation: float
    opacity: float
    scale: float = 1.0


class PressureSurface:
    """Stand-in for a rendering surface: the set of currently shown markers."""

    def __init__(self) -> None:
        self.markers: List[PressureMarker] = []
        self.peak = 0

    def add(self, marker: PressureMarker) -> None:
        self.markers.append(marker)
        self.peak = max(self.peak, len(self.markers))

    def remove(self, marker: PressureMarker) -> None:
        if marker in self.markers:
            self.markers.remove(marker)


def resonance_pressure(decay_constant: float, layer_index: int, iterations: int) -> ComputeResult:
    """CPU-bound pressure sum ``sum(sin(i * decay))`` over ``energy * iterations`` steps."""
    energy = math.exp(-decay_constant * layer_index)
    steps = int(energy * iterations)
    pressure = float(np.sum(np.sin(np.arange(steps, dtype=np.float64) * decay_constant)))
    return ComputeResult(layer=layer_index, energy=energy, pressure=pressure)


class AsyncStimulusDispatcher:
    """Runs stimuli as asyncio tasks on the current event loop.

    Args:
        config: Cascade configuration providing the duration bounds. Validated on
            construction so every stimulus stays bounded.
        log: Event log for debug output.
        surface: Surface the visual markers are placed on.
        executor: Executor for isolated compute (None = loop default).
        sleep: Coroutine function used for waits (seconds).
        time_scale: Multiplier applied to every wait.
        compute_available: False models a missing isolated-compute primitive.
    """

    def __init__(
        self,
        config: CascadeConfig,
        log: Optional[EventLog] = None,
        surface: Optional[PressureSurface] = None,
        executor: Optional[Executor] = None,
        sleep: Sleep = asyncio.sleep,
        time_scale: float = 1.0,
        compute_available: bool = True,
    ) -> None:
        config.validate()
        self.config = config
        self.log = log or EventLog()
        self.surface = surface or PressureSurface()
        self.executor = executor
        self.sleep = sleep
        self.time_scale = time_scale
        self.compute_available = compute_available
        self.fired = 0
        self.compute_results: List[ComputeResult] = []
        self._tasks: Set[asyncio.Task] = set()

    async def _wait_ms(self, milliseconds: float) -> None:
        await self.sleep(max(milliseconds, 0.0) * self.time_scale / 1000.0)

    def _failed(self, stimulus: str, layer_index: int, exc: BaseException) -> None:
        self.log.debug("stimulus_failed", stimulus=stimulus, layer=layer_index, error=str(exc))

    def _spawn(self, stimulus: str, layer_index: int, coro: Coroutine) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError as exc:
            coro.close()
            self._failed(stimulus, layer_index, StimulusError(f"no running event loop: {exc}"))
            return
        self.fired += 1
        self._tasks.add(task)

        def reap(done: asyncio.Task) -> None:
            self._tasks.discard(done)
            if not done.cancelled() and done.exception() is not None:
                self._failed(stimulus, layer_index, done.exception())

        task.add_done_callback(reap)

    # -- visual --------------------------------------------------------------

    def fire_visual(self, layer_index: int, energy: float) -> None:
        marker = PressureMarker(
            layer=layer_index,
            size=energy * 100.0,
            rotation=layer_index * 11.0,
            opacity=energy,
        )
        self._spawn("visual", layer_index, self._hold_marker(marker, energy))

    async def _hold_marker(self, marker: PressureMarker, energy: float) -> None:
        self.surface.add(marker)
        try:
            await self._wait_ms(self.config.frame_interval_ms)
            marker.rotation += 180.0
            marker.scale = 1.0 + energy
            await self._wait_ms(energy * self.config.visual_hold_factor_ms)
        finally:
            self.surface.remove(marker)

    # -- isolated compute ----------------------------------------------------

    def fire_isolated_compute(self, layer_index: int) -> None:
        try:
            if not self.compute_available:
                raise StimulusError("isolated compute primitive is unavailable")
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(
                self.executor,
                resonance_pressure,
                self.config.decay_constant,
                layer_index,
                self.config.compute_iterations,
            )
        except (StimulusError, RuntimeError) as exc:
            self._failed("isolated_compute", layer_index, exc)
            return
        self._spawn("isolated_compute", layer_index, self._collect_compute(layer_index, future))

    async def _collect_compute(self, layer_index: int, future: Awaitable[ComputeResult]) -> None:
        # The worker is torn down after a fixed timer; a late result is dropped.
        try:
            result = await asyncio.wait_for(
                asyncio.shield(future),
                self.config.compute_teardown_ms * self.time_scale / 1000.0,
            )
        except asyncio.TimeoutError:
            self.log.debug("compute_dropped", layer=layer_index)
            return
        self.compute_results.append(result)
        self.log.debug("compute_result", layer=result.layer, energy=result.energy, pressure=result.pressure)

    # -- frame loop ----------------------------------------------------------

    def fire_frame_loop(self, layer_index: int, energy: float) -> None:
        self._spawn("frame_loop", layer_index, self._frame_loop(energy))

    async def _frame_loop(self, energy: float) -> None:
        duration_ms = energy * self.config.frame_loop_factor_ms
        frame = 0
        while frame * self.config.frame_interval_ms < duration_ms:
            elapsed = frame * self.config.frame_interval_ms
            opacity = math.sin(elapsed * 0.01) * 0.5 + 0.5
            for marker in list(self.surface.markers):
                marker.opacity = opacity
            frame += 1
            await self._wait_ms(self.config.frame_interval_ms)

    async def drain(self) -> None:
        """Wait for every stimulus started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
