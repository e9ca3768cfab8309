"""Sequential cascade driver.

For every layer the driver asks the cascade for its energy and the scheduler
for a delay, fires the stimuli, suspends for the delay and reports the
observed duration to the resonance analyzer. Layer ``d + 1`` never starts
before the delay of layer ``d`` has elapsed. After the last layer the
analyzer's verdict either starts the handshake or triggers a retune.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .cascade import CascadeLevels, compute_levels
from .config import CascadeConfig
from .eventlog import QUIET, EventLog
from .channels import BroadcastHub
from .handshake import Bridge, HandshakeChannels, HandshakeCoordinator
from .resonance import ResonanceAnalyzer, ResonanceVerdict
from .scheduler import compute_delay
from .stimulus import NullStimulusDispatcher, StimulusDispatcher
from .storage import Store

Sleep = Callable[[float], Awaitable[None]]

RETUNE_LOW = 0.95
RETUNE_HIGH = 1.05


def retune_decay(decay_constant: float, rng: np.random.Generator) -> float:
    """Perturb the decay constant by a factor drawn from uniform(0.95, 1.05)."""
    return float(decay_constant * rng.uniform(RETUNE_LOW, RETUNE_HIGH))


@dataclass(slots=True)
class CascadeRun:
    """Everything one pass through the cascade produced.

    Attributes:
        config: Configuration of this attempt (decay constant may be retuned).
        levels: Energy levels of the attempt.
        verdict: Finalized resonance verdict.
        samples: Observed delays per layer in milliseconds.
        scheduled: Scheduled delays per layer in milliseconds.
        retuned_decay: Perturbed decay constant when the run did not converge.
        coordinator: Handshake coordinator of a converged run.
    """

    config: CascadeConfig
    levels: CascadeLevels
    verdict: ResonanceVerdict
    samples: Dict[int, Tuple[float, ...]]
    scheduled: Dict[int, List[float]]
    retuned_decay: Optional[float] = None
    coordinator: Optional[HandshakeCoordinator] = None
    duration_ms: float = 0.0

    @property
    def bridge(self) -> Optional[Bridge]:
        """Bridge established by the handshake, if any."""
        if self.coordinator is None:
            return None
        return self.coordinator.bridge


@dataclass(slots=True)
class CascadeResult:
    runs: List[CascadeRun] = field(default_factory=list)

    @property
    def final(self) -> CascadeRun:
        return self.runs[-1]

    @property
    def converged(self) -> bool:
        return bool(self.runs) and self.final.verdict.converged

    @property
    def bridge(self) -> Optional[Bridge]:
        return self.final.bridge if self.runs else None


class CascadeDriver:
    """Runs the cascade and reacts to its verdict.

    Args:
        config: Cascade configuration; defaults to ``CascadeConfig()``.
        stimuli: Stimulus dispatcher fired on every layer.
        channels: Channel set for the handshake (built lazily if None).
        hub: Broadcast hub on which each handshake opens
            ``config.broadcast_topic`` when ``channels`` has no broadcast channel.
        store: Persistence for the established bridge.
        log: Event log receiving the structured progress stream.
        clock: Wall clock in seconds, sampled for the delay phase jitter.
        monotonic: Monotonic clock in seconds used to measure suspensions.
        sleep: Coroutine function performing the per-layer suspension.
        time_scale: Multiplier on every suspension; observed delays are
            scaled back so the analyzer always sees nominal milliseconds.
        handshake_timeout: Seconds to wait for a bridge after starting the
            handshake; None returns right after the handshake starts.
    """

    def __init__(
        self,
        config: Optional[CascadeConfig] = None,
        stimuli: Optional[StimulusDispatcher] = None,
        channels: Optional[HandshakeChannels] = None,
        hub: Optional[BroadcastHub] = None,
        store: Optional[Store] = None,
        log: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.perf_counter,
        sleep: Sleep = asyncio.sleep,
        time_scale: float = 1.0,
        handshake_timeout: Optional[float] = None,
    ) -> None:
        self.config = config or CascadeConfig()
        self.stimuli = stimuli or NullStimulusDispatcher()
        self.channels = channels
        self.hub = hub or BroadcastHub()
        self.store = store
        self.log = log or EventLog()
        self.clock = clock
        self.monotonic = monotonic
        self.sleep = sleep
        self.time_scale = time_scale
        self.handshake_timeout = handshake_timeout
        self.rng = np.random.default_rng(self.config.retune_seed)

    def _fire(self, stimulus: str, fire: Callable[..., None], *args) -> None:
        try:
            fire(*args)
        except Exception as exc:
            self.log.debug("stimulus_failed", stimulus=stimulus, layer=args[0], error=str(exc))

    def _fire_stimuli(self, layer: int, energy: float) -> None:
        self._fire("visual", self.stimuli.fire_visual, layer, energy)
        self._fire("isolated_compute", self.stimuli.fire_isolated_compute, layer)
        self._fire("frame_loop", self.stimuli.fire_frame_loop, layer, energy)

    async def _suspend(self, delay_ms: float) -> float:
        """Suspend for ``delay_ms`` (scaled) and return the observed nominal duration."""
        started = self.monotonic()
        await self.sleep(delay_ms * self.time_scale / 1000.0)
        elapsed_ms = (self.monotonic() - started) * 1000.0
        if self.time_scale <= 0:
            return delay_ms
        return elapsed_ms / self.time_scale

    async def run_once(self, config: CascadeConfig) -> CascadeRun:
        """Run every pass of the cascade once and finalize its verdict."""
        levels = compute_levels(config)
        analyzer = ResonanceAnalyzer(levels, config.delay_scale_ms, config.deviation_threshold)
        scheduled: Dict[int, List[float]] = {}
        layer_count = config.layer_count

        self.log.emit(
            "cascade_started",
            decay_constant=config.decay_constant,
            layers=layer_count,
            total_energy=levels.total_energy,
        )
        run_started = self.monotonic()
        threshold_logged = False
        disable_pbar = self.log.verbosity == QUIET

        for pass_index in range(config.passes):
            layer_iter = tqdm(
                range(layer_count),
                desc=f"Cascade pass {pass_index + 1}/{config.passes}",
                disable=disable_pbar,
                leave=False,
            )
            for layer in layer_iter:
                energy = levels[layer]
                delay_ms = compute_delay(layer, energy, config, self.clock())
                scheduled.setdefault(layer, []).append(delay_ms)
                self._fire_stimuli(layer, energy)

                observed_ms = await self._suspend(delay_ms)
                analyzer.record(layer, observed_ms)

                if layer % config.log_every_n == 0 or layer == layer_count - 1:
                    self.log.emit(
                        "layer",
                        pass_index=pass_index,
                        layer=layer,
                        energy=energy,
                        cumulative_energy=levels.cumulative(layer),
                    )
                if not threshold_logged and energy <= config.convergence_threshold:
                    self.log.emit("threshold_reached", layer=layer, energy=energy)
                    threshold_logged = True

        verdict = analyzer.finalize()
        self.log.emit(
            "verdict",
            converged=verdict.converged,
            aggregate_deviation=verdict.aggregate_deviation,
            qualifying_layers=len(verdict.qualifying_layers),
        )

        run = CascadeRun(
            config=config,
            levels=levels,
            verdict=verdict,
            samples=analyzer.samples(),
            scheduled=scheduled,
        )
        if verdict.converged:
            await self._handshake(run)
        else:
            run.retuned_decay = retune_decay(config.decay_constant, self.rng)
            self.log.emit("retuned", new_decay_constant=run.retuned_decay)

        run.duration_ms = (self.monotonic() - run_started) * 1000.0
        self.log.emit("cascade_complete", total_energy=levels.total_energy, converged=verdict.converged)
        return run

    async def _handshake(self, run: CascadeRun) -> None:
        channels = self.channels or HandshakeChannels()
        coordinator = HandshakeCoordinator(
            run.config,
            run.levels,
            channels=channels,
            store=self.store,
            log=self.log,
            clock=self.clock,
            hub=self.hub,
        )
        run.coordinator = coordinator
        coordinator.begin(run.verdict)
        if self.handshake_timeout is not None:
            await coordinator.wait_for_bridge(self.handshake_timeout)

    async def run(self) -> CascadeResult:
        """Run the cascade, retuning up to ``max_retunes`` times until it converges.

        Raises:
            ConfigError: before any layer runs if the configuration is invalid.
        """
        result = CascadeResult()
        config = self.config
        for attempt in range(config.max_retunes + 1):
            run = await self.run_once(config)
            result.runs.append(run)
            if run.verdict.converged or run.retuned_decay is None:
                break
            if attempt < self.config.max_retunes:
                config = config.with_decay(run.retuned_decay)
        return result


def run_cascade(config: Optional[CascadeConfig] = None, **kwargs) -> CascadeResult:
    """Synchronous convenience wrapper around :meth:`CascadeDriver.run`."""
    driver = CascadeDriver(config, **kwargs)
    return asyncio.run(driver.run())
