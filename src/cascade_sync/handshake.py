"""Multi-channel handshake coordination.

After a converged run the coordinator posts a :class:`Handshake` on the
embedded-context, isolated-worker, broadcast and intercept channels
concurrently. The first :class:`HandshakeResponse` received on any channel
establishes the single :class:`Bridge` of the run, triggers an
:class:`Exchange` fan-out on the embedded-context channel and persists the
bridge. Later responses are ignored.

Channel failures are logged and skipped. A channel that never answers never
produces a bridge; callers that need a bound use :meth:`wait_for_bridge`.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Dict, Iterator, List, Optional, Set

from .cascade import CascadeLevels
from .channels import (
    BroadcastChannel,
    BroadcastHub,
    Channel,
    EmbeddedContextChannel,
    InterceptChannel,
    IsolatedWorkerChannel,
)
from .config import CascadeConfig
from .errors import CascadeError, StorageError
from .eventlog import EventLog
from .messages import Exchange, Handshake, HandshakeResponse, Message, tag_of
from .resonance import ResonanceVerdict
from .storage import Store


@dataclass(frozen=True)
class Bridge:
    id: str
    energy: float
    established_at: float


@dataclass
class HandshakeChannels:
    """The four channel variants a handshake is attempted on.

    A missing broadcast channel is opened by the coordinator on
    ``config.broadcast_topic``.
    """

    embedded: EmbeddedContextChannel = field(default_factory=EmbeddedContextChannel)
    worker: IsolatedWorkerChannel = field(default_factory=IsolatedWorkerChannel)
    broadcast: Optional[BroadcastChannel] = None
    intercept: InterceptChannel = field(default_factory=InterceptChannel)

    def __iter__(self) -> Iterator[Channel]:
        channels: List[Optional[Channel]] = [self.embedded, self.worker, self.broadcast, self.intercept]
        return iter([channel for channel in channels if channel is not None])


class HandshakeCoordinator:
    """Fans out the handshake and owns the bridge of one run.

    ``hub`` is the broadcast hub used when ``channels`` has no broadcast
    channel; a private hub is created if it is None.
    """

    def __init__(
        self,
        config: CascadeConfig,
        levels: CascadeLevels,
        channels: Optional[HandshakeChannels] = None,
        store: Optional[Store] = None,
        log: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
        hub: Optional[BroadcastHub] = None,
    ) -> None:
        self.config = config
        self.levels = levels
        channels = channels or HandshakeChannels()
        self._owned_broadcast: Optional[BroadcastChannel] = None
        if channels.broadcast is None:
            self._owned_broadcast = (hub or BroadcastHub()).open(config.broadcast_topic)
            channels = replace(channels, broadcast=self._owned_broadcast)
        self.channels = channels
        self.store = store
        self.log = log or EventLog()
        self.clock = clock
        self.exchanges: List[Exchange] = []
        self._bridge: Optional[Bridge] = None
        self._bridge_lock = threading.Lock()
        self._bridge_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listeners: Dict[int, Callable[[Message], None]] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def bridge(self) -> Optional[Bridge]:
        return self._bridge

    @property
    def pending(self) -> int:
        """Number of channel sends still in flight."""
        return sum(1 for task in self._tasks if not task.done())

    def handshake_message(self) -> Handshake:
        return Handshake(
            alpha=self.config.decay_constant,
            layers=self.config.layer_count,
            energy=self.levels.total_energy,
            timestamp=self.clock() * 1000.0,
        )

    def begin(self, verdict: ResonanceVerdict) -> List[asyncio.Task]:
        """Start one send task per channel and return them without awaiting.

        Must be called from a running event loop.
        """
        if not verdict.converged:
            raise CascadeError("Handshake requires a converged resonance verdict.")
        self._loop = asyncio.get_running_loop()
        handshake = self.handshake_message()
        self.log.emit("handshake_started", energy=handshake.energy, layers=handshake.layers)

        started: List[asyncio.Task] = []
        for channel in self.channels:
            self._listen(channel)
            task = self._loop.create_task(self._send(channel, handshake))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        return started

    def _listen(self, channel: Channel) -> None:
        # One listener per channel and coordinator, however often begin() runs.
        if id(channel) in self._listeners:
            return

        def handler(message: Message, _name: str = channel.name) -> None:
            self.handle_message(_name, message)

        self._listeners[id(channel)] = handler
        channel.on_message(handler)

    async def _send(self, channel: Channel, handshake: Handshake) -> None:
        if not channel.available:
            self.log.debug("channel_skipped", channel=channel.name, reason="unavailable")
            return
        try:
            await channel.ready()
            channel.send(handshake)
        except Exception as exc:
            self.log.debug("channel_skipped", channel=channel.name, reason=str(exc))
            return
        self.log.debug("handshake_sent", channel=channel.name)

    def handle_message(self, channel_name: str, message: Message) -> None:
        self.log.debug("message_received", channel=channel_name, type=tag_of(message))
        if isinstance(message, HandshakeResponse):
            self.log.emit("handshake_response", channel=channel_name, bridge_id=message.bridge_id)
            self.establish_bridge(message)

    def establish_bridge(self, response: HandshakeResponse) -> Optional[Bridge]:
        """Create the bridge from the first response; later calls return None."""
        with self._bridge_lock:
            if self._bridge is not None:
                return None
            bridge = Bridge(
                id=response.bridge_id,
                energy=self.levels.total_energy,
                established_at=self.clock(),
            )
            self._bridge = bridge

        self._signal_bridge()
        self.log.emit("bridge_established", bridge_id=bridge.id, energy=bridge.energy)
        try:
            self.exchange(bridge)
        finally:
            self._persist(bridge)
        return bridge

    def exchange(self, bridge: Bridge) -> Exchange:
        """Fan an :class:`Exchange` out to every embedded context."""
        message = Exchange(
            bridge_id=bridge.id,
            layers=self.config.layer_count,
            energy_distribution=tuple(self.levels.as_list()),
            prime_resonance=tuple(self.config.prime_set),
        )
        self.exchanges.append(message)
        try:
            self.channels.embedded.send(message)
        except Exception as exc:
            self.log.debug("channel_skipped", channel=self.channels.embedded.name, reason=str(exc))
        else:
            self.log.emit("exchange_sent", bridge_id=bridge.id, layers=message.layers)
        return message

    def _persist(self, bridge: Bridge) -> None:
        if self.store is None:
            return
        try:
            self.store.put(self.config.bridge_storage_key, asdict(bridge))
        except (StorageError, OSError) as exc:
            self.log.emit("storage_failed", key=self.config.bridge_storage_key, error=str(exc))

    def _signal_bridge(self) -> None:
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or running is loop or loop.is_closed():
            self._bridge_event.set()
        else:
            loop.call_soon_threadsafe(self._bridge_event.set)

    async def wait_for_bridge(self, timeout: Optional[float] = None) -> Optional[Bridge]:
        """Wait until a bridge exists; return None if ``timeout`` seconds pass first."""
        if self._bridge is not None:
            return self._bridge
        try:
            await asyncio.wait_for(self._bridge_event.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self._bridge

    async def close(self) -> None:
        """Cancel sends still waiting on a channel and stop the worker."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.channels.worker.close()
        if self._owned_broadcast is not None:
            self._owned_broadcast.close()
