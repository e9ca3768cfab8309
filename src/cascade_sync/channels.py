"""In-process message channels used by the handshake coordinator.

Every channel offers the same surface:

- ``send(message)`` posts a message and raises :class:`ChannelError` when the
  channel is unavailable or rejects it,
- ``on_message(handler)`` registers a listener (a handler registered twice is
  still called once per message),
- ``ready()`` is awaited before the first send; only the intercept channel
  actually suspends there.

Replies are delivered on the event loop with ``call_soon`` when one is
running, so delivery order is FIFO per channel. There is no ordering between
channels.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .errors import ChannelError
from .messages import Message, from_wire, to_wire

Handler = Callable[[Message], None]
Responder = Callable[[Message], Optional[Message]]
WorkerHandler = Callable[[Message], Union[Optional[Message], Awaitable[Optional[Message]]]]


class Channel:
    """Base class holding listeners and the delivery helper."""

    name = "channel"

    def __init__(self) -> None:
        self._handlers: List[Handler] = []

    @property
    def available(self) -> bool:
        return True

    async def ready(self) -> None:
        return None

    def send(self, message: Message) -> None:
        raise NotImplementedError

    def on_message(self, handler: Handler) -> bool:
        """Register ``handler``; return False if it was already registered."""
        if handler in self._handlers:
            return False
        self._handlers.append(handler)
        return True

    @property
    def listener_count(self) -> int:
        return len(self._handlers)

    def _deliver(self, message: Message) -> None:
        for handler in list(self._handlers):
            handler(message)

    def _dispatch(self, message: Message) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver(message)
        else:
            loop.call_soon(self._deliver, message)


# ---------------------------------------------------------------------------
# Embedded contexts
# ---------------------------------------------------------------------------


class EmbeddedContext:
    """A child execution context reachable by direct reference.

    ``cross_boundary`` contexts refuse every post with :class:`PermissionError`.
    The optional ``responder`` returns a reply message (or None).
    """

    def __init__(
        self,
        name: str,
        responder: Optional[Responder] = None,
        cross_boundary: bool = False,
    ) -> None:
        self.name = name
        self.responder = responder
        self.cross_boundary = cross_boundary
        self.received: List[Message] = []

    def post_message(self, message: Message) -> Optional[Message]:
        if self.cross_boundary:
            raise PermissionError(f"Context {self.name!r} is outside the current boundary.")
        self.received.append(message)
        if self.responder is None:
            return None
        return self.responder(message)


class EmbeddedContextChannel(Channel):
    """Fans a message out to every known embedded context."""

    name = "embedded"

    def __init__(self, contexts: Optional[List[EmbeddedContext]] = None) -> None:
        super().__init__()
        self.contexts: List[EmbeddedContext] = list(contexts or [])
        self.rejected: List[str] = []
        self.failures: List[Tuple[str, Exception]] = []

    def add_context(self, context: EmbeddedContext) -> None:
        self.contexts.append(context)

    def send(self, message: Message) -> None:
        """Post to every context; replies are delivered even if some contexts fail.

        Raises:
            ChannelError: after the fan-out, if any context raised.
        """
        replies: List[Message] = []
        failed: List[Tuple[str, Exception]] = []
        for context in list(self.contexts):
            try:
                reply = context.post_message(message)
            except PermissionError:
                # Cross-boundary contexts are skipped.
                self.rejected.append(context.name)
                continue
            except Exception as exc:
                failed.append((context.name, exc))
                continue
            if reply is not None:
                replies.append(reply)
        self.failures.extend(failed)
        for reply in replies:
            self._dispatch(reply)
        if failed:
            details = ", ".join(f"{name}: {exc!r}" for name, exc in failed)
            raise ChannelError(f"Embedded context failed: {details}")


# ---------------------------------------------------------------------------
# Isolated workers
# ---------------------------------------------------------------------------


class IsolatedWorker:
    """Long-lived worker task reading messages from its port queue."""

    def __init__(self, handler: WorkerHandler, name: str = "worker") -> None:
        self.handler = handler
        self.name = name
        self.failures: List[BaseException] = []
        self._port: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, deliver: Callable[[Message], None]) -> None:
        self._port = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._run(deliver))

    def post(self, message: Message) -> None:
        if self._port is None:
            raise ChannelError(f"Worker {self.name!r} has not been started.")
        self._port.put_nowait(message)

    async def _run(self, deliver: Callable[[Message], None]) -> None:
        assert self._port is not None
        while True:
            message = await self._port.get()
            if message is None:
                break
            try:
                reply = self.handler(message)
                if inspect.isawaitable(reply):
                    reply = await reply
            except Exception as exc:
                self.failures.append(exc)
                continue
            if reply is not None:
                deliver(reply)

    async def close(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            assert self._port is not None
            self._port.put_nowait(None)
            await self._task
        self._task = None


class IsolatedWorkerChannel(Channel):
    """Lazily creates one worker from ``factory`` and talks to it through its port."""

    name = "worker"

    def __init__(self, factory: Optional[Callable[[], IsolatedWorker]] = None) -> None:
        super().__init__()
        self.factory = factory
        self._worker: Optional[IsolatedWorker] = None

    @property
    def available(self) -> bool:
        return self.factory is not None

    @property
    def worker(self) -> Optional[IsolatedWorker]:
        return self._worker

    def _ensure_worker(self) -> IsolatedWorker:
        if self._worker is not None:
            return self._worker
        if self.factory is None:
            raise ChannelError("No isolated worker factory is registered.")
        try:
            worker = self.factory()
            worker.start(self._deliver)
        except Exception as exc:
            raise ChannelError(f"Isolated worker could not be created: {exc}") from exc
        self._worker = worker
        return worker

    def send(self, message: Message) -> None:
        self._ensure_worker().post(message)

    async def close(self) -> None:
        if self._worker is not None:
            await self._worker.close()
            self._worker = None


# ---------------------------------------------------------------------------
# Broadcast topics
# ---------------------------------------------------------------------------


class BroadcastHub:
    """Registry of named topics; a post reaches every other channel on the topic.

    Messages cross the hub in their tagged wire form; every subscriber
    decodes its own copy.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, List["BroadcastChannel"]] = {}

    def open(self, topic: str) -> "BroadcastChannel":
        channel = BroadcastChannel(self, topic)
        self._topics.setdefault(topic, []).append(channel)
        return channel

    def subscribers(self, topic: str) -> int:
        return len(self._topics.get(topic, []))

    def _post(self, sender: "BroadcastChannel", payload: Dict[str, Any]) -> None:
        for channel in list(self._topics.get(sender.topic, [])):
            if channel is not sender:
                channel._dispatch(from_wire(payload))

    def _close(self, channel: "BroadcastChannel") -> None:
        members = self._topics.get(channel.topic, [])
        if channel in members:
            members.remove(channel)
        if not members:
            self._topics.pop(channel.topic, None)


class BroadcastChannel(Channel):
    name = "broadcast"

    def __init__(self, hub: BroadcastHub, topic: str) -> None:
        super().__init__()
        self.hub = hub
        self.topic = topic
        self.closed = False

    def send(self, message: Message) -> None:
        if self.closed:
            raise ChannelError(f"Broadcast channel {self.topic!r} is closed.")
        try:
            payload = to_wire(message)
        except TypeError as exc:
            raise ChannelError(f"Cannot broadcast: {exc}") from exc
        self.hub._post(self, payload)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub._close(self)


# ---------------------------------------------------------------------------
# Process-wide intercept handle
# ---------------------------------------------------------------------------


class InterceptHandle:
    """The active intercept; ``responder`` may answer posted messages."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder
        self.received: List[Message] = []

    def post_message(self, message: Message) -> Optional[Message]:
        self.received.append(message)
        if self.responder is None:
            return None
        return self.responder(message)


class InterceptRegistry:
    """Holds the process-wide intercept handle and signals when it becomes active."""

    def __init__(self) -> None:
        self.active: Optional[InterceptHandle] = None
        self._ready = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self.active is not None

    def activate(self, handle: InterceptHandle) -> None:
        self.active = handle
        self._ready.set()

    async def ready(self) -> InterceptHandle:
        await self._ready.wait()
        assert self.active is not None
        return self.active


class InterceptChannel(Channel):
    name = "intercept"

    def __init__(self, registry: Optional[InterceptRegistry] = None) -> None:
        super().__init__()
        self.registry = registry

    @property
    def available(self) -> bool:
        return self.registry is not None

    async def ready(self) -> None:
        if self.registry is None:
            raise ChannelError("Intercept subsystem is not present.")
        await self.registry.ready()

    def send(self, message: Message) -> None:
        if self.registry is None:
            raise ChannelError("Intercept subsystem is not present.")
        handle = self.registry.active
        if handle is None:
            raise ChannelError("Intercept handle is not ready yet.")
        try:
            reply = handle.post_message(message)
        except Exception as exc:
            raise ChannelError(f"Intercept handle rejected the message: {exc!r}") from exc
        if reply is not None:
            self._dispatch(reply)
