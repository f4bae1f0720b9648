"""Progress events and the broadcast channel behind the status stream."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from deployer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """One line of deployment progress."""

    message: str
    is_error: bool = False
    is_complete: bool = False
    data: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "isError": self.is_error,
            "isComplete": self.is_complete,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Serialize to the payload of an SSE message."""
        return json.dumps(self.to_dict())


class EventSink(Protocol):
    """Anything progress can be emitted into."""

    async def emit(self, event: ProgressEvent) -> None: ...


class Subscription:
    """The single viewer attached to a deployment's progress."""

    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        self.queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ProgressEvent) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    def close(self) -> None:
        """Mark the end of the stream; the reader sees ``None`` next."""
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    async def get(self) -> ProgressEvent | None:
        return await self.queue.get()


class SubscriberStore(Protocol):
    """Key-value store of live subscriptions."""

    def set(self, deployment_id: str, subscription: Subscription) -> None: ...

    def get(self, deployment_id: str) -> Subscription | None: ...

    def delete(self, deployment_id: str) -> None: ...


class InMemorySubscriberStore:
    """Process-local subscriber store.

    All access happens on the event loop thread, so plain dict operations
    never interleave.
    """

    def __init__(self):
        self._subscriptions: dict[str, Subscription] = {}

    def set(self, deployment_id: str, subscription: Subscription) -> None:
        self._subscriptions[deployment_id] = subscription

    def get(self, deployment_id: str) -> Subscription | None:
        return self._subscriptions.get(deployment_id)

    def delete(self, deployment_id: str) -> None:
        self._subscriptions.pop(deployment_id, None)

    def __len__(self) -> int:
        return len(self._subscriptions)


class ProgressChannel:
    """Routes progress events for a deployment to its one subscriber.

    Events published while nobody is connected are dropped; there is no
    replay for late subscribers. A completion event closes the subscription
    and retires the registration.
    """

    def __init__(self, store: SubscriberStore | None = None):
        self.store = store if store is not None else InMemorySubscriberStore()
        self._attached: dict[str, asyncio.Event] = {}
        self._completed: set[str] = set()

    def connect(self, deployment_id: str) -> Subscription:
        """Register a new subscriber, replacing any previous one."""
        previous = self.store.get(deployment_id)
        if previous is not None:
            logger.info("channel.subscriber_replaced", deployment_id=deployment_id)
            previous.close()

        subscription = Subscription(deployment_id)
        self.store.set(deployment_id, subscription)
        self._attached_event(deployment_id).set()
        logger.info("channel.connected", deployment_id=deployment_id)
        return subscription

    def disconnect(self, deployment_id: str, subscription: Subscription) -> None:
        """Drop the registration if it still belongs to ``subscription``."""
        subscription.close()
        if self.store.get(deployment_id) is subscription:
            self.store.delete(deployment_id)
            logger.info("channel.disconnected", deployment_id=deployment_id)

    async def publish(self, deployment_id: str, event: ProgressEvent) -> None:
        """Deliver an event to the subscriber, if one is connected."""
        if event.is_complete:
            self._completed.add(deployment_id)

        subscription = self.store.get(deployment_id)
        if subscription is None:
            logger.warning(
                "channel.no_subscriber",
                deployment_id=deployment_id,
                message=event.message[:100],
            )
            return

        subscription.deliver(event)
        logger.debug(
            "channel.sent",
            deployment_id=deployment_id,
            message=event.message[:100],
        )

        if event.is_complete:
            logger.info("channel.completed", deployment_id=deployment_id)
            subscription.close()
            self.store.delete(deployment_id)

    async def wait_for_subscriber(self, deployment_id: str, timeout: float) -> bool:
        """Wait until someone connects for ``deployment_id``.

        Returns False when ``timeout`` elapses first.
        """
        if self.store.get(deployment_id) is not None:
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(
                self._attached_event(deployment_id).wait(), timeout=timeout
            )
            return True
        except asyncio.TimeoutError:
            return False

    def is_completed(self, deployment_id: str) -> bool:
        """Whether the completion event for ``deployment_id`` was published."""
        return deployment_id in self._completed

    def close(self, deployment_id: str) -> None:
        """End and remove whatever subscription is registered for ``deployment_id``."""
        subscription = self.store.get(deployment_id)
        if subscription is not None:
            self.disconnect(deployment_id, subscription)

    def forget(self, deployment_id: str) -> None:
        """Release bookkeeping kept for a finished deployment."""
        self._attached.pop(deployment_id, None)
        self._completed.discard(deployment_id)

    def _attached_event(self, deployment_id: str) -> asyncio.Event:
        if deployment_id not in self._attached:
            self._attached[deployment_id] = asyncio.Event()
        return self._attached[deployment_id]


class ChannelSink:
    """Event sink publishing into a channel under one deployment id."""

    def __init__(self, channel: ProgressChannel, deployment_id: str):
        self.channel = channel
        self.deployment_id = deployment_id

    async def emit(self, event: ProgressEvent) -> None:
        await self.channel.publish(self.deployment_id, event)


class ProgressReporter:
    """Convenience wrapper over a sink for one orchestration run.

    Guarantees at most one completion event; anything emitted after it is
    dropped.
    """

    def __init__(self, sink: EventSink):
        self.sink = sink
        self.completed = False

    async def emit(self, event: ProgressEvent) -> None:
        if self.completed:
            logger.debug("progress.after_completion", message=event.message[:100])
            return
        if event.is_complete:
            self.completed = True
        await self.sink.emit(event)

    async def info(self, message: str) -> None:
        await self.emit(ProgressEvent(message=message))

    async def error(self, message: str) -> None:
        await self.emit(ProgressEvent(message=message, is_error=True))

    async def complete(
        self,
        message: str,
        is_error: bool = False,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self.emit(
            ProgressEvent(
                message=message,
                is_error=is_error,
                is_complete=True,
                data=data,
            )
        )
