"""Push-only fan-out of job-state deltas to live subscribers.

Delivery is best effort and at most once: there is no replay buffer, a late
subscriber only sees events published after it subscribed, and a subscriber
whose queue is full loses the event instead of slowing the publisher down.
The audit log, not this feed, is the durable history.
"""
import asyncio
import logging
import threading
import uuid
from typing import Any

from ota_fleet.schemas.job import JobUpdate

logger = logging.getLogger(__name__)


class Subscription:
    """A live, unbounded stream of ``JobUpdate`` messages.

    Iterate it with ``async for``; leaving an ``async with`` block (or calling
    ``close``) unsubscribes.
    """

    def __init__(self, broadcaster: "ProgressBroadcaster", max_queue_size: int):
        self.uid = uuid.uuid4().hex
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[JobUpdate] = asyncio.Queue(maxsize=max_queue_size)
        self._loop = asyncio.get_running_loop()
        self.dropped = 0
        self.closed = False

    def _offer(self, message: JobUpdate) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Subscriber %s queue full, dropped event for job %s", self.uid, message.job_id)
            return False

    def _deliver(self, message: JobUpdate) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._offer(message)
        else:
            self._loop.call_soon_threadsafe(self._offer, message)

    async def get(self) -> JobUpdate:
        return await self._queue.get()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> JobUpdate:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broadcaster._unsubscribe(self)


class ProgressBroadcaster:
    """Owns the subscriber set; other components only subscribe and publish."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a new subscriber; must be called from within the event loop that will consume it."""
        subscription = Subscription(self, self.max_queue_size)
        with self._lock:
            self._subscribers[subscription.uid] = subscription
        logger.debug("Subscriber %s connected (%d active)", subscription.uid, self.subscriber_count)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(subscription.uid, None)
        logger.debug("Subscriber %s disconnected", subscription.uid)

    def publish(self, job_id: uuid.UUID, delta: dict[str, Any]) -> int:
        """Offer a delta to every current subscriber without blocking; return how many were reached."""
        message = JobUpdate(job_id=job_id, data=delta)
        with self._lock:
            subscribers = list(self._subscribers.values())
        for subscription in subscribers:
            subscription._deliver(message)
        return len(subscribers)
