"""Async event bus for lifecycle notifications."""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from launchtrade.core.types import Event, EventType
from launchtrade.logging import get_logger

logger = get_logger(__name__)


class EventBus:
    """Async pub/sub bus.

    Publishing never waits on subscribers: events are queued and dispatched by
    a background task, so a slow or failing handler cannot stall the trade path.
    All handlers run on the event loop; sync handlers are called inline.
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        """Initialize the event bus.

        Args:
            max_queue_size: Maximum queue size to prevent memory leaks (default 10000)
        """
        self._subscribers: dict[EventType, list[Callable[[Event], Any]]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._running = False
        self._task: asyncio.Task[None] | None = None

    def subscribe(self, event_type: EventType, handler: Callable[[Event], Any]) -> None:
        """Subscribe a handler to an event type."""
        self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler {handler.__name__} to {event_type}")

    def unsubscribe(self, event_type: EventType, handler: Callable[[Event], Any]) -> None:
        """Unsubscribe a handler from an event type."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed handler from {event_type}")

    async def publish(self, event: Event) -> None:
        """Queue an event for dispatch.

        Raises RuntimeError when the queue is full rather than dropping the
        event silently.
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            queue_size = self._queue.qsize()
            logger.error(
                f"EventBus queue is full ({queue_size}/{self._queue.maxsize} events). "
                f"Cannot publish {event.event_type} event."
            )
            raise RuntimeError(
                f"EventBus queue full ({queue_size}/{self._queue.maxsize})"
            ) from None

    async def _process_events(self) -> None:
        while self._running:
            try:
                event = await self._queue.get()
                await self._dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing events: {e}", exc_info=True)

    async def _dispatch(self, event: Event) -> None:
        """Dispatch event to all subscribers."""
        handlers = list(self._subscribers.get(event.event_type, []))
        if not handlers:
            logger.debug(f"No subscribers for {event.event_type}")
            return

        for handler in handlers:
            await self._safe_call_handler(handler, event)

    async def _safe_call_handler(self, handler: Callable[[Event], Any], event: Event) -> None:
        """Call a handler, logging instead of propagating its exceptions."""
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Handler {handler.__name__} raised exception for {event.event_type}: {e}",
                exc_info=True,
            )

    async def start(self) -> None:
        """Start the event bus."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def flush(self, max_events: int | None = None) -> int:
        """Dispatch queued events immediately. Returns the number processed."""
        processed = 0
        while max_events is None or processed < max_events:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._dispatch(event)
            processed += 1
        return processed

    async def stop(self) -> None:
        """Stop the event bus and drop undelivered events."""
        if not self._running:
            logger.debug("[EventBus] Already stopped")
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("[EventBus] Processing task cancelled")
            self._task = None

        drained = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            drained += 1
        if drained > 0:
            logger.debug(f"[EventBus] Drained {drained} remaining events from queue")

        logger.info("[EventBus] Stopped")
