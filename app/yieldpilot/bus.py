"""
Event Bus for controller events

Delivers TradingEvents to subscribers in the order they are published.
Subscribers are decoupled collaborators (audit store, dashboards, alert
relays) registered by id, optionally filtered by event type.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import uuid4

from .types import TradingEvent, TradingEventType
from .core.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorTracker,
    YieldPilotError,
    create_error_context,
)


logger = logging.getLogger(__name__)


@dataclass
class EventSubscription:
    """Event subscription with metadata and failure tracking."""
    subscription_id: str
    subscriber_id: str
    handler: Callable[[TradingEvent], Any]
    event_types: Optional[Set[TradingEventType]]
    priority: int
    max_failures: int
    failure_count: int = 0
    last_error: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def matches(self, event_type: TradingEventType) -> bool:
        return self.is_active and (self.event_types is None or event_type in self.event_types)


@dataclass
class EventBusStats:
    """Statistics for event delivery."""
    events_published: int = 0
    successful_handlers: int = 0
    failed_handlers: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)


class EventBus:
    """
    In-process event bus for controller events.

    publish() is synchronous so events reach subscribers in emission
    order. Coroutine handlers are scheduled as tasks on the running loop;
    stream subscribers receive events through an asyncio.Queue.
    """

    def __init__(self, max_failures: int = 3, error_tracker: Optional[ErrorTracker] = None):
        self._subscriptions: Dict[str, EventSubscription] = {}
        self._streams: Dict[str, asyncio.Queue] = {}
        self._pending_tasks: Set[asyncio.Task] = set()
        self._default_max_failures = max_failures
        self._errors = error_tracker or ErrorTracker(logger)
        self._stats = EventBusStats()
        self._history: List[TradingEvent] = []
        self._history_limit = 500

    def subscribe(
        self,
        subscriber_id: str,
        handler: Callable[[TradingEvent], Any],
        event_types: Optional[List[TradingEventType]] = None,
        priority: int = 0,
        max_failures: Optional[int] = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            subscriber_id: Identifier of the subscriber, for logging
            handler: Callable or coroutine function receiving each event
            event_types: Event types to receive (None for all)
            priority: Higher priority handlers are called first
            max_failures: Consecutive failures before the subscription is disabled

        Returns:
            Subscription ID
        """
        subscription_id = str(uuid4())
        self._subscriptions[subscription_id] = EventSubscription(
            subscription_id=subscription_id,
            subscriber_id=subscriber_id,
            handler=handler,
            event_types=set(event_types) if event_types else None,
            priority=priority,
            max_failures=max_failures if max_failures is not None else self._default_max_failures,
        )
        logger.debug(f"Subscriber {subscriber_id} registered as {subscription_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription or stream. Returns True if it existed."""
        if self._streams.pop(subscription_id, None) is not None:
            return True
        return self._subscriptions.pop(subscription_id, None) is not None

    def open_stream(
        self,
        event_types: Optional[List[TradingEventType]] = None,
        maxsize: int = 1000,
    ) -> "EventStream":
        """Open an async stream of events for a consumer task."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        stream_id = str(uuid4())
        self._streams[stream_id] = queue
        return EventStream(self, stream_id, queue, set(event_types) if event_types else None)

    def publish(self, event: TradingEvent) -> None:
        """Deliver an event to every matching subscriber, in priority order."""
        self._stats.events_published += 1
        self._stats.events_by_type[event.type.value] = (
            self._stats.events_by_type.get(event.type.value, 0) + 1
        )
        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        subscriptions = sorted(
            (s for s in self._subscriptions.values() if s.matches(event.type)),
            key=lambda s: s.priority,
            reverse=True,
        )
        for subscription in subscriptions:
            self._deliver(subscription, event)

        for queue in list(self._streams.values()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event stream full, dropping {event.type.value} event")

    def emit(self, event_type: TradingEventType, data: Optional[Dict[str, Any]] = None,
             timestamp: Optional[datetime] = None) -> TradingEvent:
        """Build and publish an event."""
        event = TradingEvent(
            type=event_type,
            timestamp=timestamp or datetime.now(timezone.utc),
            data=data or {},
        )
        self.publish(event)
        return event

    def recent_events(self, event_type: Optional[TradingEventType] = None) -> List[TradingEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "subscription_count": len(self._subscriptions),
            "active_subscription_count": sum(1 for s in self._subscriptions.values() if s.is_active),
            "stream_count": len(self._streams),
            "events_published": self._stats.events_published,
            "successful_handlers": self._stats.successful_handlers,
            "failed_handlers": self._stats.failed_handlers,
            "events_by_type": dict(self._stats.events_by_type),
        }

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    def _deliver(self, subscription: EventSubscription, event: TradingEvent) -> None:
        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                # Coroutine handlers need a running loop to be scheduled on
                try:
                    asyncio.get_running_loop()
                except RuntimeError:
                    if inspect.iscoroutine(result):
                        result.close()
                    raise
                task = asyncio.ensure_future(result)
                self._pending_tasks.add(task)
                task.add_done_callback(
                    lambda t, sub=subscription, ev=event: self._on_handler_done(t, sub, ev)
                )
                return
        except Exception as e:
            self._record_failure(subscription, event, e)
            return
        self._record_success(subscription)

    def _on_handler_done(self, task: asyncio.Task, subscription: EventSubscription,
                         event: TradingEvent) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._record_failure(subscription, event, error)
        else:
            self._record_success(subscription)

    def _record_success(self, subscription: EventSubscription) -> None:
        self._stats.successful_handlers += 1
        subscription.failure_count = 0
        subscription.last_error = None

    def _record_failure(self, subscription: EventSubscription, event: TradingEvent,
                        error: BaseException) -> None:
        self._stats.failed_handlers += 1
        subscription.failure_count += 1
        subscription.last_error = str(error)

        context = create_error_context(
            category=ErrorCategory.EVENT_DELIVERY,
            severity=ErrorSeverity.MEDIUM,
            component="EventBus",
            operation="publish",
            subscriber_id=subscription.subscriber_id,
            event_type=event.type.value,
        )
        self._errors.handle(YieldPilotError(
            f"Handler {subscription.subscriber_id} failed on {event.type.value}: {error}",
            context=context,
            cause=error if isinstance(error, Exception) else None,
        ))

        if subscription.failure_count >= subscription.max_failures:
            subscription.is_active = False
            logger.warning(
                f"Disabled subscriber {subscription.subscriber_id} after "
                f"{subscription.failure_count} consecutive failures"
            )


class EventStream:
    """Async iterator over events published after the stream was opened."""

    def __init__(self, bus: EventBus, stream_id: str, queue: asyncio.Queue,
                 event_types: Optional[Set[TradingEventType]]):
        self._bus = bus
        self.stream_id = stream_id
        self._queue = queue
        self._event_types = event_types

    async def get(self) -> TradingEvent:
        while True:
            event = await self._queue.get()
            if self._event_types is None or event.type in self._event_types:
                return event

    def close(self) -> None:
        self._bus.unsubscribe(self.stream_id)

    def __aiter__(self):
        return self

    async def __anext__(self) -> TradingEvent:
        return await self.get()
