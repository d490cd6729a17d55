"""
Unit tests for the event bus.
"""

import asyncio

import pytest

from app.yieldpilot.bus import EventBus
from app.yieldpilot.core.error_handling import ErrorCategory, ErrorTracker
from app.yieldpilot.tests.fixtures.factories import T0
from app.yieldpilot.types import TradingEventType


class TestSubscriptions:
    """Tests for subscribe, filtering and delivery order."""

    def test_delivers_in_publish_order(self):
        bus = EventBus()
        received = []
        bus.subscribe("test", received.append)

        bus.emit(TradingEventType.DECISION, {"n": 1}, timestamp=T0)
        bus.emit(TradingEventType.ALERT, {"n": 2}, timestamp=T0)

        assert [e.data["n"] for e in received] == [1, 2]
        assert received[0].timestamp == T0

    def test_event_type_filter(self):
        bus = EventBus()
        alerts = []
        bus.subscribe("alerts", alerts.append, event_types=[TradingEventType.ALERT])

        bus.emit(TradingEventType.DECISION)
        bus.emit(TradingEventType.ALERT, {"type": "error"})

        assert [e.type for e in alerts] == [TradingEventType.ALERT]

    def test_priority_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe("low", lambda e: calls.append("low"), priority=1)
        bus.subscribe("high", lambda e: calls.append("high"), priority=10)

        bus.emit(TradingEventType.ALERT)

        assert calls == ["high", "low"]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        subscription_id = bus.subscribe("test", received.append)

        assert bus.unsubscribe(subscription_id)
        assert not bus.unsubscribe(subscription_id)
        bus.emit(TradingEventType.ALERT)

        assert received == []


class TestFailureIsolation:
    """Tests that failing subscribers never break publishing."""

    def test_failing_handler_does_not_block_others(self):
        tracker = ErrorTracker()
        bus = EventBus(error_tracker=tracker)
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("broken", broken, priority=10)
        bus.subscribe("ok", received.append)

        bus.emit(TradingEventType.ALERT)

        assert len(received) == 1
        assert tracker.count(ErrorCategory.EVENT_DELIVERY) == 1
        assert bus.get_metrics()["failed_handlers"] == 1

    def test_handler_disabled_after_max_failures(self):
        bus = EventBus(max_failures=2)
        calls = []

        def broken(event):
            calls.append(event)
            raise RuntimeError("boom")

        bus.subscribe("broken", broken)
        for _ in range(4):
            bus.emit(TradingEventType.ALERT)

        assert len(calls) == 2
        metrics = bus.get_metrics()
        assert metrics["subscription_count"] == 1
        assert metrics["active_subscription_count"] == 0

    @pytest.mark.asyncio
    async def test_coroutine_handlers_are_scheduled(self):
        bus = EventBus()
        received = []

        async def handler(event):
            await asyncio.sleep(0)
            received.append(event.type)

        bus.subscribe("async", handler)
        bus.emit(TradingEventType.TRADE_EXECUTED)
        assert received == []

        await bus.drain()

        assert received == [TradingEventType.TRADE_EXECUTED]
        assert bus.get_metrics()["successful_handlers"] == 1

    @pytest.mark.asyncio
    async def test_failing_coroutine_handler_is_recorded(self):
        tracker = ErrorTracker()
        bus = EventBus(error_tracker=tracker)

        async def handler(event):
            raise ValueError("bad payload")

        bus.subscribe("async", handler)
        bus.emit(TradingEventType.ALERT)
        await bus.drain()

        assert tracker.count(ErrorCategory.EVENT_DELIVERY) == 1

    def test_coroutine_handler_without_running_loop_is_recorded(self):
        tracker = ErrorTracker()
        bus = EventBus(error_tracker=tracker)
        received = []

        async def handler(event):
            received.append(event.type)

        bus.subscribe("async", handler, priority=10)
        bus.subscribe("sync", received.append)

        bus.emit(TradingEventType.ALERT)

        assert len(received) == 1
        assert tracker.count(ErrorCategory.EVENT_DELIVERY) == 1
        assert bus.get_metrics()["failed_handlers"] == 1


class TestStreamsAndHistory:
    """Tests for event streams, history and metrics."""

    @pytest.mark.asyncio
    async def test_stream_receives_filtered_events(self):
        bus = EventBus()
        stream = bus.open_stream([TradingEventType.TRADE_FAILED])

        bus.emit(TradingEventType.ALERT)
        bus.emit(TradingEventType.TRADE_FAILED, {"error": "x"})

        event = await asyncio.wait_for(stream.get(), timeout=1)
        assert event.data == {"error": "x"}

        stream.close()
        assert bus.get_metrics()["stream_count"] == 0

    @pytest.mark.asyncio
    async def test_stream_async_iteration(self):
        bus = EventBus()
        stream = bus.open_stream()
        for n in range(3):
            bus.emit(TradingEventType.DECISION, {"n": n})

        seen = []
        async for event in stream:
            seen.append(event.data["n"])
            if len(seen) == 3:
                break

        assert seen == [0, 1, 2]

    def test_recent_events_and_metrics(self):
        bus = EventBus()
        bus.emit(TradingEventType.ALERT)
        bus.emit(TradingEventType.DECISION)
        bus.emit(TradingEventType.ALERT)

        assert len(bus.recent_events()) == 3
        assert len(bus.recent_events(TradingEventType.ALERT)) == 2
        assert bus.get_metrics()["events_by_type"] == {"alert": 2, "decision": 1}
        assert bus.get_metrics()["events_published"] == 3
