"""
Tests for the event bus and observable state.
"""

import asyncio
import pytest

from acechat.core.models import ConversationStatus, Message
from acechat.realtime.events import (
    Event,
    EventBus,
    MessageAction,
    MessageEvent,
    StateStream,
    StatusEvent,
)


class TestEvent:
    """Tests for base event fields."""

    def test_events_get_unique_ids(self):
        assert StatusEvent().event_id != StatusEvent().event_id

    def test_age_is_non_negative(self):
        assert StatusEvent().age_ms >= 0

    def test_message_event_defaults(self):
        event = MessageEvent(action=MessageAction.CLEARED)
        assert event.message is None
        assert event.source == "orchestrator"


class TestEventBus:
    """Tests for publish/subscribe."""

    @pytest.mark.asyncio
    async def test_handlers_called_in_order(self):
        bus = EventBus()
        calls = []

        async def first(event):
            calls.append(("first", event))

        async def second(event):
            calls.append(("second", event))

        bus.subscribe(StatusEvent, first)
        bus.subscribe(StatusEvent, second)
        event = StatusEvent(status=ConversationStatus.loading())
        await bus.publish(event)

        assert calls == [("first", event), ("second", event)]
        assert bus.event_count == 1

    @pytest.mark.asyncio
    async def test_base_type_receives_everything(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(type(event))

        bus.subscribe(Event, handler)
        await bus.publish(StatusEvent())
        await bus.publish(MessageEvent(message=Message.user("hi")))

        assert seen == [StatusEvent, MessageEvent]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise ValueError("bad handler")

        async def working(event):
            seen.append(event)

        bus.subscribe(StatusEvent, broken)
        bus.subscribe(StatusEvent, working)
        await bus.publish(StatusEvent())

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event)

        bus.subscribe(StatusEvent, handler)
        bus.subscribe(StatusEvent, handler)
        bus.unsubscribe(StatusEvent, handler)
        await bus.publish(StatusEvent())

        assert seen == []


class TestStateStream:
    """Tests for observable values."""

    def test_equal_value_is_noop(self):
        stream = StateStream(ConversationStatus.idle())
        stream.set(ConversationStatus.idle())
        assert stream.value == ConversationStatus.idle()

    @pytest.mark.asyncio
    async def test_watch_yields_current_then_updates(self):
        stream = StateStream(1)
        seen = []

        async def watch():
            async for value in stream.watch():
                seen.append(value)
                if value == 3:
                    return

        task = asyncio.create_task(watch())
        await asyncio.sleep(0)
        stream.set(2)
        stream.set(2)
        stream.set(3)
        await asyncio.wait_for(task, timeout=1.0)

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_slow_watcher_misses_nothing(self):
        """Updates made before the watcher runs are queued, not dropped."""
        stream = StateStream("a")
        iterator = stream.watch().__aiter__()

        assert await iterator.__anext__() == "a"
        stream.set("b")
        stream.set("c")
        assert await iterator.__anext__() == "b"
        assert await iterator.__anext__() == "c"
        await iterator.aclose()

        assert stream.watcher_count == 0
