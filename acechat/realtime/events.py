"""
Event System and Observable State

Two ways to watch the conversation:
- StateStream: an observable current value (statuses, message list). Watchers
  get the current value first, then every later change in order.
- EventBus: trace events describing what the orchestrator did, in the order
  it did it (status changes, message appends/reveals, tokens, speech enqueue).

Event Types:
- StatusEvent: Conversation status change
- MessageEvent: Message appended, revealed, or list cleared
- LLMTokenEvent: Streaming token from the model
- SpeakEvent: Reply text handed to speech output
- TurnEvent: Turn finished (completed, cancelled, failed)
"""

import asyncio
import time
import uuid
from abc import ABC
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    TypeVar,
)

from acechat.core.models import ConversationStatus, Message
from acechat.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
EventHandler = Callable[[Any], Awaitable[None]]


@dataclass
class Event(ABC):
    """Base event class for all conversation events."""
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    timestamp: float = field(default_factory=time.time)
    source: str = ""

    @property
    def age_ms(self) -> float:
        """Get event age in milliseconds."""
        return (time.time() - self.timestamp) * 1000


@dataclass
class StatusEvent(Event):
    """Conversation status changed."""
    status: ConversationStatus = field(default_factory=ConversationStatus.idle)
    previous: ConversationStatus = field(default_factory=ConversationStatus.idle)
    source: str = "orchestrator"


class MessageAction(Enum):
    """What happened to the message list."""
    APPENDED = auto()
    REVEALED = auto()
    REMOVED = auto()    # Hidden message dropped by a late cancel
    CLEARED = auto()


@dataclass
class MessageEvent(Event):
    """Message list changed."""
    action: MessageAction = MessageAction.APPENDED
    message: Optional[Message] = None
    source: str = "orchestrator"


@dataclass
class LLMTokenEvent(Event):
    """Streaming token from the model."""
    token: str = ""
    token_index: int = 0
    is_first: bool = False
    accumulated_text: str = ""
    source: str = "llm"


@dataclass
class SpeakEvent(Event):
    """Reply text handed to speech output."""
    text: str = ""
    message_id: str = ""
    enqueued: bool = True
    source: str = "orchestrator"


class TurnOutcome(Enum):
    """How a turn ended."""
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


@dataclass
class TurnEvent(Event):
    """A turn finished."""
    outcome: TurnOutcome = TurnOutcome.COMPLETED
    user_text: str = ""
    reply_text: str = ""
    duration_ms: float = 0.0
    source: str = "orchestrator"


# ============================================================================
# Event Bus
# ============================================================================

class EventBus:
    """
    Async publish/subscribe for trace events.

    Handlers run in subscription order before publish() returns, so the
    order handlers observe is the order the publisher produced.
    """

    def __init__(self):
        self._handlers: Dict[type, List[EventHandler]] = {}
        self._event_count: int = 0

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        """Subscribe to events of a specific type (and its subclasses)."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: EventHandler) -> None:
        """Unsubscribe a handler from an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    async def publish(self, event: Event) -> None:
        """Dispatch an event to every matching handler."""
        self._event_count += 1

        handlers = []
        for registered_type, type_handlers in self._handlers.items():
            if isinstance(event, registered_type):
                handlers.extend(type_handlers)

        for handler in handlers:
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Handler error for {type(event).__name__}: {e}")

    @property
    def event_count(self) -> int:
        """Number of events published so far."""
        return self._event_count


# ============================================================================
# Observable State
# ============================================================================

class StateStream(Generic[T]):
    """
    Observable value with a single writer.

    Setting an equal value is a no-op. Each watcher has its own queue, so no
    update is dropped even if the watcher is slow.

    Usage:
        status = StateStream(ConversationStatus.loading())
        async for value in status.watch():
            render(value)
    """

    def __init__(self, initial: T):
        self._value = initial
        self._watchers: List[asyncio.Queue] = []

    @property
    def value(self) -> T:
        """Current value."""
        return self._value

    def set(self, value: T) -> None:
        """Replace the current value and notify watchers. Loop thread only."""
        if value == self._value:
            return
        self._value = value
        for queue in list(self._watchers):
            queue.put_nowait(value)

    async def watch(self) -> AsyncIterator[T]:
        """Yield the current value, then every later value."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._value)
        self._watchers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers.remove(queue)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)
