"""
Conversation Controller Module

Central orchestrator for a spoken practice conversation. Owns the message
list and the conversation status, and sequences speech input, streamed
inference, reply post-processing and speech output.

Turn sequence (each step happens-before the next):
    USER appended -> LOADING -> first token -> STREAMING -> stream done
    -> ASSISTANT appended (hidden) -> speech enqueued -> ASSISTANT revealed
    -> IDLE

Failures never escape: they become a status the presentation layer shows.
"""

import asyncio
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple

from acechat.config import settings
from acechat.core.models import (
    ConversationPhase,
    ConversationStatus,
    Message,
    SpeechInputState,
    SpeechInputStatus,
    SpeechOutputStatus,
)
from acechat.core.responses import classify, normalize_response, vocalization_text
from acechat.logger import get_logger
from acechat.messages import msg

from .adapters import (
    InferenceAdapter,
    InferenceCancelledError,
    SpeechInputAdapter,
    SpeechOutputAdapter,
)
from .events import (
    EventBus,
    LLMTokenEvent,
    MessageAction,
    MessageEvent,
    SpeakEvent,
    StateStream,
    StatusEvent,
    TurnEvent,
    TurnOutcome,
)

logger = get_logger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the conversation orchestrator."""
    # How long a speech input error stays on screen before resetting
    stt_error_grace_s: float = field(
        default_factory=lambda: settings.conversation.stt_error_grace_s
    )


class ConversationOrchestrator:
    """
    Single source of truth for one practice conversation.

    Coordinates:
    - Inference: tutor replies, streamed token by token
    - Speech input: mic sessions whose final text becomes a turn
    - Speech output: spoken replies (corrections stay silent)

    Features:
    - One turn in flight at a time, gated by the conversation status
    - Bubble and voice revealed together
    - Cancellation ends a turn quietly, errors end it with a status

    Usage:
        orchestrator = ConversationOrchestrator(inference, stt, tts)
        await orchestrator.start()
        await orchestrator.submit_utterance("I'm exciting about the trip")
        ...
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        inference: InferenceAdapter,
        speech_input: SpeechInputAdapter,
        speech_output: SpeechOutputAdapter,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self._config = config or ControllerConfig()
        self._inference = inference
        self._speech_input = speech_input
        self._speech_output = speech_output
        self._event_bus = event_bus or EventBus()

        # Owned state
        self._messages: StateStream[Tuple[Message, ...]] = StateStream(())
        self._status: StateStream[ConversationStatus] = StateStream(ConversationStatus.loading())

        # Lifecycle
        self._started = False
        self._closed = False
        self._engine_ready = False

        # Tasks
        self._turn_task: Optional[asyncio.Task] = None
        self._speech_input_task: Optional[asyncio.Task] = None
        self._grace_task: Optional[asyncio.Task] = None

        # Current turn
        self._cancel_requested = False
        self._stream_open = False

        # Metrics
        self._turn_count = 0
        self._failed_turns = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Subscribe to speech input and initialize the engine, once."""
        if self._started:
            return
        self._started = True

        self._speech_input_task = asyncio.create_task(self._observe_speech_input())
        await self._initialize_engine()

    async def _initialize_engine(self) -> None:
        try:
            await self._inference.initialize()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Engine initialization failed: {e}")
            key = "error.model_missing" if isinstance(e, FileNotFoundError) else "error.engine_init_failed"
            await self._set_status(ConversationStatus.error(msg(key)))
            return

        self._engine_ready = True
        await self._set_status(ConversationStatus.idle())
        logger.info("Engine ready")

    async def retry(self) -> bool:
        """
        Leave ERROR on explicit user request.

        Re-runs engine initialization if it never succeeded; otherwise just
        returns to IDLE.
        """
        if self._status.value.phase != ConversationPhase.ERROR or self._closed:
            return False

        if not self._engine_ready:
            await self._set_status(ConversationStatus.loading())
            await self._initialize_engine()
        else:
            await self._set_status(ConversationStatus.idle())
        return True

    async def shutdown(self) -> None:
        """Stop any turn and release all adapters. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        logger.debug("Shutting down conversation...")

        if self._turn_task is not None and not self._turn_task.done():
            try:
                await self._inference.cancel()
            except Exception as e:
                logger.debug(f"Error cancelling inference: {e}")
            self._turn_task.cancel()
            try:
                await self._turn_task
            except asyncio.CancelledError:
                pass
            if self._status.value.is_busy:
                self._status.set(ConversationStatus.idle())

        for task in (self._grace_task, self._speech_input_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await self._inference.shutdown()
        except Exception as e:
            logger.debug(f"Error shutting down inference: {e}")

        try:
            await self._speech_input.shutdown()
        except Exception as e:
            logger.debug(f"Error shutting down speech input: {e}")

        try:
            await self._speech_output.shutdown()
        except Exception as e:
            logger.debug(f"Error shutting down speech output: {e}")

        logger.info("Conversation shut down")

    # ========================================================================
    # User intents
    # ========================================================================

    async def submit_utterance(self, text: str) -> Optional[asyncio.Task]:
        """
        Start a turn for the given utterance.

        Ignored unless the conversation is IDLE and the trimmed text is
        non-empty.

        Returns:
            The task running the turn, or None if the call was ignored
        """
        if not self._status.value.is_idle or self._closed:
            return None

        trimmed = text.strip()
        if not trimmed:
            return None

        # Both changes land before the first await so a second call is gated
        user_message = Message.user(trimmed)
        self._messages.set(self._messages.value + (user_message,))
        previous = self._status.value
        self._status.set(ConversationStatus.loading())

        await self._event_bus.publish(MessageEvent(action=MessageAction.APPENDED, message=user_message))
        await self._event_bus.publish(StatusEvent(status=self._status.value, previous=previous))

        logger.debug(f"User: {trimmed}")
        self._cancel_requested = False
        self._turn_task = asyncio.create_task(self._run_turn(trimmed))
        return self._turn_task

    async def cancel_turn(self) -> bool:
        """
        Stop the turn in flight.

        The request is recorded for the turn and checked at every step, so
        it holds whether the stream has opened yet or has already finished.
        """
        if not self._status.value.is_busy:
            return False
        self._cancel_requested = True
        if self._stream_open:
            await self._inference.cancel()
        return True

    async def reset_conversation(self) -> bool:
        """
        Clear the messages and start a fresh model session.

        Only allowed while IDLE so a turn is never torn apart.
        """
        if not self._status.value.is_idle or self._closed:
            return False

        await self._set_status(ConversationStatus.loading())

        try:
            await self._speech_output.stop()
        except Exception as e:
            logger.warning(f"Failed to stop speech output: {e}")

        self._messages.set(())
        await self._event_bus.publish(MessageEvent(action=MessageAction.CLEARED))

        try:
            await self._inference.reset_session()
        except Exception as e:
            logger.exception(f"Failed to reset conversation: {e}")

        await self._set_status(ConversationStatus.idle())
        logger.info("Conversation reset")
        return True

    async def on_mic_tapped(self) -> bool:
        """Start listening if the conversation is IDLE and the mic is free."""
        if not self._status.value.is_idle or self._closed:
            return False
        if self._speech_input.status.value.state == SpeechInputState.LISTENING:
            return False

        try:
            await self._speech_input.start_listening()
        except Exception as e:
            logger.error(f"Failed to start listening: {e}")
            return False
        return True

    # ========================================================================
    # Turn
    # ========================================================================

    async def _run_turn(self, user_text: str) -> None:
        """Stream, classify, speak, reveal."""
        start_time = time.time()
        accumulated = ""
        token_index = 0

        try:
            if self._cancel_requested:
                raise InferenceCancelledError()

            self._stream_open = True
            async with aclosing(self._inference.stream_reply(user_text)) as stream:
                async for token in stream:
                    if self._cancel_requested:
                        raise InferenceCancelledError()
                    token_index += 1
                    accumulated += token
                    if token_index == 1:
                        await self._set_status(ConversationStatus.streaming())
                    await self._event_bus.publish(LLMTokenEvent(
                        token=token,
                        token_index=token_index,
                        is_first=(token_index == 1),
                        accumulated_text=accumulated,
                    ))
            self._stream_open = False

            if self._cancel_requested:
                raise InferenceCancelledError()

            reply = normalize_response(accumulated)
            kind = classify(reply)
            message = Message.assistant(reply, kind)
            await self._append(message)
            spoken = vocalization_text(reply, kind)

        except InferenceCancelledError:
            await self._end_cancelled(user_text, start_time)
            return
        except asyncio.CancelledError:
            # Torn down mid-turn; the partial reply is dropped
            self._status.set(ConversationStatus.idle())
            raise
        except Exception as e:
            logger.exception(f"Inference error: {e}")
            self._failed_turns += 1
            await self._set_status(ConversationStatus.error(msg("error.inference_failed")))
            await self._finish_turn(TurnOutcome.FAILED, user_text, "", start_time)
            return
        finally:
            self._stream_open = False

        await self._speak(spoken, message.id)

        if self._cancel_requested:
            # Stopped while the reply was being handed to speech; it was never shown
            try:
                await self._speech_output.stop()
            except Exception as e:
                logger.warning(f"Failed to stop speech output: {e}")
            await self._remove(message)
            await self._end_cancelled(user_text, start_time)
            return

        await self._reveal(message)
        await self._set_status(ConversationStatus.idle())

        self._turn_count += 1
        await self._finish_turn(TurnOutcome.COMPLETED, user_text, reply, start_time)

    async def _speak(self, text: str, message_id: str) -> None:
        """Hand text to speech output. Voice is best-effort."""
        if not text.strip():
            return

        enqueued = True
        try:
            await self._speech_output.speak(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Speech output failed: {e}")
            enqueued = False

        await self._event_bus.publish(SpeakEvent(text=text, message_id=message_id, enqueued=enqueued))

    async def _end_cancelled(self, user_text: str, start_time: float) -> None:
        logger.info("Turn cancelled")
        await self._set_status(ConversationStatus.idle())
        await self._finish_turn(TurnOutcome.CANCELLED, user_text, "", start_time)

    async def _finish_turn(
        self,
        outcome: TurnOutcome,
        user_text: str,
        reply: str,
        start_time: float,
    ) -> None:
        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"Turn {outcome.name.lower()} in {duration_ms:.0f}ms")
        await self._event_bus.publish(TurnEvent(
            outcome=outcome,
            user_text=user_text,
            reply_text=reply,
            duration_ms=duration_ms,
        ))

    # ========================================================================
    # Speech input
    # ========================================================================

    async def _observe_speech_input(self) -> None:
        """Turn final transcripts into turns and clear errors after a grace delay."""
        async for status in self._speech_input.status.watch():
            try:
                if status.state == SpeechInputState.FINAL:
                    if status.text:
                        await self.submit_utterance(status.text)
                    self._speech_input.reset()

                elif status.state == SpeechInputState.ERROR:
                    logger.info(f"Speech input error: {status.message}")
                    if self._grace_task is not None:
                        self._grace_task.cancel()
                    self._grace_task = asyncio.create_task(self._clear_error_later(status))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling speech input: {e}")

    async def _clear_error_later(self, error: SpeechInputStatus) -> None:
        """Reset speech input once the error has been on screen long enough."""
        await asyncio.sleep(self._config.stt_error_grace_s)
        # A new session may have started meanwhile
        if self._speech_input.status.value == error:
            self._speech_input.reset()

    # ========================================================================
    # State helpers
    # ========================================================================

    async def _set_status(self, status: ConversationStatus) -> None:
        previous = self._status.value
        if status == previous:
            return
        self._status.set(status)
        await self._event_bus.publish(StatusEvent(status=status, previous=previous))

    async def _append(self, message: Message) -> None:
        self._messages.set(self._messages.value + (message,))
        await self._event_bus.publish(MessageEvent(action=MessageAction.APPENDED, message=message))

    async def _remove(self, message: Message) -> None:
        self._messages.set(tuple(m for m in self._messages.value if m.id != message.id))
        await self._event_bus.publish(MessageEvent(action=MessageAction.REMOVED, message=message))

    async def _reveal(self, message: Message) -> None:
        revealed = message.revealed()
        self._messages.set(tuple(
            revealed if m.id == message.id else m for m in self._messages.value
        ))
        await self._event_bus.publish(MessageEvent(action=MessageAction.REVEALED, message=revealed))

    # ========================================================================
    # Observation
    # ========================================================================

    async def wait_for_turn(self) -> ConversationStatus:
        """Wait for the current turn (if any) to finish."""
        task = self._turn_task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._status.value

    @property
    def status(self) -> ConversationStatus:
        """Get current status."""
        return self._status.value

    @property
    def status_stream(self) -> StateStream[ConversationStatus]:
        return self._status

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of all messages, hidden ones included."""
        return self._messages.value

    @property
    def messages_stream(self) -> StateStream[Tuple[Message, ...]]:
        return self._messages

    @property
    def visible_messages(self) -> Tuple[Message, ...]:
        return tuple(m for m in self._messages.value if m.visible)

    @property
    def speech_input_status(self) -> StateStream[SpeechInputStatus]:
        return self._speech_input.status

    @property
    def speech_output_status(self) -> StateStream[SpeechOutputStatus]:
        return self._speech_output.status

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> Dict[str, Any]:
        """Get conversation statistics."""
        return {
            "status": str(self._status.value),
            "message_count": len(self._messages.value),
            "turn_count": self._turn_count,
            "failed_turns": self._failed_turns,
            "events_published": self._event_bus.event_count,
        }
