"""
Async Streaming LLM Module

Inference adapter for an OpenAI-compatible chat completions endpoint with:
- Token-by-token delivery over server-sent events
- Mid-generation cancellation (reported as InferenceCancelledError)
- Conversation history replayed with every request
- Single retry when the request fails before any token arrived
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional, List, Dict, Any, AsyncIterator

import aiohttp

from acechat.config import InferenceConfig, settings
from acechat.core.responses import TUTOR_SYSTEM_PROMPT
from acechat.logger import get_logger
from .adapters import InferenceAdapter, InferenceCancelledError

logger = get_logger(__name__)


class GenerationState(Enum):
    """State of LLM generation."""
    IDLE = auto()
    GENERATING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    ERROR = auto()


@dataclass
class PromptMessage:
    """Chat message sent to the model."""
    role: str  # system, user, assistant
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatInference(InferenceAdapter):
    """
    Streaming tutor model client.

    Features:
    - Streaming token delivery
    - Cancellation that closes the HTTP stream
    - Bounded conversation history
    - Single retry on early failure

    Usage:
        llm = ChatInference(model_path=settings.model.path)
        await llm.initialize()
        async for token in llm.stream_reply("I goes to school"):
            print(token, end="", flush=True)
    """

    def __init__(
        self,
        config: Optional[InferenceConfig] = None,
        model_path: Optional[Path] = None,
        system_prompt: str = TUTOR_SYSTEM_PROMPT,
    ):
        self._config = config or settings.inference
        self._model_path = model_path
        self._system_prompt = system_prompt

        self._http: Optional[aiohttp.ClientSession] = None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._history: List[PromptMessage] = []

        # State
        self._state = GenerationState.IDLE
        self._cancel_event = asyncio.Event()
        self._current_generation_id = ""

        # Metrics
        self._total_tokens = 0
        self._generation_count = 0

    @property
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    # ========================================================================
    # Session lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Validate the model and endpoint settings and open the HTTP session."""
        self._config.validate()

        if self._model_path is not None:
            path = Path(self._model_path)
            if not path.exists() or path.stat().st_size == 0:
                raise FileNotFoundError(f"Model file not found: {path}")

        if self._http is None:
            timeout = aiohttp.ClientTimeout(
                total=None,
                connect=self._config.connect_timeout_s,
            )
            self._http = aiohttp.ClientSession(timeout=timeout)

        self._history.clear()
        self._state = GenerationState.IDLE
        self._cancel_event.clear()
        logger.info(
            f"Inference ready: model={self._config.model}, "
            f"endpoint={self._config.endpoint}"
        )

    async def reset_session(self) -> None:
        """Drop history; the system prompt is re-sent with the next request."""
        await self.cancel()
        self._history.clear()
        logger.debug("Conversation reset")

    async def shutdown(self) -> None:
        """Cancel generation and close the HTTP session."""
        await self.cancel()
        if self._http is not None:
            try:
                await self._http.close()
            except Exception as e:
                logger.error(f"Failed to close HTTP session: {e}")
            self._http = None
        self._history.clear()
        logger.debug("Inference closed")

    # ========================================================================
    # Generation
    # ========================================================================

    async def stream_reply(self, user_text: str) -> AsyncIterator[str]:
        """
        Stream the tutor's reply to a user utterance.

        Args:
            user_text: Trimmed user utterance

        Yields:
            Generated tokens one at a time
        """
        if self._http is None:
            raise RuntimeError("Engine not initialized")

        self._current_generation_id = f"gen_{uuid.uuid4().hex[:8]}"
        self._state = GenerationState.GENERATING

        body = self._build_body(user_text)
        start_time = time.time()
        accumulated: List[str] = []

        try:
            for attempt in range(2):
                try:
                    async for token in self._stream_chunks(body):
                        if self._cancel_event.is_set():
                            raise InferenceCancelledError()
                        accumulated.append(token)
                        yield token
                    break
                except InferenceCancelledError:
                    raise
                except Exception as e:
                    if self._cancel_event.is_set():
                        raise InferenceCancelledError() from e
                    if attempt == 0 and not accumulated:
                        logger.warning(f"LLM error (attempt 1/2): {e}, retrying...")
                        await asyncio.sleep(0.3)
                        continue
                    logger.error(f"LLM error: {e}")
                    raise

            self._remember(user_text, "".join(accumulated))
            self._state = GenerationState.COMPLETED

        except InferenceCancelledError:
            self._state = GenerationState.CANCELLED
            logger.info("Inference cancelled")
            raise
        except (asyncio.CancelledError, GeneratorExit):
            self._state = GenerationState.CANCELLED
            raise
        except Exception:
            self._state = GenerationState.ERROR
            raise
        finally:
            self._cancel_event.clear()
            generation_time = (time.time() - start_time) * 1000
            self._total_tokens += len(accumulated)
            self._generation_count += 1
            logger.debug(
                f"{self._current_generation_id}: {len(accumulated)} tokens "
                f"in {generation_time:.0f}ms"
            )

    async def _stream_chunks(self, body: Dict[str, Any]) -> AsyncIterator[str]:
        """POST the request and yield content deltas until [DONE]."""
        if self._http is None:
            raise RuntimeError("Engine not initialized")

        async with self._http.post(
            self._config.chat_url,
            headers=self._headers,
            json=body,
        ) as response:
            self._response = response
            try:
                response.raise_for_status()
                async for line in response.content:
                    content = self.parse_sse_line(line)
                    if content is None:
                        break
                    if content:
                        yield content
            finally:
                self._response = None

    @staticmethod
    def parse_sse_line(raw: bytes) -> Optional[str]:
        """
        Extract the content delta from one server-sent event line.

        Returns:
            The delta text ("" when the line carries none), or None at [DONE]

        Raises:
            RuntimeError: If the server streamed an error object
        """
        line = raw.decode("utf-8").strip()
        if not line.startswith("data: "):
            return ""

        data_str = line[6:]
        if data_str == "[DONE]":
            return None

        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return ""

        if "error" in data:
            error = data["error"]
            detail = error.get("message", error) if isinstance(error, dict) else error
            raise RuntimeError(f"Model server error: {detail}")

        choices = data.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""

    def _build_body(self, user_text: str) -> Dict[str, Any]:
        messages = self.build_messages(user_text)
        return {
            "model": self._config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self._config.temperature,
            "top_p": self._config.top_p,
            "top_k": self._config.top_k,
            "max_tokens": self._config.max_tokens,
            "stream": True,
        }

    def build_messages(self, user_text: str) -> List[PromptMessage]:
        """System prompt, recent history, then the new utterance."""
        messages = [PromptMessage(role="system", content=self._system_prompt)]
        messages.extend(self._history)
        messages.append(PromptMessage(role="user", content=user_text))
        return messages

    def _remember(self, user_text: str, reply: str) -> None:
        """Append a finished turn and trim to the configured number of turns."""
        self._history.append(PromptMessage(role="user", content=user_text))
        self._history.append(PromptMessage(role="assistant", content=reply))

        max_messages = self._config.max_history_turns * 2
        if len(self._history) > max_messages:
            self._history = self._history[len(self._history) - max_messages:]

    async def cancel(self) -> None:
        """Cancel current generation."""
        if self._state != GenerationState.GENERATING:
            return
        self._cancel_event.set()
        response = self._response
        if response is not None:
            # Unblocks a read that is still waiting for the first token
            response.close()
        logger.debug("Generation cancel requested")

    @property
    def state(self) -> GenerationState:
        """Get current state."""
        return self._state

    @property
    def history(self) -> List[PromptMessage]:
        """Past turns replayed with the next request."""
        return list(self._history)

    @property
    def stats(self) -> Dict[str, Any]:
        """Get generation statistics."""
        return {
            "total_tokens": self._total_tokens,
            "generation_count": self._generation_count,
            "avg_tokens": (
                self._total_tokens / self._generation_count
                if self._generation_count > 0 else 0
            ),
        }
