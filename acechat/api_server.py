"""
FastAPI Backend Server

Exposes a practice conversation as REST endpoints plus a server-sent
event stream, for a web UI to consume. The conversation opens once the
model file is present; until then only the download endpoints answer.
"""

import asyncio
import json
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from acechat.config import settings
from acechat.core.models import ConversationStatus, DownloadState, DownloadStatus, Message
from acechat.logger import get_logger
from acechat.messages import msg
from acechat.realtime.adapters import DownloadCoordinator
from acechat.realtime.conversation_controller import ConversationOrchestrator
from acechat.realtime.download import ModelDownloadCoordinator
from acechat.realtime.events import (
    Event,
    LLMTokenEvent,
    MessageEvent,
    SpeakEvent,
    StatusEvent,
    TurnEvent,
)
from acechat.realtime.voice_agent import KeyboardOnlySpeechInput, MutedSpeechOutput

logger = get_logger(__name__)

OrchestratorFactory = Callable[[Path], ConversationOrchestrator]


# Pydantic models for API
class UtteranceRequest(BaseModel):
    text: str = Field(max_length=2000)


class MessageModel(BaseModel):
    id: str
    speaker: str
    kind: str
    text: str
    created_at: float


class StatusModel(BaseModel):
    phase: str
    message: str = ""


class SpeechInputModel(BaseModel):
    state: str
    text: str = ""
    message: str = ""


class SpeechOutputModel(BaseModel):
    state: str
    message: str = ""


class StateResponse(BaseModel):
    status: StatusModel
    messages: list[MessageModel]
    speech_input: SpeechInputModel
    speech_output: SpeechOutputModel


class DownloadResponse(BaseModel):
    state: str
    progress: int
    message: str = ""


class ActionResponse(BaseModel):
    accepted: bool
    message: str = ""


# ============================================================================
# Serialization
# ============================================================================

def message_to_model(message: Message) -> MessageModel:
    return MessageModel(
        id=message.id,
        speaker=message.speaker.name.lower(),
        kind=message.kind.name.lower(),
        text=message.text,
        created_at=message.created_at,
    )


def status_to_model(status: ConversationStatus) -> StatusModel:
    return StatusModel(phase=status.phase.name.lower(), message=status.message)


def download_to_model(status: DownloadStatus) -> DownloadResponse:
    return DownloadResponse(
        state=status.state.name.lower(),
        progress=status.progress,
        message=status.message,
    )


def event_to_dict(event: Event) -> Dict:
    """Flatten a trace event for the event stream."""
    data: Dict = {
        "type": type(event).__name__,
        "event_id": event.event_id,
        "timestamp": event.timestamp,
    }

    if isinstance(event, StatusEvent):
        data["status"] = status_to_model(event.status).model_dump()
        data["previous"] = status_to_model(event.previous).model_dump()
    elif isinstance(event, MessageEvent):
        data["action"] = event.action.name.lower()
        # Hidden messages stay hidden until their REVEALED event
        if event.message is not None and event.message.visible:
            data["message"] = message_to_model(event.message).model_dump()
    elif isinstance(event, LLMTokenEvent):
        data["token_index"] = event.token_index
        data["is_first"] = event.is_first
    elif isinstance(event, SpeakEvent):
        data["message_id"] = event.message_id
        data["enqueued"] = event.enqueued
    elif isinstance(event, TurnEvent):
        data["outcome"] = event.outcome.name.lower()
        data["duration_ms"] = round(event.duration_ms)

    return data


# ============================================================================
# Service
# ============================================================================

def build_orchestrator(model_path: Path) -> ConversationOrchestrator:
    """Wire the configured adapters into a new orchestrator."""
    from acechat.realtime.llm_stream import ChatInference

    if settings.server.voice_input:
        from acechat.realtime.stt_stream import AzureSpeechInput
        speech_input = AzureSpeechInput()
    else:
        speech_input = KeyboardOnlySpeechInput()

    if settings.server.voice_output:
        from acechat.realtime.tts_stream import AzureSpeechOutput
        speech_output = AzureSpeechOutput()
    else:
        speech_output = MutedSpeechOutput()

    return ConversationOrchestrator(
        inference=ChatInference(model_path=model_path),
        speech_input=speech_input,
        speech_output=speech_output,
    )


class TutorService:
    """
    Owns the download gate and, once the model is present, the conversation.

    Trace events are fanned out to every connected event stream.
    """

    def __init__(
        self,
        downloader: Optional[DownloadCoordinator] = None,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
    ):
        self._downloader = downloader or ModelDownloadCoordinator()
        self._factory = orchestrator_factory or build_orchestrator
        self._orchestrator: Optional[ConversationOrchestrator] = None
        self._gate_task: Optional[asyncio.Task] = None
        self._open_error: Optional[str] = None
        self._listeners: List[asyncio.Queue] = []

    async def start(self) -> None:
        await self._downloader.check()
        self._gate_task = asyncio.create_task(self._open_when_downloaded())

    async def _open_when_downloaded(self) -> None:
        async for status in self._downloader.status.watch():
            if status.is_ready:
                break

        logger.info("Model present, opening conversation")
        try:
            orchestrator = self._factory(self._downloader.model_path)
        except Exception as e:
            logger.exception(f"Failed to open conversation: {e}")
            self._open_error = msg("error.engine_init_failed")
            return

        orchestrator.event_bus.subscribe(Event, self._fan_out)
        self._orchestrator = orchestrator
        await orchestrator.start()

    async def _fan_out(self, event: Event) -> None:
        payload = event_to_dict(event)
        for queue in list(self._listeners):
            queue.put_nowait(payload)

    async def shutdown(self) -> None:
        if self._gate_task is not None and not self._gate_task.done():
            self._gate_task.cancel()
            try:
                await self._gate_task
            except asyncio.CancelledError:
                pass

        if self._downloader.status.value.state == DownloadState.DOWNLOADING:
            await self._downloader.cancel()

        if self._orchestrator is not None:
            await self._orchestrator.shutdown()

    def listen(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.append(queue)
        return queue

    def unlisten(self, queue: asyncio.Queue) -> None:
        if queue in self._listeners:
            self._listeners.remove(queue)

    @property
    def downloader(self) -> DownloadCoordinator:
        return self._downloader

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        """The open conversation, or 503 while the model is missing or it failed to open."""
        if self._orchestrator is None:
            detail = self._open_error or msg("conversation.not_ready")
            raise HTTPException(status_code=503, detail=detail)
        return self._orchestrator


# Rate limiting middleware
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple in-memory rate limiting middleware.
    Limits requests per IP address within a time window.
    """

    EXEMPT_PATHS = ("/api/health", "/api/events", "/api/state", "/api/download")

    def __init__(self, app, requests_limit: int = 120, window_seconds: int = 60):
        super().__init__(app)
        self.requests_limit = requests_limit
        self.window_seconds = window_seconds
        self.request_counts: Dict[str, list] = defaultdict(list)

    async def dispatch(self, request: Request, call_next):
        # Polling and streaming endpoints are not limited
        if request.method == "GET" and request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()

        current_time = time.time()
        cutoff_time = current_time - self.window_seconds
        self.request_counts[client_ip] = [
            ts for ts in self.request_counts[client_ip] if ts > cutoff_time
        ]

        if len(self.request_counts[client_ip]) >= self.requests_limit:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": msg("error.rate_limited"),
                    "retry_after": self.window_seconds
                },
                headers={"Retry-After": str(self.window_seconds)}
            )

        self.request_counts[client_ip].append(current_time)
        return await call_next(request)


# ============================================================================
# Application
# ============================================================================

def create_app(service: Optional[TutorService] = None) -> FastAPI:
    """Build the API around a tutor service."""
    tutor = service or TutorService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup resources."""
        await tutor.start()
        yield
        await tutor.shutdown()

    app = FastAPI(
        title="AceChat API",
        description="Spoken English practice conversation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.tutor = tutor

    app.add_middleware(
        RateLimitMiddleware,
        requests_limit=settings.server.rate_limit_requests,
        window_seconds=settings.server.rate_limit_window,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/api/download", response_model=DownloadResponse)
    async def get_download():
        """Model availability and download progress."""
        return download_to_model(tutor.downloader.status.value)

    @app.post("/api/download", response_model=DownloadResponse)
    async def start_download():
        """Start downloading the model if it is missing."""
        if not tutor.downloader.status.value.is_ready:
            await tutor.downloader.start()
        return download_to_model(tutor.downloader.status.value)

    @app.delete("/api/download", response_model=DownloadResponse)
    async def cancel_download():
        """Abort a running download."""
        if not tutor.downloader.status.value.is_ready:
            await tutor.downloader.cancel()
        return download_to_model(tutor.downloader.status.value)

    @app.get("/api/state", response_model=StateResponse)
    async def get_state():
        """Current status and the messages the learner can see."""
        orchestrator = tutor.orchestrator
        speech_input = orchestrator.speech_input_status.value
        speech_output = orchestrator.speech_output_status.value
        return StateResponse(
            status=status_to_model(orchestrator.status),
            messages=[message_to_model(m) for m in orchestrator.visible_messages],
            speech_input=SpeechInputModel(
                state=speech_input.state.name.lower(),
                text=speech_input.text,
                message=speech_input.message,
            ),
            speech_output=SpeechOutputModel(
                state=speech_output.state.name.lower(),
                message=speech_output.message,
            ),
        )

    @app.post("/api/utterance", response_model=ActionResponse, status_code=202)
    async def submit_utterance(request: UtteranceRequest):
        """Start a turn with typed text."""
        orchestrator = tutor.orchestrator
        if not request.text.strip():
            return ActionResponse(accepted=False)
        if not orchestrator.status.is_idle:
            raise HTTPException(status_code=409, detail=msg("conversation.busy"))
        task = await orchestrator.submit_utterance(request.text)
        return ActionResponse(accepted=task is not None)

    @app.post("/api/mic", response_model=ActionResponse)
    async def tap_mic():
        """Start a listening session."""
        accepted = await tutor.orchestrator.on_mic_tapped()
        return ActionResponse(accepted=accepted)

    @app.post("/api/turn/cancel", response_model=ActionResponse)
    async def cancel_turn():
        """Stop the reply being generated."""
        accepted = await tutor.orchestrator.cancel_turn()
        return ActionResponse(accepted=accepted)

    @app.post("/api/conversation/reset", response_model=ActionResponse)
    async def reset_conversation():
        """Clear the conversation and start over."""
        if not await tutor.orchestrator.reset_conversation():
            raise HTTPException(status_code=409, detail=msg("conversation.busy"))
        return ActionResponse(accepted=True, message=msg("conversation.cleared"))

    @app.post("/api/retry", response_model=ActionResponse)
    async def retry():
        """Leave the error state."""
        accepted = await tutor.orchestrator.retry()
        return ActionResponse(accepted=accepted)

    @app.get("/api/events")
    async def stream_events(request: Request):
        """Server-sent stream of conversation trace events."""
        queue = tutor.listen()

        async def generate() -> AsyncGenerator[str, None]:
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        payload = await asyncio.wait_for(queue.get(), timeout=15.0)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    yield f"data: {json.dumps(payload)}\n\n"
            finally:
                tutor.unlisten(queue)

        return StreamingResponse(
            generate(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "acechat.api_server:app",
        host=settings.server.host,
        port=settings.server.port,
    )
