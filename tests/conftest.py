"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests,
including scripted stand-ins for the inference and speech adapters.
"""

import asyncio
import os
import pytest
from pathlib import Path
from typing import Callable, List, Optional

# Set test environment
os.environ["APP_ENV"] = "test"
os.environ["LLM_ENDPOINT"] = "http://127.0.0.1:8080"
os.environ["AZURE_SPEECH_API_KEY"] = ""
os.environ["AZURE_SPEECH_REGION"] = ""
os.environ["MODEL_DIR"] = "/tmp/acechat_test_models"

from acechat.core.models import (
    DownloadStatus,
    SpeechInputStatus,
    SpeechOutputStatus,
)
from acechat.realtime.adapters import (
    DownloadCoordinator,
    InferenceAdapter,
    InferenceCancelledError,
    SpeechInputAdapter,
    SpeechOutputAdapter,
)
from acechat.realtime.conversation_controller import ConversationOrchestrator, ControllerConfig
from acechat.realtime.events import Event, EventBus, StateStream


class FakeInference(InferenceAdapter):
    """Replays scripted tokens, optionally failing or pausing mid-stream."""

    def __init__(
        self,
        tokens: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        init_error: Optional[Exception] = None,
    ):
        self.tokens = list(tokens or [])
        self.error = error
        self.init_error = init_error

        self.requests: List[str] = []
        self.init_calls = 0
        self.cancel_calls = 0
        self.reset_calls = 0
        self.shutdown_calls = 0

        self._pause_at: Optional[int] = None
        self._resume: Optional[asyncio.Event] = None
        self.paused: Optional[asyncio.Event] = None
        self._cancelled = False

    def pause_after(self, count: int) -> None:
        """Hold the stream after `count` tokens until cancel() or resume()."""
        self._pause_at = count
        self._resume = asyncio.Event()
        self.paused = asyncio.Event()

    def resume(self) -> None:
        if self._resume is not None:
            self._resume.set()

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error

    async def stream_reply(self, user_text: str):
        self.requests.append(user_text)

        try:
            for index in range(len(self.tokens) + 1):
                if self._cancelled:
                    raise InferenceCancelledError()
                if index == self._pause_at:
                    self.paused.set()
                    await self._resume.wait()
                if self._cancelled:
                    raise InferenceCancelledError()
                if index == len(self.tokens):
                    break
                yield self.tokens[index]
                await asyncio.sleep(0)

            if self.error is not None:
                raise self.error
        finally:
            # A cancel only ever applies to the generation it interrupted
            self._cancelled = False

    async def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancelled = True
        self.resume()

    async def reset_session(self) -> None:
        self.reset_calls += 1

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


class FakeSpeechInput(SpeechInputAdapter):
    """Speech input driven by the test through emit()."""

    def __init__(self):
        self._status: StateStream[SpeechInputStatus] = StateStream(SpeechInputStatus.idle())
        self.listen_calls = 0
        self.reset_calls = 0
        self.shutdown_calls = 0

    @property
    def status(self) -> StateStream[SpeechInputStatus]:
        return self._status

    def emit(self, status: SpeechInputStatus) -> None:
        self._status.set(status)

    async def start_listening(self) -> None:
        self.listen_calls += 1
        self._status.set(SpeechInputStatus.listening())

    def reset(self) -> None:
        self.reset_calls += 1
        self._status.set(SpeechInputStatus.idle())

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self._status.set(SpeechInputStatus.idle())


class FakeSpeechOutput(SpeechOutputAdapter):
    """Records what would be spoken."""

    def __init__(self, fail: bool = False):
        self._status: StateStream[SpeechOutputStatus] = StateStream(SpeechOutputStatus.idle())
        self.fail = fail
        self.spoken: List[str] = []
        self.stop_calls = 0
        self.shutdown_calls = 0
        self.on_speak: Optional[Callable[[str], None]] = None

    @property
    def status(self) -> StateStream[SpeechOutputStatus]:
        return self._status

    async def speak(self, text: str) -> None:
        if self.on_speak is not None:
            self.on_speak(text)
        if self.fail:
            raise RuntimeError("audio device unavailable")
        self.spoken.append(text)

    async def stop(self) -> None:
        self.stop_calls += 1
        self._status.set(SpeechOutputStatus.idle())

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


class FakeDownloader(DownloadCoordinator):
    """Download gate whose outcome the test decides."""

    def __init__(self, path: Path, present: bool = True, fail: bool = False):
        self._path = path
        self._present = present
        self._fail = fail
        self._status: StateStream[DownloadStatus] = StateStream(DownloadStatus.checking())
        self.start_calls = 0
        self.cancel_calls = 0

    @property
    def status(self) -> StateStream[DownloadStatus]:
        return self._status

    @property
    def model_path(self) -> Path:
        return self._path

    async def check(self) -> None:
        if self._present:
            self._status.set(DownloadStatus.downloaded())
        else:
            self._status.set(DownloadStatus.not_downloaded())

    async def start(self) -> None:
        self.start_calls += 1
        self._status.set(DownloadStatus.downloading(50))
        if self._fail:
            self._status.set(DownloadStatus.failed("Download failed"))
        else:
            self._status.set(DownloadStatus.downloaded())

    async def cancel(self) -> None:
        self.cancel_calls += 1
        self._status.set(DownloadStatus.not_downloaded())


class EventRecorder:
    """Collects every trace event published on a bus."""

    def __init__(self, bus: EventBus):
        self.events: List[Event] = []
        bus.subscribe(Event, self.record)

    async def record(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[Event]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def inference():
    """Inference adapter replying with a short normal sentence."""
    return FakeInference(tokens=["Oh nice! ", "Where are ", "you going?"])


@pytest.fixture
def speech_input():
    return FakeSpeechInput()


@pytest.fixture
def speech_output():
    return FakeSpeechOutput()


@pytest.fixture
def orchestrator(inference, speech_input, speech_output):
    """Orchestrator over fake adapters. Tests call start() and shutdown()."""
    return ConversationOrchestrator(
        inference=inference,
        speech_input=speech_input,
        speech_output=speech_output,
        config=ControllerConfig(stt_error_grace_s=0.05),
    )


@pytest.fixture
def recorder(orchestrator):
    return EventRecorder(orchestrator.event_bus)


@pytest.fixture
def wait_until():
    """Poll a condition on the running loop until it holds or time runs out."""

    async def _wait(condition: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("Condition not met in time")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def model_config(tmp_path):
    """Model settings pointing into a temporary directory."""
    from acechat.config import ModelConfig

    return ModelConfig(
        directory=str(tmp_path / "models"),
        file_name="tutor.litertlm",
        download_url="https://models.example.com/tutor.litertlm",
        hf_token="",
        progress_interval_s=0.0,
    )
