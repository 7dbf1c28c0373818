"""
Capability Adapter Interfaces

The orchestrator talks to speech recognition, speech synthesis, the
language model and the model download only through these interfaces.
Each adapter is owned by exactly one orchestrator (or host), which is its
only subscriber.

Architecture:
- InferenceAdapter: session setup, cancellable token streaming, reset
- SpeechInputAdapter: one listening session at a time, observable status
- SpeechOutputAdapter: flush-and-replace playback, observable status
- DownloadCoordinator: model artifact availability, observable status

Concrete implementations live in llm_stream, stt_stream, tts_stream and
download.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator

from acechat.core.models import DownloadStatus, SpeechInputStatus, SpeechOutputStatus

from .events import StateStream


class InferenceCancelledError(Exception):
    """
    Raised from a reply stream when generation was stopped on request.

    Cancellation is a normal ending, not a failure; callers must not report
    it to the learner as an error.
    """


class InferenceAdapter(ABC):
    """
    Abstract base class for the language model.

    The tutor persona prompt is fixed and injected whenever a session is
    created, both on initialize() and on reset_session().

    Methods:
        initialize: Load the engine and create the session
        stream_reply: Stream reply fragments for a user utterance
        cancel: Stop the in-flight generation
        reset_session: Drop history and recreate the session
        shutdown: Release all resources
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Load the engine and create a session.

        Raises:
            Exception: If the engine or model cannot be loaded
        """
        pass

    @abstractmethod
    def stream_reply(self, user_text: str) -> AsyncIterator[str]:
        """
        Stream reply fragments for a user utterance.

        The iterator ends when generation is done. Closing it early stops
        generation.

        Args:
            user_text: Trimmed user utterance

        Yields:
            Text fragments in order

        Raises:
            InferenceCancelledError: If cancel() stopped the generation
            Exception: On any other generation failure
        """
        pass

    @abstractmethod
    async def cancel(self) -> None:
        """Stop the in-flight generation, if any."""
        pass

    @abstractmethod
    async def reset_session(self) -> None:
        """Drop conversation history and recreate the session."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release engine resources. Safe to call more than once."""
        pass


class SpeechInputAdapter(ABC):
    """
    Abstract base class for speech recognition.

    Status goes IDLE -> LISTENING -> PARTIAL* -> FINAL | ERROR, and back to
    IDLE only through reset() or shutdown().
    """

    @property
    @abstractmethod
    def status(self) -> StateStream[SpeechInputStatus]:
        """Observable recognition status."""
        pass

    @abstractmethod
    async def start_listening(self) -> None:
        """Start a listening session. No-op while already listening."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Return the status to IDLE after a result or error was handled."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release recognizer resources and return to IDLE."""
        pass


class SpeechOutputAdapter(ABC):
    """
    Abstract base class for speech synthesis.

    speak() returns once playback has been enqueued; progress and failures
    are reported through the status stream only.
    """

    @property
    @abstractmethod
    def status(self) -> StateStream[SpeechOutputStatus]:
        """Observable playback status."""
        pass

    @abstractmethod
    async def speak(self, text: str) -> None:
        """Enqueue text for playback, replacing anything in progress."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and return to IDLE."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release synthesizer resources and return to IDLE."""
        pass


class DownloadCoordinator(ABC):
    """
    Abstract base class for model artifact availability.

    The orchestrator may only be constructed once the status reaches
    DOWNLOADED.
    """

    @property
    @abstractmethod
    def model_path(self) -> Path:
        """Where the model file lives once DOWNLOADED."""
        pass

    @property
    @abstractmethod
    def status(self) -> StateStream[DownloadStatus]:
        """Observable download status."""
        pass

    @abstractmethod
    async def check(self) -> None:
        """Resolve CHECKING into DOWNLOADED or NOT_DOWNLOADED."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Begin downloading the artifact."""
        pass

    @abstractmethod
    async def cancel(self) -> None:
        """Abort a running download."""
        pass
