"""
Domain Models

Value types shared by the orchestrator, the adapters and the presentation
layer. Everything here is immutable; state changes replace whole values.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum, auto


class Speaker(Enum):
    """Who produced a message."""
    USER = auto()
    ASSISTANT = auto()


class MessageKind(Enum):
    """How an assistant message should be presented."""
    NORMAL = auto()
    CORRECTION = auto()  # Reply followed by a grammar correction section


@dataclass(frozen=True)
class Message:
    """
    A single chat message.

    Assistant messages are created invisible and revealed once their audio
    has been handed to speech output, so bubble and voice appear together.

    Attributes:
        speaker: USER or ASSISTANT
        text: Message text (may be empty)
        kind: NORMAL or CORRECTION
        visible: Whether the presentation layer renders it
        id: Unique message id
        created_at: Creation time (epoch seconds)
    """
    speaker: Speaker
    text: str
    kind: MessageKind = MessageKind.NORMAL
    visible: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def user(cls, text: str) -> "Message":
        """User messages are visible immediately."""
        return cls(speaker=Speaker.USER, text=text, visible=True)

    @classmethod
    def assistant(cls, text: str, kind: MessageKind) -> "Message":
        return cls(speaker=Speaker.ASSISTANT, text=text, kind=kind, visible=False)

    def revealed(self) -> "Message":
        """Return a visible copy of this message."""
        return replace(self, visible=True)

    @property
    def is_correction(self) -> bool:
        return self.kind == MessageKind.CORRECTION


# ============================================================================
# Conversation Status
# ============================================================================

class ConversationPhase(Enum):
    """Mutually exclusive conversation phases."""
    IDLE = auto()       # Ready for new input
    LOADING = auto()    # Engine busy, no tokens yet
    STREAMING = auto()  # Tokens arriving
    ERROR = auto()


@dataclass(frozen=True)
class ConversationStatus:
    """Current conversation phase plus an error message when in ERROR."""
    phase: ConversationPhase
    message: str = ""

    @classmethod
    def idle(cls) -> "ConversationStatus":
        return cls(ConversationPhase.IDLE)

    @classmethod
    def loading(cls) -> "ConversationStatus":
        return cls(ConversationPhase.LOADING)

    @classmethod
    def streaming(cls) -> "ConversationStatus":
        return cls(ConversationPhase.STREAMING)

    @classmethod
    def error(cls, message: str) -> "ConversationStatus":
        return cls(ConversationPhase.ERROR, message)

    @property
    def is_idle(self) -> bool:
        return self.phase == ConversationPhase.IDLE

    @property
    def is_busy(self) -> bool:
        """A turn is in flight."""
        return self.phase in (ConversationPhase.LOADING, ConversationPhase.STREAMING)

    def __str__(self) -> str:
        if self.message:
            return f"{self.phase.name}({self.message})"
        return self.phase.name


# ============================================================================
# Speech Input Status
# ============================================================================

class SpeechInputState(Enum):
    """Speech recognition session states."""
    IDLE = auto()
    LISTENING = auto()
    PARTIAL = auto()
    FINAL = auto()
    ERROR = auto()


@dataclass(frozen=True)
class SpeechInputStatus:
    """Recognition state with partial/final text or an error message."""
    state: SpeechInputState
    text: str = ""
    message: str = ""

    @classmethod
    def idle(cls) -> "SpeechInputStatus":
        return cls(SpeechInputState.IDLE)

    @classmethod
    def listening(cls) -> "SpeechInputStatus":
        return cls(SpeechInputState.LISTENING)

    @classmethod
    def partial(cls, text: str) -> "SpeechInputStatus":
        return cls(SpeechInputState.PARTIAL, text=text)

    @classmethod
    def final(cls, text: str) -> "SpeechInputStatus":
        return cls(SpeechInputState.FINAL, text=text)

    @classmethod
    def error(cls, message: str) -> "SpeechInputStatus":
        return cls(SpeechInputState.ERROR, message=message)


# ============================================================================
# Speech Output Status
# ============================================================================

class SpeechOutputState(Enum):
    """Speech synthesis states."""
    IDLE = auto()
    SPEAKING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class SpeechOutputStatus:
    """Synthesis state with an error message when in ERROR."""
    state: SpeechOutputState
    message: str = ""

    @classmethod
    def idle(cls) -> "SpeechOutputStatus":
        return cls(SpeechOutputState.IDLE)

    @classmethod
    def speaking(cls) -> "SpeechOutputStatus":
        return cls(SpeechOutputState.SPEAKING)

    @classmethod
    def error(cls, message: str) -> "SpeechOutputStatus":
        return cls(SpeechOutputState.ERROR, message)


# ============================================================================
# Download Status
# ============================================================================

class DownloadState(Enum):
    """Model artifact availability."""
    CHECKING = auto()
    NOT_DOWNLOADED = auto()
    DOWNLOADING = auto()
    DOWNLOADED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class DownloadStatus:
    """Download state with progress (0-100) or a failure message."""
    state: DownloadState
    progress: int = 0
    message: str = ""

    @classmethod
    def checking(cls) -> "DownloadStatus":
        return cls(DownloadState.CHECKING)

    @classmethod
    def not_downloaded(cls) -> "DownloadStatus":
        return cls(DownloadState.NOT_DOWNLOADED)

    @classmethod
    def downloading(cls, progress: int) -> "DownloadStatus":
        return cls(DownloadState.DOWNLOADING, progress=max(0, min(100, progress)))

    @classmethod
    def downloaded(cls) -> "DownloadStatus":
        return cls(DownloadState.DOWNLOADED, progress=100)

    @classmethod
    def failed(cls, message: str) -> "DownloadStatus":
        return cls(DownloadState.FAILED, message=message)

    @property
    def is_ready(self) -> bool:
        return self.state == DownloadState.DOWNLOADED
