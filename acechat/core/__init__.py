"""
Core Module Package

Domain types and text handling shared across the tutor:
- Models: messages and the status value types
- Responses: tutor prompt, correction marker and reply post-processing
"""

from acechat.core.models import (
    Message,
    Speaker,
    MessageKind,
    ConversationPhase,
    ConversationStatus,
    SpeechInputState,
    SpeechInputStatus,
    SpeechOutputState,
    SpeechOutputStatus,
    DownloadState,
    DownloadStatus,
)
from acechat.core.responses import (
    CORRECTION_MARKER,
    TUTOR_SYSTEM_PROMPT,
    classify,
    normalize_response,
    split_correction,
    vocalization_text,
)

__all__ = [
    "Message",
    "Speaker",
    "MessageKind",
    "ConversationPhase",
    "ConversationStatus",
    "SpeechInputState",
    "SpeechInputStatus",
    "SpeechOutputState",
    "SpeechOutputStatus",
    "DownloadState",
    "DownloadStatus",
    "CORRECTION_MARKER",
    "TUTOR_SYSTEM_PROMPT",
    "classify",
    "normalize_response",
    "split_correction",
    "vocalization_text",
]
