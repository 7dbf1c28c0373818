"""User-facing status text lookup.

Statuses shown to the learner always come from here, never from raw
exception text.
"""

from __future__ import annotations

_MESSAGES: dict[str, str] = {
    "error.engine_init_failed": "Couldn't load the language model. Please restart the app.",
    "error.model_missing": "The language model hasn't been downloaded yet.",
    "error.inference_failed": "Something went wrong while replying. Please try again.",
    "error.speech_not_configured": "Speech service is not configured.",
    "stt.audio": "Audio recording error",
    "stt.client": "Client error",
    "stt.permissions": "Insufficient permissions",
    "stt.network": "Network error",
    "stt.network_timeout": "Network timeout",
    "stt.no_match": "No speech recognized",
    "stt.busy": "Recognition service busy",
    "stt.server": "Server error",
    "stt.speech_timeout": "No speech detected",
    "stt.unknown": "Unknown error",
    "tts.failed": "TTS playback error",
    "download.failed": "Download failed",
    "download.invalid_file": "Downloaded file is invalid",
    "download.invalid_length": "Invalid content length",
    "conversation.cleared": "Conversation cleared.",
    "conversation.busy": "Still replying. Please wait for the current answer.",
    "conversation.not_ready": "The tutor is still getting ready.",
    "error.rate_limited": "Too many requests. Please slow down.",
}


def msg(key: str) -> str:
    """Return a message by key, or the key itself if not found."""
    return _MESSAGES.get(key, key)
