"""
Real-Time Conversation Module

This package runs a spoken practice conversation with an event-driven,
streaming architecture.

Architecture:
- Events: Observable state streams and a trace event bus
- Adapters: Interfaces for inference, speech input/output and download
- LLM Stream: Token streaming with cancellation
- STT Stream: Single-utterance recognition with partial results
- TTS Stream: Flush-and-replace speech playback
- Download: Model artifact download with progress
- Conversation Controller: Orchestrates the turn sequence
- Voice Agent: Terminal host for a practice session

Usage:
    from acechat.realtime import TutorAgent

    agent = TutorAgent()
    await agent.run()
"""

from .events import (
    Event,
    EventBus,
    StateStream,
    StatusEvent,
    MessageAction,
    MessageEvent,
    LLMTokenEvent,
    SpeakEvent,
    TurnEvent,
    TurnOutcome,
)
from .adapters import (
    InferenceAdapter,
    InferenceCancelledError,
    SpeechInputAdapter,
    SpeechOutputAdapter,
    DownloadCoordinator,
)
from .download import ModelDownloadCoordinator, DownloadError
from .conversation_controller import ConversationOrchestrator, ControllerConfig
from .voice_agent import (
    TutorAgent,
    VoiceAgentConfig,
    KeyboardOnlySpeechInput,
    MutedSpeechOutput,
    print_banner,
)

__all__ = [
    # Events
    "Event",
    "EventBus",
    "StateStream",
    "StatusEvent",
    "MessageAction",
    "MessageEvent",
    "LLMTokenEvent",
    "SpeakEvent",
    "TurnEvent",
    "TurnOutcome",
    # Adapters
    "InferenceAdapter",
    "InferenceCancelledError",
    "SpeechInputAdapter",
    "SpeechOutputAdapter",
    "DownloadCoordinator",
    # Download
    "ModelDownloadCoordinator",
    "DownloadError",
    # Controller
    "ConversationOrchestrator",
    "ControllerConfig",
    # Agent
    "TutorAgent",
    "VoiceAgentConfig",
    "KeyboardOnlySpeechInput",
    "MutedSpeechOutput",
    "print_banner",
]
