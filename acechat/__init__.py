"""
AceChat - Spoken English Practice

A voice chat tutor: the learner speaks, a language model replies
conversationally and appends a grammar correction when it spots a mistake.

This package provides:
- Conversation orchestration (speech in, streamed reply, speech out)
- Adapters for Azure Speech and an OpenAI-compatible model endpoint
- Model download management
- CLI host for typed or spoken practice sessions
"""

__version__ = "1.0.0"

from acechat.config import settings

__all__ = ["settings", "__version__"]
