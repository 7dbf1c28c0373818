"""
Test Package Initialization

This package contains all unit and integration tests for the
AceChat project.

Test Structure:
- test_config.py: Configuration tests
- test_responses.py: Reply normalization and correction tests
- test_events.py: Event bus and observable state tests
- test_conversation.py: Conversation orchestrator tests
- test_llm_stream.py: Streaming inference adapter tests
- test_download.py: Model download tests
- test_speech.py: Azure speech adapter tests
- test_logger.py: Logging setup tests
- test_voice_agent.py: Terminal agent tests
- test_api_server.py: HTTP API tests

Run tests with:
    pytest tests/ -v
    pytest tests/ -v --cov=acechat
"""
