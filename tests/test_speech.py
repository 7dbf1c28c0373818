"""
Tests for the Azure speech adapters.

SDK objects are mocked; no audio device or subscription is needed.
"""

import pytest
from unittest.mock import MagicMock, patch

import azure.cognitiveservices.speech as speechsdk

from acechat.config import SpeechConfig
from acechat.core.models import SpeechInputState, SpeechOutputState
from acechat.messages import msg


def speech_config() -> SpeechConfig:
    return SpeechConfig(
        api_key="test-key",
        region="eastus",
        language="en-US",
        voice_name="en-US-JennyNeural",
        speaking_rate=0.85,
        pitch="-10%",
        end_silence_ms=3000,
    )


class TestSpeechOutput:
    """Tests for TTS setup and SSML."""

    def test_requires_credentials(self):
        from acechat.realtime.tts_stream import AzureSpeechOutput

        with pytest.raises(ValueError, match="not configured"):
            AzureSpeechOutput(SpeechConfig(api_key="", region=""))

    @patch("acechat.realtime.tts_stream.speechsdk.SpeechConfig")
    def test_ssml_prosody(self, mock_config):
        from acechat.realtime.tts_stream import AzureSpeechOutput

        tts = AzureSpeechOutput(speech_config())
        ssml = tts.build_ssml("Hi there")

        assert 'rate="0.85"' in ssml
        assert 'pitch="-10%"' in ssml
        assert '<voice name="en-US-JennyNeural">' in ssml
        assert "Hi there" in ssml

    def test_escape_ssml(self):
        from acechat.realtime.tts_stream import AzureSpeechOutput

        escaped = AzureSpeechOutput._escape_ssml("Tom & Jerry <said> \"hi\"")
        assert escaped == "Tom &amp; Jerry &lt;said&gt; &quot;hi&quot;"

    @pytest.mark.asyncio
    @patch("acechat.realtime.tts_stream.speechsdk.SpeechConfig")
    async def test_blank_text_not_spoken(self, mock_config):
        from acechat.realtime.tts_stream import AzureSpeechOutput

        tts = AzureSpeechOutput(speech_config())
        tts._create_synthesizer = MagicMock()

        await tts.speak("   ")

        tts._create_synthesizer.assert_not_called()
        assert tts.status.value.state == SpeechOutputState.IDLE

    @pytest.mark.asyncio
    @patch("acechat.realtime.tts_stream.speechsdk.SpeechConfig")
    async def test_new_speech_flushes_previous(self, mock_config):
        from acechat.realtime.tts_stream import AzureSpeechOutput

        tts = AzureSpeechOutput(speech_config())
        first, second = MagicMock(), MagicMock()
        tts._create_synthesizer = MagicMock(side_effect=[first, second])

        await tts.speak("First reply")
        await tts.speak("Second reply")

        first.stop_speaking_async.assert_called_once()
        assert tts._active_synthesizer is second

        await tts.shutdown()
        second.stop_speaking_async.assert_called_once()
        assert tts.status.value.state == SpeechOutputState.IDLE


class TestSpeechInputResults:
    """Tests for mapping recognition results to statuses."""

    def _result(self, reason, **attrs):
        result = MagicMock()
        result.reason = reason
        for name, value in attrs.items():
            setattr(result, name, value)
        return result

    def test_recognized_speech_is_final(self):
        from acechat.realtime.stt_stream import AzureSpeechInput

        result = self._result(speechsdk.ResultReason.RecognizedSpeech, text="  I went home. ")
        status = AzureSpeechInput._result_to_status(result)

        assert status.state == SpeechInputState.FINAL
        assert status.text == "I went home."

    def test_initial_silence(self):
        from acechat.realtime.stt_stream import AzureSpeechInput

        details = MagicMock(reason=speechsdk.NoMatchReason.InitialSilenceTimeout)
        result = self._result(speechsdk.ResultReason.NoMatch, no_match_details=details)
        status = AzureSpeechInput._result_to_status(result)

        assert status.state == SpeechInputState.ERROR
        assert status.message == msg("stt.speech_timeout")

    def test_no_match(self):
        from acechat.realtime.stt_stream import AzureSpeechInput

        details = MagicMock(reason=speechsdk.NoMatchReason.NotRecognized)
        result = self._result(speechsdk.ResultReason.NoMatch, no_match_details=details)

        assert AzureSpeechInput._result_to_status(result).message == msg("stt.no_match")

    def test_network_failure(self):
        from acechat.realtime.stt_stream import AzureSpeechInput

        details = MagicMock(
            reason=speechsdk.CancellationReason.Error,
            code=speechsdk.CancellationErrorCode.ConnectionFailure,
            error_details="connection refused",
        )
        result = self._result(speechsdk.ResultReason.Canceled, cancellation_details=details)

        assert AzureSpeechInput._result_to_status(result).message == msg("stt.network")

    def test_requires_credentials(self):
        from acechat.realtime.stt_stream import AzureSpeechInput

        with pytest.raises(ValueError):
            AzureSpeechInput(SpeechConfig(api_key="", region=""))
