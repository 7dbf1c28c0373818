"""
Text-to-Speech Module

Speech output adapter over Azure Neural TTS:
- speak() enqueues and returns; playback runs in the background
- A new speak() flushes whatever is still playing
- Slower, slightly lower voice via SSML prosody
- Playback failures only change the status, never raise to the caller
"""

import asyncio
from typing import Optional

import azure.cognitiveservices.speech as speechsdk

from acechat.config import SpeechConfig, settings
from acechat.core.models import SpeechOutputStatus
from acechat.logger import get_logger
from acechat.messages import msg
from .adapters import SpeechOutputAdapter
from .events import StateStream

logger = get_logger(__name__)


class AzureSpeechOutput(SpeechOutputAdapter):
    """
    Text-to-speech playback with Azure Neural TTS.

    Usage:
        tts = AzureSpeechOutput()
        await tts.speak("Oh nice! Where are you going?")
        await tts.stop()
    """

    def __init__(self, config: Optional[SpeechConfig] = None):
        self._config = config or settings.speech
        self._status: StateStream[SpeechOutputStatus] = StateStream(SpeechOutputStatus.idle())

        self._speech_config: Optional[speechsdk.SpeechConfig] = None
        self._active_synthesizer: Optional[speechsdk.SpeechSynthesizer] = None
        self._playback_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._setup_speech_config()

    def _setup_speech_config(self) -> None:
        """Configure Azure Speech SDK for TTS."""
        if not self._config.is_configured:
            raise ValueError(
                "Azure Speech not configured. Set AZURE_SPEECH_API_KEY and "
                "AZURE_SPEECH_REGION in .env"
            )

        self._speech_config = speechsdk.SpeechConfig(
            subscription=self._config.api_key,
            region=self._config.region,
        )
        self._speech_config.speech_synthesis_voice_name = self._config.voice_name
        self._speech_config.set_speech_synthesis_output_format(
            speechsdk.SpeechSynthesisOutputFormat.Riff16Khz16BitMonoPcm
        )

        logger.info(f"TTS configured: voice={self._config.voice_name}")

    def _create_synthesizer(self) -> speechsdk.SpeechSynthesizer:
        if self._speech_config is None:
            raise RuntimeError("Speech config not initialized")

        audio_config = speechsdk.audio.AudioOutputConfig(use_default_speaker=True)
        synthesizer = speechsdk.SpeechSynthesizer(
            speech_config=self._speech_config,
            audio_config=audio_config,
        )
        synthesizer.synthesis_started.connect(
            lambda evt: self._post(self._on_started, synthesizer)
        )
        return synthesizer

    def _post(self, callback, *args) -> None:
        """Run a callback on the event loop (SDK callbacks arrive on SDK threads)."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)

    def _on_started(self, synthesizer: speechsdk.SpeechSynthesizer) -> None:
        if synthesizer is self._active_synthesizer:
            self._status.set(SpeechOutputStatus.speaking())

    # ========================================================================
    # SSML Generation
    # ========================================================================

    def build_ssml(self, text: str) -> str:
        """Build SSML for speech synthesis."""
        return f"""<speak version="1.0" xmlns="http://www.w3.org/2001/10/synthesis" xml:lang="{self._config.language}">
    <voice name="{self._config.voice_name}">
        <prosody rate="{self._config.speaking_rate}" pitch="{self._config.pitch}">
            {self._escape_ssml(text)}
        </prosody>
    </voice>
</speak>"""

    @staticmethod
    def _escape_ssml(text: str) -> str:
        """Escape special characters for SSML."""
        return (
            text.replace("&", "&amp;")
                .replace("<", "&lt;")
                .replace(">", "&gt;")
                .replace('"', "&quot;")
                .replace("'", "&apos;")
        )

    # ========================================================================
    # Playback
    # ========================================================================

    async def _play(self, synthesizer: speechsdk.SpeechSynthesizer, ssml: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, lambda: synthesizer.speak_ssml_async(ssml).get()
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"TTS error: {e}")
            if synthesizer is self._active_synthesizer:
                self._status.set(SpeechOutputStatus.error(msg("tts.failed")))
                self._active_synthesizer = None
            return

        if synthesizer is not self._active_synthesizer:
            # Flushed by a newer speak() or stopped
            return
        self._active_synthesizer = None

        if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
            self._status.set(SpeechOutputStatus.idle())
            return

        details = result.cancellation_details
        if details and details.reason == speechsdk.CancellationReason.Error:
            logger.error(f"TTS error: {details.error_details}")
            self._status.set(SpeechOutputStatus.error(msg("tts.failed")))
        else:
            self._status.set(SpeechOutputStatus.idle())

    @property
    def status(self) -> StateStream[SpeechOutputStatus]:
        return self._status

    async def speak(self, text: str) -> None:
        """Enqueue text for playback, flushing anything still playing."""
        if not text or not text.strip():
            return

        await self.stop()

        self._loop = asyncio.get_running_loop()
        synthesizer = self._create_synthesizer()
        self._active_synthesizer = synthesizer
        self._playback_task = asyncio.create_task(
            self._play(synthesizer, self.build_ssml(text))
        )
        logger.debug(f"TTS enqueued: {text[:30]}...")

    async def stop(self) -> None:
        """Stop playback immediately and return to IDLE."""
        synthesizer = self._active_synthesizer
        self._active_synthesizer = None
        if synthesizer is not None:
            try:
                # Fire and forget; the pending result resolves as cancelled
                synthesizer.stop_speaking_async()
            except Exception as e:
                logger.debug(f"Error stopping synthesizer: {e}")

        if self._playback_task is not None and not self._playback_task.done():
            self._playback_task.cancel()
        self._playback_task = None
        self._status.set(SpeechOutputStatus.idle())

    async def shutdown(self) -> None:
        await self.stop()
        self._speech_config = None
        logger.debug("TTS shut down")
