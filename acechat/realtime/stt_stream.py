"""
Speech-to-Text Module

Speech input adapter over the Azure Speech SDK:
- One recognition session per mic tap (single-utterance mode)
- Partial results streamed as PARTIAL statuses
- SDK failures mapped to short user-facing messages

SDK callbacks arrive on SDK threads and are marshalled onto the event loop
before the status is touched.
"""

import asyncio
from typing import Optional

import azure.cognitiveservices.speech as speechsdk

from acechat.config import SpeechConfig, settings
from acechat.core.models import SpeechInputState, SpeechInputStatus
from acechat.logger import get_logger
from acechat.messages import msg
from .adapters import SpeechInputAdapter
from .events import StateStream

logger = get_logger(__name__)

_CANCELLATION_MESSAGES = {
    speechsdk.CancellationErrorCode.ConnectionFailure: "stt.network",
    speechsdk.CancellationErrorCode.ServiceTimeout: "stt.network_timeout",
    speechsdk.CancellationErrorCode.AuthenticationFailure: "stt.client",
    speechsdk.CancellationErrorCode.Forbidden: "stt.permissions",
    speechsdk.CancellationErrorCode.TooManyRequests: "stt.busy",
    speechsdk.CancellationErrorCode.ServiceError: "stt.server",
    speechsdk.CancellationErrorCode.RuntimeError: "stt.audio",
}


class AzureSpeechInput(SpeechInputAdapter):
    """
    Microphone speech recognition with Azure Speech.

    Usage:
        stt = AzureSpeechInput()
        await stt.start_listening()
        async for status in stt.status.watch():
            ...
    """

    def __init__(self, config: Optional[SpeechConfig] = None):
        self._config = config or settings.speech
        self._status: StateStream[SpeechInputStatus] = StateStream(SpeechInputStatus.idle())

        self._speech_config: Optional[speechsdk.SpeechConfig] = None
        self._audio_config: Optional[speechsdk.audio.AudioConfig] = None
        self._recognizer: Optional[speechsdk.SpeechRecognizer] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._session_task: Optional[asyncio.Task] = None

        self._setup_speech_config()

    def _setup_speech_config(self) -> None:
        """Configure Azure Speech SDK."""
        if not self._config.is_configured:
            raise ValueError(
                "Azure Speech not configured. Set AZURE_SPEECH_API_KEY and "
                "AZURE_SPEECH_REGION in .env"
            )

        self._speech_config = speechsdk.SpeechConfig(
            subscription=self._config.api_key,
            region=self._config.region,
        )
        self._speech_config.speech_recognition_language = self._config.language
        self._speech_config.set_property(
            speechsdk.PropertyId.SpeechServiceConnection_EndSilenceTimeoutMs,
            str(self._config.end_silence_ms),
        )
        self._audio_config = speechsdk.audio.AudioConfig(use_default_microphone=True)

        logger.info(
            f"STT configured: language={self._config.language}, "
            f"end_silence={self._config.end_silence_ms}ms"
        )

    def _create_recognizer(self) -> speechsdk.SpeechRecognizer:
        if self._speech_config is None:
            raise RuntimeError("Speech config not initialized")

        recognizer = speechsdk.SpeechRecognizer(
            speech_config=self._speech_config,
            audio_config=self._audio_config,
        )
        recognizer.recognizing.connect(self._on_recognizing)
        recognizer.session_started.connect(self._on_session_started)
        return recognizer

    # ========================================================================
    # SDK callbacks (SDK thread)
    # ========================================================================

    def _on_recognizing(self, evt: speechsdk.SpeechRecognitionEventArgs) -> None:
        text = evt.result.text.strip()
        if text:
            self._post(self._set_partial, text)

    def _on_session_started(self, evt: speechsdk.SessionEventArgs) -> None:
        logger.debug(f"STT session started: {evt.session_id}")

    def _post(self, callback, *args) -> None:
        """Run a callback on the event loop."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)

    def _set_partial(self, text: str) -> None:
        if self._status.value.state in (SpeechInputState.LISTENING, SpeechInputState.PARTIAL):
            self._status.set(SpeechInputStatus.partial(text))

    # ========================================================================
    # Result mapping
    # ========================================================================

    @staticmethod
    def _result_to_status(result: speechsdk.SpeechRecognitionResult) -> SpeechInputStatus:
        """Map a single-utterance result to a terminal status."""
        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            return SpeechInputStatus.final(result.text.strip())

        if result.reason == speechsdk.ResultReason.NoMatch:
            details = result.no_match_details
            if details.reason == speechsdk.NoMatchReason.InitialSilenceTimeout:
                return SpeechInputStatus.error(msg("stt.speech_timeout"))
            return SpeechInputStatus.error(msg("stt.no_match"))

        if result.reason == speechsdk.ResultReason.Canceled:
            cancellation = result.cancellation_details
            if cancellation.reason == speechsdk.CancellationReason.Error:
                logger.error(f"STT error: {cancellation.error_details}")
                key = _CANCELLATION_MESSAGES.get(cancellation.code, "stt.unknown")
                return SpeechInputStatus.error(msg(key))
            return SpeechInputStatus.error(msg("stt.no_match"))

        return SpeechInputStatus.error(msg("stt.unknown"))

    async def _recognize_once(self, recognizer: speechsdk.SpeechRecognizer) -> None:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, lambda: recognizer.recognize_once_async().get()
            )
            status = self._result_to_status(result)
            if status.state == SpeechInputState.FINAL:
                logger.debug(f"Final transcript: {status.text[:50]}")
            self._status.set(status)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"STT recognition failed: {e}")
            self._status.set(SpeechInputStatus.error(msg("stt.unknown")))
        finally:
            if self._recognizer is recognizer:
                self._recognizer = None

    # ========================================================================
    # Public API
    # ========================================================================

    @property
    def status(self) -> StateStream[SpeechInputStatus]:
        return self._status

    async def start_listening(self) -> None:
        """Start a single-utterance recognition session."""
        if self._status.value.state == SpeechInputState.LISTENING:
            return
        if self._session_task is not None and not self._session_task.done():
            return

        self._loop = asyncio.get_running_loop()
        self._recognizer = self._create_recognizer()
        self._status.set(SpeechInputStatus.listening())
        self._session_task = asyncio.create_task(self._recognize_once(self._recognizer))
        logger.debug("Listening")

    def reset(self) -> None:
        self._status.set(SpeechInputStatus.idle())

    async def shutdown(self) -> None:
        """Drop the recognizer and return to IDLE."""
        if self._session_task is not None and not self._session_task.done():
            self._session_task.cancel()
            try:
                await self._session_task
            except asyncio.CancelledError:
                pass
        self._session_task = None
        self._recognizer = None
        self._status.set(SpeechInputStatus.idle())
        logger.debug("STT shut down")
