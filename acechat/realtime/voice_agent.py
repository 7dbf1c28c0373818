"""
Tutor Agent Module

Terminal host for a practice conversation. Gates on the model download,
wires the adapters into the orchestrator and renders what the learner
should see: revealed messages, statuses and live transcripts.

Typed lines become turns, an empty line is a mic tap, and lines starting
with "/" are session commands.
"""

import asyncio
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, List

from acechat.config import settings
from acechat.core.models import (
    ConversationPhase,
    DownloadState,
    DownloadStatus,
    Message,
    MessageKind,
    SpeechInputState,
    SpeechInputStatus,
    SpeechOutputState,
    SpeechOutputStatus,
    Speaker,
)
from acechat.logger import get_logger
from acechat.messages import msg

from .adapters import (
    DownloadCoordinator,
    InferenceAdapter,
    SpeechInputAdapter,
    SpeechOutputAdapter,
)
from .conversation_controller import ConversationOrchestrator, ControllerConfig
from .download import ModelDownloadCoordinator
from .events import StateStream

logger = get_logger(__name__)

TUTOR_NAME = "Grace"

COMMANDS = {
    "/clear": "Start a new conversation",
    "/stop": "Stop the reply being generated",
    "/retry": "Recover after an error",
    "/stats": "Show session statistics",
    "/quit": "End the session",
}


class KeyboardOnlySpeechInput(SpeechInputAdapter):
    """Speech input stand-in for sessions without a microphone."""

    def __init__(self):
        self._status: StateStream[SpeechInputStatus] = StateStream(SpeechInputStatus.idle())

    @property
    def status(self) -> StateStream[SpeechInputStatus]:
        return self._status

    async def start_listening(self) -> None:
        self._status.set(SpeechInputStatus.error(msg("error.speech_not_configured")))

    def reset(self) -> None:
        self._status.set(SpeechInputStatus.idle())

    async def shutdown(self) -> None:
        self._status.set(SpeechInputStatus.idle())


class MutedSpeechOutput(SpeechOutputAdapter):
    """Speech output stand-in that only logs what would be spoken."""

    def __init__(self):
        self._status: StateStream[SpeechOutputStatus] = StateStream(SpeechOutputStatus.idle())

    @property
    def status(self) -> StateStream[SpeechOutputStatus]:
        return self._status

    async def speak(self, text: str) -> None:
        logger.debug(f"Muted speech: {text[:30]}...")

    async def stop(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass


@dataclass
class VoiceAgentConfig:
    """Configuration for the tutor agent."""
    # Adapters
    voice_input: bool = True
    voice_output: bool = True

    # Download model automatically when missing
    auto_download: bool = True


class TutorAgent:
    """
    Interactive practice session in the terminal.

    Features:
    - Model download gate with progress
    - Typed or spoken turns
    - Spoken replies, silent corrections

    Usage:
        agent = TutorAgent()
        await agent.run()

    Or typing only:
        agent = TutorAgent(VoiceAgentConfig(voice_input=False, voice_output=False))
        await agent.run()
    """

    def __init__(
        self,
        config: Optional[VoiceAgentConfig] = None,
        downloader: Optional[DownloadCoordinator] = None,
        inference: Optional[InferenceAdapter] = None,
        speech_input: Optional[SpeechInputAdapter] = None,
        speech_output: Optional[SpeechOutputAdapter] = None,
        output: Callable[..., None] = print,
    ):
        """
        Initialize the agent.

        Args:
            config: Agent configuration
            downloader: Model download gate (defaults to the configured model)
            inference: Language model adapter (built after the gate if omitted)
            speech_input: Speech recognition adapter
            speech_output: Speech synthesis adapter
            output: Print-like callable used for rendering
        """
        self._config = config or VoiceAgentConfig()
        self._downloader = downloader or ModelDownloadCoordinator()
        self._inference = inference
        self._speech_input = speech_input
        self._speech_output = speech_output
        self._out = output

        self._orchestrator: Optional[ConversationOrchestrator] = None
        self._render_tasks: List[asyncio.Task] = []
        self._shown_ids: set = set()

        self._running = False
        self._shutdown_event = asyncio.Event()

    # ========================================================================
    # Model gate
    # ========================================================================

    async def prepare_model(self) -> bool:
        """
        Make sure the model file is present, downloading it if allowed.

        Returns:
            True once the model is DOWNLOADED
        """
        await self._downloader.check()
        if self._downloader.status.value.is_ready:
            return True

        if not self._config.auto_download:
            self._out(f"⚠️  {msg('error.model_missing')} Run 'acechat download' first.")
            return False

        self._out("📥 Downloading language model...")
        progress_task = asyncio.create_task(self._render_download(self._downloader.status))
        try:
            await self._downloader.start()
            status = await self._wait_for_download()
        finally:
            progress_task.cancel()
            try:
                await progress_task
            except asyncio.CancelledError:
                pass

        if status.is_ready:
            self._out("\n✅ Model downloaded")
            return True

        self._out(f"\n❌ {status.message or msg('download.failed')}")
        return False

    async def _wait_for_download(self) -> DownloadStatus:
        async for status in self._downloader.status.watch():
            if status.state in (DownloadState.DOWNLOADED, DownloadState.FAILED, DownloadState.NOT_DOWNLOADED):
                return status
        return self._downloader.status.value

    async def _render_download(self, stream: StateStream[DownloadStatus]) -> None:
        async for status in stream.watch():
            if status.state == DownloadState.DOWNLOADING:
                filled = status.progress // 5
                bar = "█" * filled + "░" * (20 - filled)
                self._out(f"\r   [{bar}] {status.progress:3d}%", end="", flush=True)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def _build_adapters(self) -> None:
        if self._inference is None:
            from .llm_stream import ChatInference
            self._inference = ChatInference(model_path=self._downloader.model_path)

        if self._speech_input is None:
            if self._config.voice_input:
                from .stt_stream import AzureSpeechInput
                self._speech_input = AzureSpeechInput()
            else:
                self._speech_input = KeyboardOnlySpeechInput()

        if self._speech_output is None:
            if self._config.voice_output:
                from .tts_stream import AzureSpeechOutput
                self._speech_output = AzureSpeechOutput()
            else:
                self._speech_output = MutedSpeechOutput()

    async def start(self) -> ConversationOrchestrator:
        """Build the orchestrator, start rendering and initialize the engine."""
        if self._orchestrator is not None:
            return self._orchestrator

        self._build_adapters()
        self._orchestrator = ConversationOrchestrator(
            inference=self._inference,
            speech_input=self._speech_input,
            speech_output=self._speech_output,
            config=ControllerConfig(stt_error_grace_s=settings.conversation.stt_error_grace_s),
        )

        self._render_tasks = [
            asyncio.create_task(self._render_messages()),
            asyncio.create_task(self._render_status()),
            asyncio.create_task(self._render_speech_input()),
            asyncio.create_task(self._render_speech_output()),
        ]

        self._out("⏳ Loading language model...")
        await self._orchestrator.start()
        self._running = True
        return self._orchestrator

    async def run(self) -> None:
        """
        Run an interactive session until /quit, EOF or Ctrl+C.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        try:
            if not await self.prepare_model():
                return

            await self.start()

            lines: asyncio.Queue = asyncio.Queue()
            _start_stdin_reader(loop, lines)
            shutdown_wait = asyncio.create_task(self._shutdown_event.wait())

            try:
                while self._running:
                    next_line = asyncio.create_task(lines.get())
                    done, _ = await asyncio.wait(
                        {next_line, shutdown_wait},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if next_line not in done:
                        next_line.cancel()
                        break

                    line = next_line.result()
                    if line is None or not await self.handle_line(line):
                        break
            finally:
                shutdown_wait.cancel()

        except asyncio.CancelledError:
            logger.info("Tutor session cancelled")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Shut down the conversation and stop rendering."""
        self._running = False

        if self._orchestrator is not None:
            try:
                await self._orchestrator.shutdown()
            except Exception as e:
                logger.error(f"Error stopping conversation: {e}")

        for task in self._render_tasks:
            task.cancel()
        for task in self._render_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._render_tasks = []

    def _signal_handler(self) -> None:
        """Handle shutdown signals."""
        logger.info("Shutdown signal received")
        self._running = False
        self._shutdown_event.set()

    # ========================================================================
    # Input
    # ========================================================================

    async def handle_line(self, line: str) -> bool:
        """
        Act on one line of input.

        Returns:
            False when the session should end
        """
        if self._orchestrator is None:
            raise RuntimeError("Agent not started")
        orchestrator = self._orchestrator
        text = line.strip()

        if text in ("/quit", "/exit"):
            return False

        if text == "/clear":
            if not await orchestrator.reset_conversation():
                self._out("⏳ Wait for the current reply to finish first.")
        elif text == "/stop":
            if not await orchestrator.cancel_turn():
                self._out("   (nothing to stop)")
        elif text == "/retry":
            if not await orchestrator.retry():
                self._out("   (nothing to retry)")
        elif text == "/stats":
            self._print_stats()
        elif text.startswith("/"):
            self._out(f"   Unknown command: {text}")
            self._print_commands()
        elif not text:
            if not self._config.voice_input:
                self._out("   Type a message, or /quit to leave.")
            elif not await orchestrator.on_mic_tapped():
                self._out("⏳ The microphone is not available right now.")
        else:
            if await orchestrator.submit_utterance(text) is None:
                self._out("⏳ Wait for the current reply to finish first.")

        return True

    # ========================================================================
    # Rendering
    # ========================================================================

    def format_message(self, message: Message) -> str:
        if message.speaker == Speaker.USER:
            return f"👤 You: {message.text}"
        if message.kind == MessageKind.CORRECTION:
            return f"📝 {TUTOR_NAME}: {message.text}"
        return f"🤖 {TUTOR_NAME}: {message.text}"

    async def _render_messages(self) -> None:
        async for snapshot in self._orchestrator.messages_stream.watch():
            if not snapshot:
                if self._shown_ids:
                    self._shown_ids.clear()
                    self._out(f"🧹 {msg('conversation.cleared')}")
                continue

            for message in snapshot:
                if message.visible and message.id not in self._shown_ids:
                    self._shown_ids.add(message.id)
                    self._out(self.format_message(message))

    async def _render_status(self) -> None:
        previous_phase = None
        async for status in self._orchestrator.status_stream.watch():
            if status.phase == ConversationPhase.ERROR:
                self._out(f"❌ {status.message}  (type /retry to continue)")
            elif status.phase == ConversationPhase.IDLE and previous_phase == ConversationPhase.LOADING:
                if not self._orchestrator.messages:
                    self._out(f"✅ Ready. Say hello to {TUTOR_NAME}!")
            elif status.phase == ConversationPhase.LOADING and previous_phase == ConversationPhase.IDLE:
                if self._orchestrator.messages:
                    self._out("🤔 Thinking...")
            previous_phase = status.phase

    async def _render_speech_input(self) -> None:
        async for status in self._orchestrator.speech_input_status.watch():
            if status.state == SpeechInputState.LISTENING:
                self._out("🎤 Listening... (speak now)")
            elif status.state == SpeechInputState.PARTIAL:
                self._out(f"\r   … {status.text}", end="", flush=True)
            elif status.state == SpeechInputState.FINAL:
                self._out("")
            elif status.state == SpeechInputState.ERROR:
                self._out(f"⚠️  {status.message}")

    async def _render_speech_output(self) -> None:
        async for status in self._orchestrator.speech_output_status.watch():
            if status.state == SpeechOutputState.ERROR:
                self._out(f"🔇 {status.message}")

    def _print_stats(self) -> None:
        self._out("\n📊 Session Statistics:")
        for key, value in self.stats.items():
            self._out(f"   {key}: {value}")

    def _print_commands(self) -> None:
        for command, description in COMMANDS.items():
            self._out(f"   {command:<8} {description}")

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def orchestrator(self) -> Optional[ConversationOrchestrator]:
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        """Check if agent is running."""
        return self._running

    @property
    def stats(self) -> Dict[str, Any]:
        """Get session statistics."""
        if self._orchestrator is None:
            return {}
        return self._orchestrator.stats


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    """Feed stdin lines into a queue; None marks end of input."""

    def read() -> None:
        while True:
            line = sys.stdin.readline()
            if not line:
                loop.call_soon_threadsafe(lines.put_nowait, None)
                return
            loop.call_soon_threadsafe(lines.put_nowait, line)

    # Daemon so a pending readline never blocks interpreter exit
    threading.Thread(target=read, name="stdin-reader", daemon=True).start()


def print_banner(voice_input: bool = True, voice_output: bool = True) -> None:
    """Print session startup banner."""
    print("\n" + "=" * 60)
    print(f"🎙️  AceChat - Practice English with {TUTOR_NAME}")
    print("=" * 60)
    print("Controls:")
    if voice_input:
        print("  • Press Enter to talk, or type a message")
    else:
        print("  • Type a message and press Enter")
    print(f"  • Voice replies: {'on' if voice_output else 'off'}")
    for command, description in COMMANDS.items():
        print(f"  • {command:<8} {description}")
    print("-" * 60)
