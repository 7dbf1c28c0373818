#!/usr/bin/env python3
"""
AceChat - Command Line Interface

Practice spoken English with a patient tutor from the terminal.

Commands:
    download    - Download the language model
    chat        - Start a typed practice session
    voice       - Start a spoken practice session
    serve       - Serve the conversation API
    test        - Check configuration and connections

Usage:
    acechat download
    acechat chat
    acechat chat --voice
    acechat voice
    acechat serve
    acechat test

For help on a specific command:
    acechat <command> --help
"""

import argparse
import asyncio
import sys

from acechat.logger import init_logging, get_logger, set_level
from acechat.config import settings

# Initialize logging
init_logging()
logger = get_logger(__name__)


def cmd_download(args: argparse.Namespace) -> int:
    """
    Download the language model if it is not present yet.
    """
    from acechat.realtime.download import ModelDownloadCoordinator
    from acechat.realtime.voice_agent import TutorAgent, VoiceAgentConfig

    print(f"\n📦 Model: {settings.model.path}")
    print("-" * 50)

    downloader = ModelDownloadCoordinator()
    if args.force:
        settings.model.path.unlink(missing_ok=True)

    agent = TutorAgent(VoiceAgentConfig(auto_download=True), downloader=downloader)
    try:
        ready = asyncio.run(agent.prepare_model())
    except KeyboardInterrupt:
        asyncio.run(downloader.cancel())
        print("\n\n👋 Download cancelled.")
        return 1
    except Exception as e:
        print(f"❌ Download failed: {e}")
        logger.exception("Download error")
        return 1

    if ready:
        size_mb = settings.model.path.stat().st_size / (1024 * 1024)
        print(f"✅ Model ready ({size_mb:.0f} MB)")
        return 0
    return 1


def _run_session(voice_input: bool, voice_output: bool) -> int:
    from acechat.realtime.voice_agent import TutorAgent, VoiceAgentConfig, print_banner

    if (voice_input or voice_output) and not settings.speech.is_configured:
        print("❌ Azure Speech not configured.")
        print("   Set AZURE_SPEECH_API_KEY and AZURE_SPEECH_REGION in .env")
        return 1

    print_banner(voice_input=voice_input, voice_output=voice_output)
    if voice_output:
        print(f"🔊 Voice: {settings.speech.voice_name}")
    print(f"🧠 Model: {settings.inference.model} @ {settings.inference.endpoint}\n")

    config = VoiceAgentConfig(voice_input=voice_input, voice_output=voice_output)
    agent = TutorAgent(config)

    try:
        asyncio.run(agent.run())
    except KeyboardInterrupt:
        print("\n\n👋 Session interrupted.")
        return 0
    except Exception as e:
        print(f"❌ Session failed: {e}")
        logger.exception("Session error")
        return 1

    stats = agent.stats
    if stats:
        print("\n" + "-" * 60)
        print("📊 Session Statistics:")
        print(f"   Turns completed: {stats['turn_count']}")
        print(f"   Failed turns: {stats['failed_turns']}")
    print("\n👋 Goodbye!")
    return 0


def cmd_chat(args: argparse.Namespace) -> int:
    """
    Start a typed practice session, optionally with spoken replies.
    """
    return _run_session(voice_input=False, voice_output=args.voice)


def cmd_voice(args: argparse.Namespace) -> int:
    """
    Start a spoken practice session. Press Enter to talk.
    """
    return _run_session(voice_input=True, voice_output=not args.mute)


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Serve the conversation over HTTP for a web UI.
    """
    import uvicorn

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    print(f"\n🌐 AceChat API on http://{host}:{port}")
    print("-" * 50)

    try:
        uvicorn.run("acechat.api_server:app", host=host, port=port)
        return 0
    except Exception as e:
        print(f"❌ Server failed: {e}")
        logger.exception("Server error")
        return 1


def cmd_test(args: argparse.Namespace) -> int:
    """
    Test the system configuration and connections.
    """
    print("\n🔧 Testing System Configuration")
    print("-" * 50)

    tests_passed = 0
    tests_failed = 0

    # Test 1: Configuration
    print("\n1. Configuration...")
    try:
        settings.validate_all()
        print("   ✅ Configuration valid")
        tests_passed += 1
    except Exception as e:
        print(f"   ❌ Configuration error: {e}")
        tests_failed += 1

    # Test 2: Model file
    print("\n2. Model file...")
    path = settings.model.path
    if path.exists() and path.stat().st_size > 0:
        print(f"   ✅ Found {path}")
        tests_passed += 1
    else:
        print(f"   ❌ Missing {path} (run 'acechat download')")
        tests_failed += 1

    # Test 3: Model endpoint
    print("\n3. Model endpoint...")
    try:
        reply = asyncio.run(_probe_inference())
        print(f"   ✅ Streaming working: '{reply[:50]}...'")
        tests_passed += 1
    except Exception as e:
        print(f"   ❌ Inference error: {e}")
        tests_failed += 1

    # Test 4: Azure Speech (optional)
    print("\n4. Azure Speech Services...")
    try:
        if settings.speech.is_configured:
            from acechat.realtime.tts_stream import AzureSpeechOutput
            AzureSpeechOutput()
            print(f"   ✅ Speech configured (voice={settings.speech.voice_name})")
            tests_passed += 1
        else:
            print("   ⏭️  Not configured (needed for voice sessions)")
    except Exception as e:
        print(f"   ❌ Speech error: {e}")
        tests_failed += 1

    # Summary
    print("\n" + "-" * 50)
    print(f"Results: {tests_passed} passed, {tests_failed} failed")

    return 0 if tests_failed == 0 else 1


async def _probe_inference() -> str:
    from acechat.realtime.llm_stream import ChatInference

    llm = ChatInference()
    await llm.initialize()
    try:
        tokens = []
        async for token in llm.stream_reply("Say 'test passed' in 2 words"):
            tokens.append(token)
        return "".join(tokens)
    finally:
        await llm.shutdown()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="acechat",
        description="Spoken English practice with an AI tutor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  First run:
    acechat download
    acechat test

  Practice:
    acechat chat
    acechat chat --voice
    acechat voice
    acechat voice --mute

  Web UI backend:
    acechat serve --port 8000
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Download command
    download_parser = subparsers.add_parser(
        "download",
        help="Download the language model"
    )
    download_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Download again even if the model is present"
    )
    download_parser.set_defaults(func=cmd_download)

    # Chat command
    chat_parser = subparsers.add_parser(
        "chat",
        help="Start a typed practice session"
    )
    chat_parser.add_argument(
        "--voice",
        action="store_true",
        help="Speak replies aloud"
    )
    chat_parser.set_defaults(func=cmd_chat)

    # Voice command
    voice_parser = subparsers.add_parser(
        "voice",
        help="Start a spoken practice session (press Enter to talk)"
    )
    voice_parser.add_argument(
        "--mute",
        action="store_true",
        help="Show replies without speaking them"
    )
    voice_parser.set_defaults(func=cmd_voice)

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve the conversation API for a web UI"
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        help=f"Bind address (default: {settings.server.host})"
    )
    serve_parser.add_argument(
        "--port", "-p",
        type=int,
        help=f"Bind port (default: {settings.server.port})"
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Test command
    test_parser = subparsers.add_parser(
        "test",
        help="Test system configuration"
    )
    test_parser.set_defaults(func=cmd_test)

    return parser


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if args.verbose:
        set_level("DEBUG")

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
