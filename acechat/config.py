"""
Configuration Management Module

All application configuration comes from environment variables with
sensible defaults. Values are loaded from a .env file (if present) and can be
overridden by system environment variables.

Usage:
    from acechat.config import settings
    print(settings.inference.chat_url)

Every component also accepts an explicit config object, so tests and
embedding hosts never have to go through the environment.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as boolean."""
    value = get_env(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


@dataclass
class InferenceConfig:
    """
    Language model endpoint configuration.

    The model is served behind an OpenAI-compatible chat completions endpoint
    (a local runtime loading the downloaded model file, or a hosted deployment).

    Attributes:
        endpoint: Base URL of the server
        api_key: Optional bearer token
        model: Model name sent with each request
        temperature: Sampling temperature
        top_p: Nucleus sampling threshold
        top_k: Top-k sampling cutoff
        max_tokens: Maximum tokens per reply
        connect_timeout_s: Connection timeout (reads are unbounded)
        max_history_turns: Number of past turns replayed with each request
    """
    endpoint: str = field(default_factory=lambda: get_env("LLM_ENDPOINT", "http://127.0.0.1:8080"))
    api_key: str = field(default_factory=lambda: get_env("LLM_API_KEY"))
    model: str = field(default_factory=lambda: get_env("LLM_MODEL", "gemma-3n-e4b-it"))
    temperature: float = field(default_factory=lambda: get_env_float("LLM_TEMPERATURE", 1.0))
    top_p: float = field(default_factory=lambda: get_env_float("LLM_TOP_P", 0.95))
    top_k: int = field(default_factory=lambda: get_env_int("LLM_TOP_K", 64))
    max_tokens: int = field(default_factory=lambda: get_env_int("LLM_MAX_TOKENS", 1024))
    connect_timeout_s: float = field(default_factory=lambda: get_env_float("LLM_CONNECT_TIMEOUT_S", 10.0))
    max_history_turns: int = field(default_factory=lambda: get_env_int("LLM_MAX_HISTORY_TURNS", 20))

    def validate(self) -> bool:
        """Validate inference settings."""
        if not self.endpoint:
            raise ValueError("LLM_ENDPOINT is required")
        if self.max_tokens <= 0:
            raise ValueError("LLM_MAX_TOKENS must be positive")
        if self.max_history_turns < 0:
            raise ValueError("LLM_MAX_HISTORY_TURNS cannot be negative")
        return True

    @property
    def chat_url(self) -> str:
        """Get the full URL for chat completion calls."""
        return f"{self.endpoint.rstrip('/')}/v1/chat/completions"


@dataclass
class SpeechConfig:
    """
    Azure Speech configuration shared by recognition and synthesis.

    Attributes:
        api_key: Azure Speech subscription key
        region: Azure region
        language: Recognition language
        voice_name: Neural voice used for replies
        speaking_rate: Prosody rate (1.0 = normal)
        pitch: Prosody pitch offset
        end_silence_ms: Silence that ends an utterance
    """
    api_key: str = field(default_factory=lambda: get_env("AZURE_SPEECH_API_KEY"))
    region: str = field(default_factory=lambda: get_env("AZURE_SPEECH_REGION"))
    language: str = field(default_factory=lambda: get_env("SPEECH_LANGUAGE", "en-US"))
    voice_name: str = field(default_factory=lambda: get_env("SPEECH_VOICE_NAME", "en-US-JennyNeural"))
    speaking_rate: float = field(default_factory=lambda: get_env_float("TTS_SPEAKING_RATE", 0.85))
    pitch: str = field(default_factory=lambda: get_env("TTS_PITCH", "-10%"))
    end_silence_ms: int = field(default_factory=lambda: get_env_int("STT_END_SILENCE_MS", 3000))

    @property
    def is_configured(self) -> bool:
        """Check whether speech credentials are present."""
        return bool(self.api_key and self.region)


@dataclass
class ModelConfig:
    """
    Model artifact location and download source.

    Attributes:
        directory: Directory holding the model file
        file_name: Model file name
        download_url: Source URL for the model file
        hf_token: Optional Hugging Face access token
        progress_interval_s: Minimum seconds between progress reports
    """
    directory: str = field(default_factory=lambda: get_env("MODEL_DIR", "./models"))
    file_name: str = field(default_factory=lambda: get_env("MODEL_FILE_NAME", "gemma-3n-e4b-it-int4.litertlm"))
    download_url: str = field(default_factory=lambda: get_env(
        "MODEL_DOWNLOAD_URL",
        "https://huggingface.co/google/gemma-3n-E4B-it-litert-lm/resolve/main/gemma-3n-E4B-it-int4.litertlm",
    ))
    hf_token: str = field(default_factory=lambda: get_env("HF_TOKEN"))
    progress_interval_s: float = field(default_factory=lambda: get_env_float("DOWNLOAD_PROGRESS_INTERVAL_S", 0.5))

    @property
    def path(self) -> Path:
        """Final location of the model file."""
        return Path(self.directory) / self.file_name

    @property
    def temp_path(self) -> Path:
        """Location used while a download is in progress."""
        return Path(self.directory) / f"{self.file_name}.tmp"


@dataclass
class ConversationConfig:
    """
    Conversation orchestration settings.

    Attributes:
        stt_error_grace_s: How long a speech input error stays visible
    """
    stt_error_grace_s: float = field(default_factory=lambda: get_env_float("STT_ERROR_GRACE_S", 1.5))


@dataclass
class ServerConfig:
    """
    HTTP API configuration.

    Attributes:
        host: Bind address
        port: Bind port
        cors_origins: Allowed browser origins
        rate_limit_requests: Requests allowed per client per window
        rate_limit_window: Rate limit window in seconds
        voice_input: Use the host microphone for mic taps
        voice_output: Speak replies on the host speakers
    """
    host: str = field(default_factory=lambda: get_env("API_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: get_env_int("API_PORT", 8000))
    cors_origins: List[str] = field(default_factory=lambda: [
        origin.strip()
        for origin in get_env("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])
    rate_limit_requests: int = field(default_factory=lambda: get_env_int("RATE_LIMIT_REQUESTS", 120))
    rate_limit_window: int = field(default_factory=lambda: get_env_int("RATE_LIMIT_WINDOW", 60))
    voice_input: bool = field(default_factory=lambda: get_env_bool("API_VOICE_INPUT", False))
    voice_output: bool = field(default_factory=lambda: get_env_bool("API_VOICE_OUTPUT", False))


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    Access via the singleton `settings` instance.

    Example:
        from acechat.config import settings

        settings.inference.validate()
        model_file = settings.model.path
    """
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.inference.validate()
        if self.conversation.stt_error_grace_s < 0:
            raise ValueError("STT_ERROR_GRACE_S cannot be negative")
        return True


# Singleton settings instance
settings = Settings()
