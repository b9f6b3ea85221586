"""
Configuration management for the outbound bridge.
Loads settings from environment variables with validation.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env from package dir, project root, or current directory
_src_dir = Path(__file__).parent
_package_dir = _src_dir.parent
_project_root = _package_dir.parent
load_dotenv(_package_dir / '.env')
load_dotenv(_project_root / '.env')
load_dotenv()


def _get_required_env(key: str) -> str:
    """Get a required environment variable or raise an error."""
    value = os.getenv(key)
    if not value:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


def _get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable with a default."""
    return os.getenv(key, default)


def _get_optional_int(key: str, default: int) -> int:
    """Get an optional integer environment variable with a default."""
    value = os.getenv(key)
    try:
        return int(value) if value else default
    except ValueError:
        raise ValueError(f"Invalid integer for {key}: {value!r}") from None


def _get_optional_float(key: str, default: float) -> float:
    """Get an optional float environment variable with a default."""
    value = os.getenv(key)
    try:
        return float(value) if value else default
    except ValueError:
        raise ValueError(f"Invalid number for {key}: {value!r}") from None


def _get_optional_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_languages(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class RealtimeConfig:
    """OpenAI Realtime API configuration."""
    api_key: str
    model: str = "gpt-4o-realtime-preview"
    url: str = "wss://api.openai.com/v1/realtime"
    voice: str = "alloy"
    audio_format: str = "g711_ulaw"
    transcription_model: str = "whisper-1"

    @property
    def endpoint(self) -> str:
        return f"{self.url}?model={self.model}"


@dataclass(frozen=True)
class VADConfig:
    """Server-side voice activity detection parameters."""
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 700


@dataclass(frozen=True)
class ScriptConfig:
    """Scripts and prompts used to assemble the agent's instructions."""
    opening_script: str
    general_prompt: str = ""
    business_prompt: str = ""
    closing_script: str = ""
    languages: tuple[str, ...] = ("he", "en")
    idle_warning_prompt: str = "Are you still with me?"
    max_call_warning_prompt: str = "We are almost out of time, so let's wrap up."
    name_filler: str = "there"


@dataclass(frozen=True)
class TimerConfig:
    """
    Call-lifecycle deadlines, in milliseconds.

    idle_hangup_ms is measured from the idle warning, max_call_warning_ms
    is how long before max_call_ms the wrap-up warning is spoken.
    """
    idle_warning_ms: int = 40000
    idle_hangup_ms: int = 20000
    max_call_ms: int = 300000
    max_call_warning_ms: int = 30000
    hangup_grace_ms: int = 3000

    def __post_init__(self):
        for name in ("idle_warning_ms", "idle_hangup_ms", "max_call_ms", "hangup_grace_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0 <= self.max_call_warning_ms < self.max_call_ms:
            raise ValueError("max_call_warning_ms must be smaller than max_call_ms")


@dataclass(frozen=True)
class WebhookConfig:
    """Out-of-band notification endpoints. Empty URLs disable delivery."""
    status_webhook_url: str = ""
    call_log_webhook_url: str = ""
    timeout_s: float = 5.0


@dataclass(frozen=True)
class SummaryConfig:
    """Post-call summarization settings."""
    enabled: bool = True
    model: str = "gpt-4o-mini"
    url: str = "https://api.openai.com/v1/chat/completions"
    max_tokens: int = 300


@dataclass(frozen=True)
class ServerConfig:
    """HTTP/WebSocket server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass(frozen=True)
class Config:
    """Main configuration container."""
    realtime: RealtimeConfig
    vad: VADConfig
    scripts: ScriptConfig
    timers: TimerConfig
    webhooks: WebhookConfig
    summary: SummaryConfig
    server: ServerConfig
    barge_in_enabled: bool = True


def load_config() -> Config:
    """Load and validate all configuration from environment variables."""
    return Config(
        realtime=RealtimeConfig(
            api_key=_get_required_env("OPENAI_API_KEY"),
            model=_get_optional_env("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"),
            url=_get_optional_env("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"),
            voice=_get_optional_env("OPENAI_VOICE", "alloy"),
            audio_format=_get_optional_env("OPENAI_AUDIO_FORMAT", "g711_ulaw"),
            transcription_model=_get_optional_env("OPENAI_TRANSCRIPTION_MODEL", "whisper-1"),
        ),
        vad=VADConfig(
            threshold=_get_optional_float("MB_VAD_THRESHOLD", 0.5),
            prefix_padding_ms=_get_optional_int("MB_VAD_PREFIX_PADDING_MS", 300),
            silence_duration_ms=_get_optional_int("MB_VAD_SILENCE_MS", 700),
        ),
        scripts=ScriptConfig(
            opening_script=_get_required_env("OUTBOUND_OPENING_SCRIPT"),
            general_prompt=_get_optional_env("OUTBOUND_GENERAL_PROMPT"),
            business_prompt=_get_optional_env("OUTBOUND_BUSINESS_PROMPT"),
            closing_script=_get_optional_env("OUTBOUND_CLOSING_SCRIPT"),
            languages=_parse_languages(_get_optional_env("MB_LANGUAGES", "he,en")),
            idle_warning_prompt=_get_optional_env("MB_IDLE_WARNING_PROMPT", "Are you still with me?"),
            max_call_warning_prompt=_get_optional_env(
                "MB_MAX_CALL_WARNING_PROMPT", "We are almost out of time, so let's wrap up."
            ),
            name_filler=_get_optional_env("MB_NAME_FILLER", "there"),
        ),
        timers=TimerConfig(
            idle_warning_ms=_get_optional_int("MB_IDLE_WARNING_MS", 40000),
            idle_hangup_ms=_get_optional_int("MB_IDLE_HANGUP_MS", 20000),
            max_call_ms=_get_optional_int("MB_MAX_CALL_MS", 300000),
            max_call_warning_ms=_get_optional_int("MB_MAX_CALL_WARNING_MS", 30000),
            hangup_grace_ms=_get_optional_int("MB_HANGUP_GRACE_MS", 3000),
        ),
        webhooks=WebhookConfig(
            status_webhook_url=_get_optional_env("OUTBOUND_STATUS_WEBHOOK_URL"),
            call_log_webhook_url=_get_optional_env("MB_CALL_LOG_WEBHOOK_URL"),
            timeout_s=_get_optional_float("MB_WEBHOOK_TIMEOUT_S", 5.0),
        ),
        summary=SummaryConfig(
            enabled=_get_optional_bool("MB_SUMMARY_ENABLED", True),
            model=_get_optional_env("MB_SUMMARY_MODEL", "gpt-4o-mini"),
        ),
        server=ServerConfig(
            host=_get_optional_env("SERVER_HOST", "0.0.0.0"),
            port=_get_optional_int("PORT", 3000),
        ),
        barge_in_enabled=_get_optional_bool("MB_ENABLE_BARGE_IN", True),
    )
