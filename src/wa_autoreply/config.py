"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant responding to WhatsApp messages. "
    "Keep responses concise, friendly, and conversational. "
    "Respond as if you're the owner of this WhatsApp account. "
    "If someone asks about availability, mention you're currently away but will respond soon. "
    "Don't mention that you're an AI unless directly asked."
)

DEFAULT_KEYWORDS: dict[str, str] = {
    "urgent": "I see this is urgent. I'll get back to you as soon as possible.",
    "emergency": "This appears to be an emergency. Please call me directly if it's truly urgent.",
    "meeting": "Regarding meetings, I'll check my calendar and get back to you shortly.",
    "hello": "Hello! Thanks for reaching out. I'll respond as soon as possible!",
    "hi": "Hi there! Thanks for your message. I'll get back to you soon!",
    "thank": "You're welcome! Happy to help!",
}


class WhatsAppConfig(BaseModel):
    auth_dir: str = "./data/whatsapp_auth"
    device_name: str = "WhatsApp Bot"
    use_phone_number: bool = False  # pairing code instead of QR
    phone_number: str = ""  # with country code, e.g. "+1234567890"
    pairing_delay: float = 3.0


class CompletionConfig(BaseModel):
    backend: str = "openai"  # "openai" | "anthropic"
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    max_tokens: int = 150
    temperature: float = 0.7
    timeout: float = 30.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    context_turns: int = Field(default=20, ge=1)

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        if value not in ("openai", "anthropic"):
            raise ValueError(f"Unknown completion backend: {value}")
        return value

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class ReplyConfig(BaseModel):
    enabled: bool = True
    delay_seconds: float = 2.0
    reply_to_groups: bool = False
    exclude_numbers: list[str] = Field(default_factory=list)
    # Checked in declaration order; the first substring match wins.
    keywords: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    fallback_message: str = (
        "Thanks for your message! I'm currently away but will get back to you soon."
    )


class HistoryConfig(BaseModel):
    file: str = "./data/chat_history.json"
    max_messages: int = Field(default=50, ge=1)
    save_interval: float = Field(default=30.0, gt=0)


class SessionConfig(BaseModel):
    max_retries: int = Field(default=5, ge=0)
    retry_interval: float = Field(default=5.0, ge=0)
    qr_timeout: float = Field(default=60.0, gt=0)
    init_timeout: float = Field(default=60.0, gt=0)


class DashboardConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8000


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    reply: ReplyConfig = Field(default_factory=ReplyConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def _drop_unresolved(value: object) -> object:
    """Turn values that still hold an unresolved ${VAR} into None."""
    if isinstance(value, dict):
        return {k: _drop_unresolved(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_drop_unresolved(v) for v in value]
    if isinstance(value, str) and _ENV_VAR_PATTERN.fullmatch(value.strip()):
        return None
    return value


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = _drop_unresolved(yaml.safe_load(interpolated) or {})

    config = AppConfig(**data)  # type: ignore[arg-type]

    # Fall back to the provider's conventional env var (OPEN_AI_KEY for older setups)
    if not config.completion.api_key:
        fallback_key = os.environ.get("OPENAI_API_KEY") or os.environ.get("OPEN_AI_KEY")
        if config.completion.backend == "anthropic":
            fallback_key = os.environ.get("ANTHROPIC_API_KEY")
        if fallback_key:
            config.completion.api_key = fallback_key

    return config
