# backend/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from errors import ConfigError

DEFAULT_BUSINESS_NAME = "NY Plumbing (Pilot)"
DEFAULT_SERVICE_NAME = "ny-plumber-voice-agent"


def is_e164(phone: str) -> bool:
    """Loose E.164 check: leading '+' and at least 11 characters (+15551234567)."""
    return bool(phone) and phone.startswith("+") and len(phone) >= 11


def _as_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "y", "on")


def _strip_scheme(host: str) -> str:
    # PUBLIC_HOST is often pasted as a full ngrok URL
    for prefix in ("https://", "http://", "wss://", "ws://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host.rstrip("/")


@dataclass(frozen=True)
class Settings:
    oncall_phone: str
    openai_api_key: str
    port: int = 5050
    public_host: Optional[str] = None
    business_name: str = DEFAULT_BUSINESS_NAME
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    realtime_model: str = "gpt-realtime"
    voice: str = "verse"
    data_dir: Path = Path("data")
    log_level: str = "INFO"
    log_audio_events: bool = False
    tool_grace_seconds: float = 5.0
    service_name: str = DEFAULT_SERVICE_NAME

    @property
    def leads_file(self) -> Path:
        return self.data_dir / "leads.jsonl"

    @property
    def events_file(self) -> Path:
        return self.data_dir / "events.jsonl"

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the environment. Every problem is collected so the
        operator sees all missing/invalid variables in one ConfigError.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        problems = []

        oncall_phone = get("ONCALL_PHONE")
        if not oncall_phone:
            problems.append("ONCALL_PHONE is required")
        elif not is_e164(oncall_phone):
            problems.append("ONCALL_PHONE must be E.164 format like +15551234567")

        openai_api_key = get("OPENAI_API_KEY")
        if not openai_api_key:
            problems.append("OPENAI_API_KEY is required")

        port = 5050
        try:
            port = int(get("PORT", "5050"))
        except ValueError:
            problems.append("PORT must be an integer")

        tool_grace_seconds = 5.0
        try:
            tool_grace_seconds = float(get("TOOL_GRACE_SECONDS", "5"))
        except ValueError:
            problems.append("TOOL_GRACE_SECONDS must be a number")

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))

        public_host = _strip_scheme(get("PUBLIC_HOST")) or None

        return cls(
            oncall_phone=oncall_phone,
            openai_api_key=openai_api_key,
            port=port,
            public_host=public_host,
            business_name=get("BUSINESS_NAME", DEFAULT_BUSINESS_NAME),
            twilio_account_sid=get("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=get("TWILIO_AUTH_TOKEN"),
            twilio_from_number=get("TWILIO_FROM_NUMBER"),
            realtime_model=get("OPENAI_REALTIME_MODEL", "gpt-realtime"),
            voice=get("OPENAI_REALTIME_VOICE", "verse"),
            data_dir=Path(get("DATA_DIR", "data")),
            log_level=get("LOG_LEVEL", "INFO").upper(),
            log_audio_events=_as_bool(env.get("LOG_AUDIO_EVENTS")),
            tool_grace_seconds=tool_grace_seconds,
            service_name=get("SERVICE_NAME", DEFAULT_SERVICE_NAME),
        )


def load_settings() -> Settings:
    return Settings.from_env()
