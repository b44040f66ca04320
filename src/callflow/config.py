"""Startup configuration.

Checks that all required environment variables are set before the server
accepts webhooks, and exposes the values the rest of the app reads as a
frozen Settings object.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "PUBLIC_BASE_URL",
]

OPTIONAL_VARS = [
    "OPENAI_API_KEY",
    "ELEVENLABS_API_KEY",
    "NOTIFY_WEBHOOK_URL",
    "NOTIFY_WEBHOOK_SECRET",
    "CAMPAIGNS_FILE",
    "LOG_LEVEL",
]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    public_base_url: str = ""

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_summary_model: str = "gpt-4o"
    elevenlabs_api_key: str = ""

    default_language: str = "en"
    default_voice: str = "alice"
    default_country_code: str = "+91"

    audio_dir: str = "temp/audio"
    audio_ttl_seconds: int = 300
    idle_session_timeout_seconds: int = 900
    reaper_interval_seconds: int = 60

    notify_webhook_url: str = ""
    notify_webhook_secret: str = ""
    log_level: str = "INFO"
    campaigns_file: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_summary_model=os.getenv("OPENAI_SUMMARY_MODEL", "gpt-4o"),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
            default_language=os.getenv("DEFAULT_LANGUAGE", "en"),
            default_voice=os.getenv("DEFAULT_VOICE", "alice"),
            default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", "+91"),
            audio_dir=os.getenv("AUDIO_DIR", "temp/audio"),
            audio_ttl_seconds=_int_env("AUDIO_TTL_SECONDS", 300),
            idle_session_timeout_seconds=_int_env("IDLE_SESSION_TIMEOUT_SECONDS", 900),
            reaper_interval_seconds=_int_env("REAPER_INTERVAL_SECONDS", 60),
            notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL", ""),
            notify_webhook_secret=os.getenv("NOTIFY_WEBHOOK_SECRET", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            campaigns_file=os.getenv("CAMPAIGNS_FILE", ""),
        )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env or the deployment environment.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
