"""Environment configuration.

Secrets and tunables come from environment variables (``.env`` locally).
``validate_config()`` runs before the server starts so that a missing key
fails loudly at boot rather than silently mid-call.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
]

OPTIONAL_VARS = [
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "GOOGLE_SHEET_ID",
    "GOOGLE_CREDENTIALS_FILE",
    "PUBLIC_BASE_URL",
    "LOG_LEVEL",
]


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
            f"\nSet them in .env (local) or in the deployment's secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _int(name: str, default: int) -> int:
    return int(_float(name, default))


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    classifier_timeout_s: float = 8.0

    session_ttl_s: float = 3600.0
    session_high_water: int = 1000

    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    public_base_url: str = ""

    google_sheet_id: str = ""
    google_credentials_file: str = ""

    speech_language: str = "en-US"
    twilio_voice: str = "alice"
    log_level: str = "INFO"
    port: int = 8765

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            classifier_timeout_s=_float("CLASSIFIER_TIMEOUT_S", 8.0),
            session_ttl_s=_float("SESSION_TTL_S", 3600.0),
            session_high_water=_int("SESSION_HIGH_WATER", 1000),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
            elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", ""),
            public_base_url=os.getenv("PUBLIC_BASE_URL", ""),
            google_sheet_id=os.getenv("GOOGLE_SHEET_ID", ""),
            google_credentials_file=os.getenv("GOOGLE_CREDENTIALS_FILE", ""),
            speech_language=os.getenv("SPEECH_LANGUAGE", "en-US"),
            twilio_voice=os.getenv("TWILIO_VOICE", "alice"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=_int("PORT", 8765),
        )
