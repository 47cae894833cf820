"""Runtime configuration for the nurture generator."""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .credentials import Credential

CREDENTIAL_ENV_KEYS: Tuple[Tuple[str, str], ...] = (
    ("OPENROUTER_API_KEY", "Primary"),
    ("OPENROUTER_API_KEY_2", "Secondary"),
    ("OPENROUTER_API_KEY_3", "Tertiary"),
    ("OPENROUTER_API_KEY_4", "Quaternary"),
)

DEFAULT_API_URL = "https://openrouter.ai/api/v1/chat/completions"

_ENV_LOADED = False


def _env_or_default(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env_or_default(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass
class AppConfig:
    api_url: str = field(default_factory=lambda: _env_or_default("OPENROUTER_API_URL", DEFAULT_API_URL))
    referer: str = field(default_factory=lambda: _env_or_default("OPENROUTER_REFERER", "http://localhost:8501"))
    app_title: str = field(default_factory=lambda: _env_or_default("OPENROUTER_APP_TITLE", "Email Nurture Generator"))
    request_timeout_seconds: float = field(default_factory=lambda: _env_float("LLM_REQUEST_TIMEOUT", 15.0))
    sequence_timeout_floor_seconds: float = 60.0
    sequence_timeout_per_email_seconds: float = 20.0
    email_retry_delay_seconds: float = 0.5
    log_level: str = field(default_factory=lambda: _env_or_default("NURTURE_LOG_LEVEL", "INFO"))


def ensure_env_loaded() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return
    load_dotenv()
    _ENV_LOADED = True


def load_credentials_from_env(environ: Optional[Mapping[str, str]] = None) -> List[Credential]:
    """Collect the primary key and up to three numbered secondary keys.

    An empty result is returned as-is; the credential pool decides that an
    empty list is fatal.
    """
    if environ is None:
        ensure_env_loaded()
        environ = os.environ
    credentials: List[Credential] = []
    for env_key, name in CREDENTIAL_ENV_KEYS:
        secret = str(environ.get(env_key, "") or "").strip()
        if secret:
            credentials.append(Credential(name=name, key=secret))
    return credentials


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
