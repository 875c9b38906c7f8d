"""
Shared configuration helpers and settings for the reading tracker.

Defaults live in ``config/defaults.toml`` next to this module and can be
overridden via environment variables (optionally loaded from ``.env``) or CLI flags.
"""

from __future__ import annotations

import locale
import os
import sys
from pathlib import Path

import tomllib
from dotenv import load_dotenv

PROJECT_ROOT = Path.cwd()
DEFAULTS_PATH = Path(__file__).resolve().with_name("defaults.toml")
ENV_PATH = PROJECT_ROOT / ".env"

load_dotenv(ENV_PATH)

if not DEFAULTS_PATH.exists():  # pragma: no cover - packaging issue
    raise FileNotFoundError(
        f"Missing configuration defaults at {DEFAULTS_PATH}. Reinstall the package."
    )

with DEFAULTS_PATH.open("rb") as defaults_file:
    _DEFAULTS = tomllib.load(defaults_file)


def _coerce_path(value: str | Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (PROJECT_ROOT / path).resolve()
    return path


def _env_bool(name: str, default: bool = False) -> bool:
    """Return True when the env var is set to a truthy value."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        _warn_invalid_env_value(name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        _warn_invalid_env_value(name, value, default)
        return default


def _env_path(name: str, default: str) -> Path:
    raw = os.getenv(name, default)
    return _coerce_path(raw)


def _normalize_locale(value: str | None, fallback: str = "en-US") -> str:
    """Return a BCP-47 style locale tag, defaulting to the host locale, then ``fallback``."""

    candidate = (value or "").strip()
    if not candidate:
        host_locale, _encoding = locale.getlocale()
        candidate = (host_locale or "").strip()
    if not candidate or candidate in {"C", "POSIX"}:
        return fallback
    return candidate.replace("_", "-")


def _warn_invalid_env_value(name: str, value: str | None, default: object) -> None:
    """Emit a warning when env overrides cannot be parsed."""

    sys.stderr.write(f"Invalid value for {name}={value!r}; falling back to {default!r}.\n")


# Audio Configuration
_AUDIO = _DEFAULTS["audio"]
AUDIO_BLOCK_SIZE = _env_int("AUDIO_BLOCK_SIZE", _AUDIO["block_size"])
AUDIO_CHANNELS = _env_int("AUDIO_CHANNELS", _AUDIO["channels"])
AUDIO_INPUT_DEVICE = os.getenv("AUDIO_INPUT_DEVICE")
LEVEL_HISTORY_LENGTH = _env_int("LEVEL_HISTORY_LENGTH", _AUDIO["level_history_length"])
LEVEL_FLOOR = _env_float("LEVEL_FLOOR", _AUDIO["level_floor"])
LEVEL_SAMPLE_STRIDE = _env_int("LEVEL_SAMPLE_STRIDE", _AUDIO["level_sample_stride"])
LEVEL_REFRESH_INTERVAL_SECONDS = _env_float(
    "LEVEL_REFRESH_INTERVAL_SECONDS", _AUDIO["level_refresh_interval_seconds"]
)
LEVEL_SMOOTHING = _env_float("LEVEL_SMOOTHING", _AUDIO["level_smoothing"])
CAPTURE_RESTART_DELAY_SECONDS = _env_float(
    "CAPTURE_RESTART_DELAY_SECONDS", _AUDIO["restart_delay_seconds"]
)

# Session clock
_CLOCK = _DEFAULTS["clock"]
CLOCK_TICK_INTERVAL_SECONDS = _env_float(
    "CLOCK_TICK_INTERVAL_SECONDS", _CLOCK["tick_interval_seconds"]
)

# Speech recognizer (OpenAI Realtime transcription)
_RECOGNIZER = _DEFAULTS["recognizer"]
OPENAI_API_KEY = (os.getenv("OPENAI_API_KEY") or "").strip() or None
RECOGNIZER_FALLBACK_LOCALE = _RECOGNIZER.get("fallback_locale", "en-US")
RECOGNIZER_LOCALE = _normalize_locale(
    os.getenv("RECOGNIZER_LOCALE", _RECOGNIZER.get("locale", "")),
    RECOGNIZER_FALLBACK_LOCALE,
)
RECOGNIZER_MODEL = os.getenv("RECOGNIZER_MODEL", _RECOGNIZER["model"])
REALTIME_ENDPOINT = os.getenv("REALTIME_ENDPOINT", _RECOGNIZER["realtime_endpoint"])
REALTIME_HEADERS = {
    "Authorization": f"Bearer {OPENAI_API_KEY or ''}",
    "OpenAI-Beta": _RECOGNIZER["beta_header"],
}
RECOGNIZER_WIRE_SAMPLE_RATE = _env_int(
    "RECOGNIZER_WIRE_SAMPLE_RATE", _RECOGNIZER["wire_sample_rate"]
)
RECOGNIZER_CONNECT_TIMEOUT_SECONDS = _env_float(
    "RECOGNIZER_CONNECT_TIMEOUT_SECONDS", _RECOGNIZER["connect_timeout_seconds"]
)

# Storage
_STORAGE = _DEFAULTS["storage"]
DATA_DIRECTORY = _env_path("READING_TRACKER_DATA_DIR", _STORAGE["data_directory"])

_LOGGING = _DEFAULTS.get("logging", {})
VERBOSE_LOGGING = _env_bool("READING_TRACKER_VERBOSE", bool(_LOGGING.get("verbose", False)))

__all__ = [
    "PROJECT_ROOT",
    "DEFAULTS_PATH",
    "ENV_PATH",
    "_DEFAULTS",
    "_coerce_path",
    "_env_bool",
    "_env_int",
    "_env_float",
    "_env_path",
    "_normalize_locale",
    "AUDIO_BLOCK_SIZE",
    "AUDIO_CHANNELS",
    "AUDIO_INPUT_DEVICE",
    "LEVEL_HISTORY_LENGTH",
    "LEVEL_FLOOR",
    "LEVEL_SAMPLE_STRIDE",
    "LEVEL_REFRESH_INTERVAL_SECONDS",
    "LEVEL_SMOOTHING",
    "CAPTURE_RESTART_DELAY_SECONDS",
    "CLOCK_TICK_INTERVAL_SECONDS",
    "OPENAI_API_KEY",
    "RECOGNIZER_FALLBACK_LOCALE",
    "RECOGNIZER_LOCALE",
    "RECOGNIZER_MODEL",
    "REALTIME_ENDPOINT",
    "REALTIME_HEADERS",
    "RECOGNIZER_WIRE_SAMPLE_RATE",
    "RECOGNIZER_CONNECT_TIMEOUT_SECONDS",
    "DATA_DIRECTORY",
    "VERBOSE_LOGGING",
]
