"""
Service configuration — single source of truth for environment-driven settings,
query windows, model routing, and integrity thresholds.

Import from here in services and routes rather than reading os.environ directly.
"""
from __future__ import annotations

import os

from liftdiag.errors import ConfigurationError

# Load .env file automatically in dev (no-op when the file is missing)
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


# ── Runtime environment ────────────────────────────────────────────────────────

APP_ENV: str = os.getenv("APP_ENV", "development").lower()
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()
DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY", "FR")
ENABLE_STORAGE: bool = _env_bool("ENABLE_STORAGE", True)


def is_production() -> bool:
    return APP_ENV in ("production", "prod")


# ── Query window ───────────────────────────────────────────────────────────────

# Default look-back window when the user context names no period
DEFAULT_DAYS_BACK: int = _env_int("DEFAULT_DAYS_BACK", 90)

# Hard bounds applied to any parsed window (1 day .. 2 years)
MIN_DAYS_BACK: int = 1
MAX_DAYS_BACK: int = 730


# ── Analytics backend (Looker) ─────────────────────────────────────────────────

LOOKER_API_BASE_URL: str = os.getenv("LOOKER_API_BASE_URL", "").strip().rstrip("/")
LOOKER_CLIENT_ID: str = os.getenv("LOOKER_CLIENT_ID", "").strip()
LOOKER_CLIENT_SECRET: str = os.getenv("LOOKER_CLIENT_SECRET", "").strip()
LOOKER_TIMEOUT_SECONDS: float = _env_float("LOOKER_TIMEOUT_SECONDS", 60.0)

# Row cap sent with every query. A batch that comes back exactly at the cap is
# treated as truncated.
LOOKER_ROW_LIMIT: int = _env_int("LOOKER_ROW_LIMIT", 5000)

# Number of rows checked for the requested unit id on every query
INTEGRITY_SAMPLE_SIZE: int = _env_int("INTEGRITY_SAMPLE_SIZE", 25)

# Record kind -> env prefix for its saved Look / query id
RECORD_KINDS: dict[str, str] = {
    "buildings":           "LOOKER_BUILDINGS",
    "units":               "LOOKER_UNITS",
    "visits":              "LOOKER_VISITS",
    "downtimes":           "LOOKER_BREAKDOWNS",
    "maintenance_issues":  "LOOKER_MAINTENANCE_ISSUES",
    "parts_requests":      "LOOKER_REPAIR_REQUESTS",
}

# Record kind -> date field used for the look-back filter
RECORD_DATE_FIELDS: dict[str, str] = {
    "visits":              "task.completed_date",
    "downtimes":           "breakdown.start_time",
    "maintenance_issues":  "task.completed_date",
    "parts_requests":      "repair_request.requested_date",
}

# Field carrying the unit identifier in every unit-scoped row
UNIT_FILTER_FIELD: str = os.getenv("LOOKER_UNIT_FILTER_FIELD", "device.id")
BUILDING_FILTER_FIELD: str = os.getenv("LOOKER_BUILDING_FILTER_FIELD", "building.id")
COUNTRY_FILTER_FIELD: str = os.getenv("LOOKER_COUNTRY_FILTER_FIELD", "building.country_code")


def looker_source_ids(kind: str) -> tuple[str | None, str | None]:
    """Return (look_id, query_id) configured for a record kind."""
    prefix = RECORD_KINDS[kind]
    look_id = os.getenv(f"{prefix}_LOOK_ID", "").strip() or None
    query_id = os.getenv(f"{prefix}_QUERY_ID", "").strip() or None
    return look_id, query_id


# ── Text generation ────────────────────────────────────────────────────────────

OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
LLM_PRIMARY_MODEL: str = os.getenv("LLM_PRIMARY_MODEL", "gpt-4o")
LLM_FALLBACK_MODELS: list[str] = [
    m.strip()
    for m in os.getenv("LLM_FALLBACK_MODELS", "gpt-4o,gpt-3.5-turbo").split(",")
    if m.strip()
]
LLM_TEMPERATURE: float = _env_float("LLM_TEMPERATURE", 0.3)
LLM_MAX_TOKENS: int = _env_int("LLM_MAX_TOKENS", 8192)

# Characters of a malformed completion kept in errors and logs
RESPONSE_PREVIEW_CHARS: int = 500


def model_priority_list() -> list[str]:
    """Primary model first, then fallbacks, without repeats."""
    ordered: list[str] = []
    for model in [LLM_PRIMARY_MODEL, *LLM_FALLBACK_MODELS]:
        if model and model not in ordered:
            ordered.append(model)
    return ordered


# ── Auth ───────────────────────────────────────────────────────────────────────

JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")


# ── HTTP ───────────────────────────────────────────────────────────────────────

CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000")
