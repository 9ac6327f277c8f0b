"""Runtime configuration for TripSpot.

Values come from the environment (a ``.env`` file is honoured). The
service credentials only seed the persisted settings record on first
run; after that the store is the source of truth and each pipeline stage
reads it fresh.
"""

import os

from dotenv import load_dotenv

from tripspot.models import DEFAULT_LLM_MODEL, Settings

load_dotenv()


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


DB_PATH = os.getenv(
    "TRIPSPOT_DB_PATH",
    os.path.join(os.path.expanduser("~"), ".tripspot", "tripspot.sqlite"),
)

AMAP_BASE_URL = os.getenv("AMAP_BASE_URL", "https://restapi.amap.com").rstrip("/")

HTTP_TIMEOUT_SEC = _float_env("TRIPSPOT_HTTP_TIMEOUT", 10.0)
LLM_TIMEOUT_SEC = _float_env("TRIPSPOT_LLM_TIMEOUT", 60.0)

# Pause between geocoding calls, below AMap's per-key QPS limit.
GEOCODE_MIN_DELAY_SEC = _float_env("TRIPSPOT_GEOCODE_MIN_DELAY", 0.2)

FALLBACK_SPEED_KMH = 30.0


def default_settings() -> Settings:
    """Settings used when no record has been saved yet."""
    return Settings(
        amap_key=os.getenv("AMAP_KEY", ""),
        amap_security_code=os.getenv("AMAP_SECURITY_CODE", ""),
        llm_api_key=os.getenv("LLM_API_KEY", ""),
        llm_base_url=os.getenv("LLM_BASE_URL", ""),
        llm_model=os.getenv("LLM_MODEL", DEFAULT_LLM_MODEL),
    )
