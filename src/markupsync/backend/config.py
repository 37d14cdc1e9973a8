"""Environment-driven settings shared by the capture, restore and client layers.

Values are read once at import. A ``.env`` file at the project root is loaded
first so local development does not need exported variables.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__)))), '.env'))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


API_BASE = os.getenv("MARKUPSYNC_API_BASE", "http://127.0.0.1:8000").rstrip("/")
API_TIMEOUT = _env_float("MARKUPSYNC_API_TIMEOUT", 60.0)

# Prefix of per-image locators: "<scheme>:<base>" in front of /studies/...
LOCATOR_BASE = os.getenv("MARKUPSYNC_LOCATOR_BASE", "wadors:/api/wado").rstrip("/")

# Viewport readiness polling used before restored markup is inserted
READY_POLL_INTERVAL = _env_float("MARKUPSYNC_READY_POLL_MS", 100.0) / 1000.0
READY_TIMEOUT = _env_float("MARKUPSYNC_READY_TIMEOUT_MS", 5000.0) / 1000.0

# Enable verbose debug logging when MARKUPSYNC_DEBUG is set (1/true/yes)
DEBUG_ENABLED = os.getenv("MARKUPSYNC_DEBUG", "").lower() in ("1", "true", "yes")
