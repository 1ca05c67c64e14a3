"""Configuration settings for BlurGuard."""

import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from .env file
# Explicitly load from the project root (where config.py lives)
_env_path = Path(__file__).parent / ".env"
load_dotenv(_env_path)


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (catalog, schedules, reports).

    BLURGUARD_DATA_DIR overrides the platform default.

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("BLURGUARD_DATA_DIR")
    if override:
        return Path(override)

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/BlurGuard
        return Path.home() / "Library" / "Application Support" / "BlurGuard"
    elif sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "BlurGuard"
        return Path.home() / "AppData" / "Roaming" / "BlurGuard"
    # Linux: ~/.local/share/BlurGuard
    return Path.home() / ".local" / "share" / "BlurGuard"


def _get_float(env_var: str, default: float) -> float:
    """
    Read a float setting from the environment.

    Args:
        env_var: Environment variable name.
        default: Value used when the variable is unset or malformed.

    Returns:
        Parsed float value.
    """
    raw = os.getenv(env_var, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"{env_var}={raw!r} is not a number, using default {default}"
        )
        return default


def _get_int(env_var: str, default: int) -> int:
    """Read an integer setting from the environment (falls back to default)."""
    raw = os.getenv(env_var, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"{env_var}={raw!r} is not an integer, using default {default}"
        )
        return default


def _get_bool(env_var: str, default: bool) -> bool:
    """Read a boolean flag ("true", "1", "yes") from the environment."""
    raw = os.getenv(env_var, "")
    if not raw:
        return default
    return raw.lower() in ("true", "1", "yes")


# User data directory (catalog rows, schedules, feedback reports)
USER_DATA_DIR = get_user_data_dir()

CATALOG_FILE = USER_DATA_DIR / "catalog.json"
SCHEDULES_FILE = USER_DATA_DIR / "schedules.json"
FEEDBACK_FILE = USER_DATA_DIR / "feedback.json"

# Detection policy defaults (see detection/policy.py)
GENDER_CONFIDENCE_THRESHOLD = _get_float("GENDER_CONFIDENCE_THRESHOLD", 0.8)
NSFW_CONFIDENCE_THRESHOLD = _get_float("NSFW_CONFIDENCE_THRESHOLD", 0.5)
CONTENT_DENSITY_THRESHOLD = _get_float("CONTENT_DENSITY_THRESHOLD", 0.4)  # 40% triggers full-screen blur
BLUR_MALES = _get_bool("BLUR_MALES", False)
BLUR_FEMALES = _get_bool("BLUR_FEMALES", True)
MIN_SITE_CONFIDENCE = _get_float("MIN_SITE_CONFIDENCE", 0.5)
FULL_SCREEN_WARNING_ENABLED = _get_bool("FULL_SCREEN_WARNING_ENABLED", True)
ENABLE_SITE_BLOCKING = _get_bool("ENABLE_SITE_BLOCKING", True)

# Reflection countdown (seconds)
MANDATORY_REFLECTION_TIME = _get_int("MANDATORY_REFLECTION_TIME", 15)
MIN_REFLECTION_SECONDS = _get_int("MIN_REFLECTION_SECONDS", 5)
MAX_REFLECTION_SECONDS = _get_int("MAX_REFLECTION_SECONDS", 30)
TICK_INTERVAL_SECONDS = _get_float("TICK_INTERVAL_SECONDS", 1.0)

# Hit counters are batched and written back on this interval
HIT_FLUSH_INTERVAL_SECONDS = _get_float("HIT_FLUSH_INTERVAL_SECONDS", 30.0)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
