import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from watchstreak import config

logger = logging.getLogger(__name__)

# Load .env file if it exists
load_dotenv()

APP_HOME = Path(os.environ.get("WATCHSTREAK_HOME", "~/.watchstreak")).expanduser()
DEFAULT_SETTINGS_PATH = APP_HOME / "settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "player_executable": "mpv",
    "storage_path": str(APP_HOME / "progress.json"),
    "user_scope": "local",
    "session_source": "desktop",
    "default_playback_rate": 1.0,
    "default_volume": 1.0,
    "tick_interval_seconds": config.TICK_INTERVAL_SECONDS,
    "aggregate_debounce_seconds": config.AGGREGATE_DEBOUNCE_SECONDS,
    "log_level": "INFO",
}


def load_settings(settings_path: Path = DEFAULT_SETTINGS_PATH) -> Dict[str, Any]:
    """Loads application settings from a JSON file, filling in defaults."""
    settings = dict(DEFAULT_SETTINGS)
    if not settings_path.exists():
        return settings

    try:
        with open(settings_path, 'r', encoding='utf-8') as f:
            stored = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not read settings from %s, using defaults: %s", settings_path, e)
        return settings

    if isinstance(stored, dict):
        settings.update(stored)
    return settings


def save_settings(settings: Dict[str, Any], settings_path: Path = DEFAULT_SETTINGS_PATH) -> None:
    """Saves application settings to a JSON file."""
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    with open(settings_path, 'w', encoding='utf-8') as f:
        json.dump(settings, f, indent=4)
