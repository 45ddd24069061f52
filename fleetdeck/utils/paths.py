"""File path resolution using platformdirs.

Paths use platform-appropriate per-user directories:
  macOS: ~/Library/Application Support/fleetdeck/
  Linux: ~/.local/share/fleetdeck/
  Windows: %LOCALAPPDATA%/fleetdeck/

FLEETDECK_DATA_DIR overrides the data directory (containers, CI).
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "fleetdeck"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, encryption key)."""
    override = os.environ.get("FLEETDECK_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_log_dir() -> Path:
    """Return the directory for application log files."""
    return Path(platformdirs.user_log_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "fleetdeck.db"


def ensure_dirs_exist() -> None:
    """Create the data and log directories if they don't exist."""
    for d in [get_data_dir(), get_log_dir()]:
        d.mkdir(parents=True, exist_ok=True)
