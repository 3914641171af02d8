"""
arcapp/paths.py -- Default locations and settings for the ARC application.

Uses platformdirs for the per-user data directory, where the catalog
database and ``settings.json`` live.  The working directory (where media
files are stored) is chosen by the user and remembered in the settings
file under ``workingDirectory``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir, user_pictures_dir

from arcengine.config import CatalogConfig
from arcengine.utils import safe_read_json, safe_write_json

_APP_NAME = "ARC"
_APP_AUTHOR = "ARC"

SETTINGS_FILE = "settings.json"
DATABASE_FILE = "arc_catalog.db"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    path = user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def get_settings_path() -> str:
    return os.path.join(get_user_data_dir(), SETTINGS_FILE)


def get_default_working_dir() -> str:
    """``<Pictures>/ARC``, used until the user picks a folder."""
    return os.path.join(user_pictures_dir(), _APP_NAME)


def load_settings() -> dict:
    """Read ``settings.json``; a missing or corrupt file yields ``{}``."""
    data = safe_read_json(get_settings_path(), default={})
    return data if isinstance(data, dict) else {}


def save_settings(settings: dict) -> None:
    safe_write_json(get_settings_path(), settings)


def remember_working_dir(working_dir) -> None:
    """Store *working_dir* as the user's chosen media folder."""
    settings = load_settings()
    settings["workingDirectory"] = str(Path(working_dir).expanduser())
    save_settings(settings)


def load_config(working_dir: Optional[str] = None,
                database_path: Optional[str] = None) -> CatalogConfig:
    """Build the CatalogConfig for this run.

    Explicit arguments (from the command line) win over the settings file,
    which wins over the defaults.
    """
    settings = load_settings()
    working = working_dir or settings.get("workingDirectory") or get_default_working_dir()
    database = (
        database_path
        or settings.get("databasePath")
        or os.path.join(get_user_data_dir(), DATABASE_FILE)
    )
    return CatalogConfig(working_dir=working, database_path=database)
