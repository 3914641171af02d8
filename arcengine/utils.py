"""
Shared utility functions for the ARC catalog engine.

All JSON writes use atomic temp-file-then-os.replace() to prevent
data corruption from crashes or concurrent access.
"""

import json
import logging
import os
import secrets
import tempfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Time and identifiers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return now_utc().isoformat()


def generate_id(prefix: str = "") -> str:
    """Generate a random record identifier.

    The identifier is a 16-character hex token, optionally prefixed
    (``"card-3f9a..."``) so ids stay readable in logs and archives.
    """
    token = secrets.token_hex(8)
    return f"{prefix}-{token}" if prefix else token


# ---------------------------------------------------------------------------
# JSON I/O (atomic writes)
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Read a JSON file, returning *default* if the file is missing or corrupt.

    Parameters
    ----------
    path : str or pathlib.Path
        Absolute path to the JSON file.
    default
        Value returned when the file cannot be read (default ``None``).

    Returns
    -------
    object
        Parsed JSON content, or *default* on failure.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


def safe_write_json(path, data, *, indent=2):
    """Atomically write *data* as JSON to *path*.

    Uses a temporary file in the same directory followed by
    ``os.replace()`` so that readers never see a partially-written file.
    Parent directories are created if they do not exist.
    """
    path = str(path)
    parent = os.path.dirname(path)
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def remove_quietly(path) -> bool:
    """Delete *path* if it exists.  Returns True when a file was removed.

    Failures are logged rather than raised; used for best-effort cleanup
    of temporary artifacts.
    """
    try:
        os.remove(str(path))
        return True
    except FileNotFoundError:
        return False
    except OSError:
        logger.warning("Could not remove %s", path, exc_info=True)
        return False
