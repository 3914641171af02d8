"""
arcengine/models/validators.py -- Reference helpers and snapshot validation.

Two kinds of checks live here:

    - Reference helpers used by the Integrity Validator and Repairer to
      split an id list into the part that resolves and the part that
      dangles.
    - JSON Schema validation of a serialized catalog snapshot (the payload
      stored as ``_database/arc_database.json`` inside backups).  This is a
      structural gate run before a snapshot is imported; record-level
      validation is left to the pydantic models.

Usage::

    from arcengine.models.validators import validate_snapshot

    errors = validate_snapshot(payload)
    if errors:
        ...
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import jsonschema

from arcengine.errors import SnapshotValidationError

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Reference helpers
# ------------------------------------------------------------------

def resolving_ids(ids: Iterable[str], known: set[str] | dict) -> list[str]:
    """Return the ids from *ids* that exist in *known*, order preserved."""
    return [i for i in ids if i in known]


def dangling_ids(ids: Iterable[str], known: set[str] | dict) -> list[str]:
    """Return the ids from *ids* that do NOT exist in *known*."""
    return [i for i in ids if i not in known]


# ------------------------------------------------------------------
# Snapshot schema
# ------------------------------------------------------------------

def _record_array(required: list[str], id_lists: tuple[str, ...] = ()) -> dict:
    props: dict[str, Any] = {"id": {"type": "string", "minLength": 1}}
    for field in id_lists:
        props[field] = {"type": "array", "items": {"type": "string"}}
    return {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["id", *required],
            "properties": props,
        },
    }


SNAPSHOT_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "ARC catalog snapshot",
    "type": "object",
    "properties": {
        "cards": _record_array(["fileName", "filePath", "type"], ("tags", "collections")),
        "tags": _record_array(["name", "categoryId"]),
        "categories": _record_array(["name"], ("tagIds",)),
        "collections": _record_array(["name"], ("cardIds",)),
        "moodboard": _record_array([], ("cardIds",)),
        "thumbnailCache": {
            "type": "array",
            "items": {"type": "object", "required": ["cardId"]},
        },
        "exportDate": {"type": "string"},
        "version": {"type": "string"},
    },
}


def _friendly_error(error: jsonschema.ValidationError) -> str:
    """Convert a ``jsonschema.ValidationError`` into plain English."""
    path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
    msg = error.message
    if error.validator == "required":
        return f"Missing required field at {path}: {msg}"
    if error.validator == "type":
        return f"Wrong data type at '{path}': {msg}"
    return f"Issue at '{path}': {msg}"


def validate_snapshot(snapshot: Any) -> list[str]:
    """Validate a catalog snapshot's structure.

    Parameters
    ----------
    snapshot : object
        Parsed JSON payload.

    Returns
    -------
    list[str]
        Human-readable problems; empty when the snapshot is usable.
    """
    validator = jsonschema.Draft202012Validator(SNAPSHOT_SCHEMA)
    return [_friendly_error(e) for e in validator.iter_errors(snapshot)]


def ensure_valid_snapshot(snapshot: Any) -> None:
    """Raise ``SnapshotValidationError`` if *snapshot* is malformed."""
    errors = validate_snapshot(snapshot)
    if errors:
        shown = "\n".join(f"  - {e}" for e in errors[:10])
        more = f"\n  ... and {len(errors) - 10} more" if len(errors) > 10 else ""
        logger.warning("Snapshot failed validation with %d error(s)", len(errors))
        raise SnapshotValidationError(
            "The catalog data in this backup is damaged or was written by an "
            f"incompatible program and cannot be imported.\n{shown}{more}"
        )
