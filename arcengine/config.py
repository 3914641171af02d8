"""
arcengine/config.py -- Explicit catalog configuration.

A single immutable ``CatalogConfig`` is built once by the host (see
``arcapp.paths.load_config``) and handed to every component that needs
filesystem locations.  Nothing in the engine reads process-wide mutable
settings.

Usage::

    from arcengine.config import CatalogConfig

    config = CatalogConfig(
        working_dir="/media/arc",
        database_path="/home/me/.local/share/ARC/catalog.db",
    )
    store = EntityStore(config)
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Name of the catalog metadata entry inside every backup archive.
DATABASE_ENTRY_DIR = "_database"
DATABASE_ENTRY_NAME = "arc_database.json"

# Thumbnails live under <working_dir>/_cache/thumbs/<stem>_thumb.jpg
THUMBNAIL_DIR = ("_cache", "thumbs")

DEFAULT_CHUNK_SIZE = 1024 * 1024


class CatalogConfig(BaseModel):
    """Filesystem locations and tunables shared by the engine components."""

    model_config = ConfigDict(frozen=True)

    working_dir: Path
    database_path: Path
    temp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)

    @field_validator("working_dir", "database_path", "temp_dir", mode="after")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def thumbnail_dir(self) -> Path:
        return self.working_dir.joinpath(*THUMBNAIL_DIR)

    def with_working_dir(self, working_dir) -> "CatalogConfig":
        """Return a copy pointing at a different working directory."""
        return self.model_copy(update={"working_dir": Path(working_dir).expanduser()})
