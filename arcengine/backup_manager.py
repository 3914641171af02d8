"""
arcengine/backup_manager.py -- Archive Builder for the ARC catalog

Packs the serialized catalog and every file of the working directory into a
single ZIP archive, optionally split into a fixed number of parts.

Archive layout:
    _database/arc_database.json   (the catalog snapshot, written first)
    2024/05/17/photo.jpg          (working-directory files at their
    _cache/thumbs/photo_thumb.jpg  relative POSIX paths)
    ...

The archive is written to a temporary file next to the destination and
moved into place only once it is complete, so a failed backup never leaves
a truncated archive at ``output_path``.

Only one backup or restore may run against a given working directory at a
time (``operation_lock``).

Usage:
    from arcengine.backup_manager import ArchiveBuilder

    builder = ArchiveBuilder(config)
    result = builder.create_backup(
        "/backups/arc_backup.zip", config.working_dir, part_count=4,
        serialized_store=store.export_json(),
    )
    result["manifest"].part_files   # ['arc_backup.arc.part01', ...]

Dependencies: zipfile (DEFLATE level 9), pydantic for the manifest model.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from arcengine.config import DATABASE_ENTRY_DIR, DATABASE_ENTRY_NAME, CatalogConfig
from arcengine.errors import BackupError, DirectoryUnavailableError, OperationInProgressError
from arcengine.parts import MAX_PARTS, split_file
from arcengine.progress import ProgressSink, progress_event, publish
from arcengine.utils import now_utc, safe_write_json

logger = logging.getLogger(__name__)

DATABASE_ENTRY = f"{DATABASE_ENTRY_DIR}/{DATABASE_ENTRY_NAME}"

# zipfile switches to ZIP64 headers on its own only when it knows the size
# up front; streamed entries at or above this size must request it.
_ZIP64_THRESHOLD = (1 << 31) - 1


# ---------------------------------------------------------------------------
# Single-operation lock
# ---------------------------------------------------------------------------

_active_dirs: set[str] = set()
_active_lock = threading.Lock()


@contextmanager
def operation_lock(directory) -> Iterator[None]:
    """Hold the process-wide backup/restore lock for *directory*.

    Raises
    ------
    OperationInProgressError
        If another backup or restore already holds it.
    """
    key = os.path.normcase(os.path.abspath(os.path.realpath(str(directory))))
    with _active_lock:
        if key in _active_dirs:
            raise OperationInProgressError(
                "A backup or restore is already running for this folder. "
                "Please wait for it to finish and try again."
            )
        _active_dirs.add(key)
    try:
        yield
    finally:
        with _active_lock:
            _active_dirs.discard(key)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

class BackupManifest(BaseModel):
    """Summary of a finished backup.  Serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = "1.0"
    date: datetime = Field(default_factory=now_utc)
    working_dir: str
    total_size: int
    files_count: int
    parts: int
    archive_name: str
    part_files: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# ArchiveBuilder
# ---------------------------------------------------------------------------

class ArchiveBuilder:
    """Builds backup archives of a working directory plus catalog snapshot.

    Parameters
    ----------
    config : CatalogConfig
        Supplies ``chunk_size`` for streaming file contents.
    """

    def __init__(self, config: CatalogConfig):
        self.config = config
        self.chunk_size = config.chunk_size

    def create_backup(
        self,
        output_path,
        working_dir,
        part_count: int,
        serialized_store: Union[str, dict],
        progress: Optional[ProgressSink] = None,
    ) -> dict:
        """Write a backup archive of *working_dir* to *output_path*.

        Parameters
        ----------
        output_path : str or pathlib.Path
            Destination ``.zip``.  With ``part_count > 1`` this file is
            replaced by ``<base>.arc.part01`` .. ``<base>.arc.partNN``.
        working_dir : str or pathlib.Path
            Directory whose files are archived.
        part_count : int
            1 for a single archive, up to 99 parts.
        serialized_store : str or dict
            Catalog snapshot (``EntityStore.export_snapshot`` or its JSON).
        progress : callable, optional
            Receives ``{percent, processedBytes, totalBytes}`` after every
            chunk.  Best-effort.

        Returns
        -------
        dict
            ``{"size", "file_count", "duration", "manifest", "paths"}`` where
            ``size`` is the archive size in bytes and ``manifest`` is a
            ``BackupManifest``.

        Raises
        ------
        ValueError
            If *part_count* is out of range.
        DirectoryUnavailableError
            If *working_dir* is not an accessible directory.
        OperationInProgressError
            If a backup or restore is already running for *working_dir*.
        BackupError
            If the archive cannot be written.  No partial archive is left.
        """
        if not 1 <= part_count <= MAX_PARTS:
            raise ValueError(f"part_count must be between 1 and {MAX_PARTS}, got {part_count}")

        working_dir = Path(working_dir)
        output_path = Path(output_path)
        if not working_dir.is_dir() or not os.access(str(working_dir), os.R_OK | os.X_OK):
            raise DirectoryUnavailableError(
                f"The working folder could not be opened: {working_dir}\n"
                f"It may have been moved, renamed or disconnected."
            )

        if not isinstance(serialized_store, str):
            serialized_store = json.dumps(serialized_store, ensure_ascii=False)

        with operation_lock(working_dir):
            return self._build(output_path, working_dir, part_count, serialized_store, progress)

    def _build(self, output_path: Path, working_dir: Path, part_count: int,
               serialized_store: str, progress: Optional[ProgressSink]) -> dict:
        started = time.monotonic()
        try:
            os.makedirs(str(output_path.parent), exist_ok=True)
        except OSError as exc:
            raise BackupError(
                f"Could not create the backup folder {output_path.parent}. "
                f"Technical detail: {exc}"
            ) from exc

        files = self._collect_files(working_dir, exclude={output_path})
        total_bytes = sum(size for _, _, size in files)
        logger.info(
            "Backing up %d file(s), %.1f MB from %s",
            len(files), total_bytes / 1024 / 1024, working_dir,
        )

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                suffix=".zip", prefix=".arc_backup_tmp_", dir=str(output_path.parent)
            )
            os.close(fd)

            with zipfile.ZipFile(tmp_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                zf.writestr(DATABASE_ENTRY, serialized_store)
                logger.debug("Catalog snapshot written to %s", DATABASE_ENTRY)

                processed = 0
                publish(progress, progress_event(processed, total_bytes))
                for abs_path, arcname, size in files:
                    processed = self._add_file(zf, abs_path, arcname, size, processed, total_bytes, progress)

            os.replace(tmp_path, str(output_path))
            tmp_path = None
        except OSError as exc:
            raise BackupError(
                f"Could not create the backup. There may be a disk space or "
                f"permissions issue. Technical detail: {exc}"
            ) from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.warning("Could not remove temporary archive %s", tmp_path, exc_info=True)

        archive_size = output_path.stat().st_size
        logger.info("Archive created: %s (%.1f MB)", output_path, archive_size / 1024 / 1024)

        paths = [output_path]
        if part_count > 1:
            try:
                paths = split_file(output_path, part_count, chunk_size=self.chunk_size)
            except OSError as exc:
                raise BackupError(
                    f"The backup was created but could not be split into "
                    f"{part_count} parts. The single archive was kept at "
                    f"{output_path}. Technical detail: {exc}"
                ) from exc

        part_files = [p.name for p in paths]
        manifest = BackupManifest(
            working_dir=str(working_dir),
            total_size=archive_size,
            files_count=len(files),
            parts=part_count,
            archive_name=part_files[0],
            part_files=part_files,
        )
        duration = time.monotonic() - started
        logger.info("Backup finished in %.1f s (%d part(s))", duration, part_count)

        return {
            "size": archive_size,
            "file_count": len(files),
            "duration": duration,
            "manifest": manifest,
            "paths": paths,
        }

    def _add_file(self, zf: zipfile.ZipFile, abs_path: Path, arcname: str, size: int,
                  processed: int, total_bytes: int, progress: Optional[ProgressSink]) -> int:
        """Stream one file into the archive.  Returns the new processed total."""
        with open(abs_path, "rb") as src, \
                zf.open(arcname, "w", force_zip64=size >= _ZIP64_THRESHOLD) as dst:
            while True:
                chunk = src.read(self.chunk_size)
                if not chunk:
                    break
                dst.write(chunk)
                processed += len(chunk)
                publish(progress, progress_event(processed, total_bytes))
        logger.debug("Added %s (%d bytes)", arcname, size)
        return processed

    @staticmethod
    def _collect_files(working_dir: Path, exclude: set[Path]) -> list[tuple[Path, str, int]]:
        """Return ``(absolute path, archive name, size)`` for every file, sorted.

        Temporary archives being written and the destination itself are
        skipped when the backup is written inside the working directory.
        """
        excluded = {os.path.abspath(str(p)) for p in exclude}
        files: list[tuple[Path, str, int]] = []
        for dirpath, dirnames, filenames in os.walk(str(working_dir)):
            dirnames.sort()
            for fname in sorted(filenames):
                abs_path = Path(dirpath) / fname
                if os.path.abspath(str(abs_path)) in excluded or fname.startswith(".arc_backup_tmp_"):
                    continue
                if not abs_path.is_file():
                    continue
                arcname = abs_path.relative_to(working_dir).as_posix()
                files.append((abs_path, arcname, abs_path.stat().st_size))
        return files


def write_manifest(manifest: BackupManifest, path) -> None:
    """Save *manifest* as JSON (camelCase keys) next to the backup."""
    safe_write_json(path, manifest.to_json_dict())
