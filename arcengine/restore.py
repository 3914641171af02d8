"""
arcengine/restore.py -- Restore Coordinator for ARC backups

Turns a backup archive (single ``.zip`` or any ``.arc.partNN`` of a split
backup) back into a working directory plus a catalog snapshot.

Steps:
    1. Merge parts into a temporary archive when given a part file.
    2. Extract into a fresh ``arc_restore_*`` temporary directory.
    3. Read and validate ``_database/arc_database.json`` (optional).
    4. Copy everything except ``_database/`` into the target directory,
       overwriting existing files.
    5. Remove the extraction directory and any merged archive.

The coordinator never touches the live catalog.  Callers apply the
returned snapshot with ``EntityStore.import_snapshot``.

Usage:
    from arcengine.restore import RestoreCoordinator

    result = RestoreCoordinator(config).restore_backup(
        "/backups/arc_backup.arc.part01", "/media/arc",
    )
    if result.serialized_store is not None:
        store.import_snapshot(result.serialized_store, new_working_dir="/media/arc")
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from pydantic import BaseModel

from arcengine.backup_manager import DATABASE_ENTRY, operation_lock
from arcengine.config import DATABASE_ENTRY_DIR, CatalogConfig
from arcengine.errors import ArchiveFormatError
from arcengine.models.validators import ensure_valid_snapshot
from arcengine.parts import is_part_file, merge_parts
from arcengine.progress import ProgressSink, progress_event, publish
from arcengine.utils import remove_quietly

logger = logging.getLogger(__name__)


class RestoreResult(BaseModel):
    success: bool
    serialized_store: Optional[dict[str, Any]] = None
    files_restored: int = 0


def _check_member(name: str) -> None:
    """Reject archive members that would land outside the extraction dir."""
    normalized = name.replace("\\", "/")
    pure = PurePosixPath(normalized)
    if pure.is_absolute() or ".." in pure.parts or (len(normalized) > 1 and normalized[1] == ":"):
        raise ArchiveFormatError(
            f"This backup contains an unsafe file path ('{name}') and was not "
            f"restored. The archive may have been tampered with."
        )


def _parse_snapshot(raw: bytes) -> dict:
    try:
        snapshot = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ArchiveFormatError(
            f"The catalog data inside this backup is damaged and could not be "
            f"read. Technical detail: {exc}"
        ) from exc
    ensure_valid_snapshot(snapshot)
    return snapshot


def inspect_archive(path) -> dict:
    """Summarize a backup without extracting it.

    Returns
    -------
    dict
        ``{"entries", "has_database", "uncompressed_size"}``.

    Raises
    ------
    ArchiveFormatError
        If *path* is not a readable ZIP archive.
    """
    try:
        with zipfile.ZipFile(str(path), "r") as zf:
            infos = [i for i in zf.infolist() if not i.is_dir()]
    except (zipfile.BadZipFile, OSError) as exc:
        raise ArchiveFormatError(
            f"The file at '{path}' is not a valid backup archive. "
            f"Technical detail: {exc}"
        ) from exc
    return {
        "entries": len(infos),
        "has_database": any(i.filename == DATABASE_ENTRY for i in infos),
        "uncompressed_size": sum(i.file_size for i in infos),
    }


class RestoreCoordinator:
    """Restores backup archives into a working directory.

    Parameters
    ----------
    config : CatalogConfig
        ``temp_dir`` receives merged archives and extraction directories.
    """

    def __init__(self, config: CatalogConfig):
        self.config = config

    def restore_backup(self, archive_path, target_dir,
                       progress: Optional[ProgressSink] = None) -> RestoreResult:
        """Restore *archive_path* into *target_dir*.

        Parameters
        ----------
        archive_path : str or pathlib.Path
            A ``.zip`` backup or any part of a split backup.
        target_dir : str or pathlib.Path
            Created if missing.  Existing files with the same relative path
            are overwritten; other files are left alone.
        progress : callable, optional
            Receives ``{percent, processedBytes, totalBytes}`` while files
            are extracted.

        Returns
        -------
        RestoreResult
            ``serialized_store`` is ``None`` when the archive carries no
            catalog data.

        Raises
        ------
        ArchiveFormatError
            Corrupt archive, unsafe member path or damaged catalog data.
        IncompletePartsError
            A part of a split backup is missing.
        OperationInProgressError
            A backup or restore is already running for *target_dir*.
        """
        archive_path = Path(archive_path)
        target_dir = Path(target_dir)
        temp_root = Path(self.config.temp_dir)

        with operation_lock(target_dir):
            merged: Optional[Path] = None
            extract_dir: Optional[str] = None
            try:
                zip_path = archive_path
                if is_part_file(archive_path):
                    logger.info("Merging backup parts starting at %s", archive_path.name)
                    fd, tmp_name = tempfile.mkstemp(suffix="_merged.zip", prefix="arc_", dir=str(temp_root))
                    os.close(fd)
                    merged = Path(tmp_name)
                    zip_path = merge_parts(archive_path, output_path=str(merged),
                                           chunk_size=self.config.chunk_size)

                extract_dir = tempfile.mkdtemp(prefix="arc_restore_", dir=str(temp_root))
                snapshot_raw = self._extract(zip_path, Path(extract_dir), progress)

                snapshot = None
                if snapshot_raw is None:
                    logger.info("Backup has no catalog data; restoring files only")
                else:
                    snapshot = _parse_snapshot(snapshot_raw)

                os.makedirs(str(target_dir), exist_ok=True)
                copied = self._copy_tree(Path(extract_dir), target_dir)
                logger.info("Restore complete: %d file(s) copied to %s", copied, target_dir)
                return RestoreResult(success=True, serialized_store=snapshot, files_restored=copied)
            finally:
                if extract_dir is not None:
                    shutil.rmtree(extract_dir, ignore_errors=True)
                if merged is not None:
                    remove_quietly(merged)

    def _extract(self, zip_path: Path, dest: Path,
                 progress: Optional[ProgressSink]) -> Optional[bytes]:
        """Extract every member of *zip_path* into *dest*.

        Returns the raw catalog entry, or ``None`` when it is absent.
        """
        try:
            with zipfile.ZipFile(str(zip_path), "r") as zf:
                infos = zf.infolist()
                for info in infos:
                    _check_member(info.filename)

                total = sum(i.file_size for i in infos)
                processed = 0
                for info in infos:
                    zf.extract(info, str(dest))
                    processed += info.file_size
                    publish(progress, progress_event(processed, total))

                try:
                    return zf.read(DATABASE_ENTRY)
                except KeyError:
                    return None
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ArchiveFormatError(
                f"The backup file '{zip_path.name}' is damaged and could not be "
                f"opened. Technical detail: {exc}"
            ) from exc

    @staticmethod
    def _copy_tree(src: Path, dest: Path, top_level: bool = True) -> int:
        """Copy *src* into *dest*, skipping the top-level ``_database`` folder."""
        copied = 0
        for entry in os.scandir(str(src)):
            if top_level and entry.name == DATABASE_ENTRY_DIR and entry.is_dir():
                continue
            target = dest / entry.name
            if entry.is_dir():
                os.makedirs(str(target), exist_ok=True)
                copied += RestoreCoordinator._copy_tree(Path(entry.path), target, top_level=False)
            elif entry.is_file():
                shutil.copy2(entry.path, str(target))
                copied += 1
        return copied
