"""
arcengine/parts.py -- Part Splitter / Merger for backup archives

Large backups can be split into a fixed number of parts so they fit on
removable media or file-sharing limits.  Parts are plain byte ranges of the
archive named ``<base>.arc.part01``, ``<base>.arc.part02`` ... where
``<base>`` is the archive path without its ``.zip`` / ``.arc`` extension.

Concatenating the parts in index order reproduces the archive byte for byte.

Usage:
    from arcengine.parts import split_file, merge_parts

    parts = split_file("/backups/arc_backup.zip", 4)
    merged = merge_parts(parts[0])        # -> /backups/arc_backup_merged.zip
"""

from __future__ import annotations

import logging
import math
import os
import re
from pathlib import Path
from typing import Optional

from arcengine.config import DEFAULT_CHUNK_SIZE
from arcengine.errors import IncompletePartsError

logger = logging.getLogger(__name__)

MAX_PARTS = 99

_PART_SUFFIX_RE = re.compile(r"\.arc\.part(\d+)$")
_ARCHIVE_EXT_RE = re.compile(r"\.(zip|arc)$", re.IGNORECASE)


def is_part_file(path) -> bool:
    """True if *path* is named like ``<base>.arc.partNN``."""
    return _PART_SUFFIX_RE.search(str(path)) is not None


def part_base(path) -> str:
    """Return ``<base>`` for a part file or an archive path."""
    text = str(path)
    stripped = _PART_SUFFIX_RE.sub("", text)
    if stripped != text:
        return stripped
    return _ARCHIVE_EXT_RE.sub("", text)


def part_name(base: str, index: int) -> str:
    """Return the file name of part *index* (1-based)."""
    return f"{base}.arc.part{index:02d}"


def _copy_range(src, dst, length: int, chunk_size: int) -> None:
    remaining = length
    while remaining > 0:
        chunk = src.read(min(chunk_size, remaining))
        if not chunk:
            break
        dst.write(chunk)
        remaining -= len(chunk)


def split_file(path, part_count: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Path]:
    """Split *path* into *part_count* contiguous parts and delete the original.

    Parameters
    ----------
    path : str or pathlib.Path
        The archive to split.
    part_count : int
        Number of parts, 1-99.  Each part is ``ceil(size / part_count)``
        bytes except the last, which holds the remainder.

    Returns
    -------
    list[pathlib.Path]
        Part paths in index order.

    Raises
    ------
    ValueError
        If *part_count* is out of range.
    OSError
        If reading or writing fails.  Parts already written are removed
        and the original archive is kept.
    """
    if not 1 <= part_count <= MAX_PARTS:
        raise ValueError(f"part_count must be between 1 and {MAX_PARTS}, got {part_count}")

    src_path = Path(path)
    total_size = src_path.stat().st_size
    part_size = math.ceil(total_size / part_count)
    base = part_base(src_path)

    written: list[Path] = []
    try:
        with open(src_path, "rb") as src:
            for index in range(1, part_count + 1):
                start = (index - 1) * part_size
                length = max(0, min(part_size, total_size - start))
                target = Path(part_name(base, index))
                with open(target, "wb") as dst:
                    _copy_range(src, dst, length, chunk_size)
                written.append(target)
                logger.debug("Wrote %s (%d bytes)", target.name, length)
    except OSError:
        for target in written:
            try:
                target.unlink()
            except OSError:
                logger.warning("Could not remove partial part %s", target, exc_info=True)
        raise

    src_path.unlink()
    logger.info("Split %s into %d part(s) of up to %d bytes", src_path.name, part_count, part_size)
    return written


def find_parts(first_part) -> list[Path]:
    """Return every part belonging to the same archive, sorted by index.

    Raises
    ------
    IncompletePartsError
        If the indices are not exactly 01..NN.
    """
    first = Path(first_part)
    base_name = Path(part_base(first)).name
    directory = first.parent

    pattern = re.compile(re.escape(base_name) + r"\.arc\.part(\d+)$")
    found: dict[int, Path] = {}
    for entry in os.scandir(directory):
        match = pattern.match(entry.name)
        if match and entry.is_file():
            found[int(match.group(1))] = Path(entry.path)

    if not found:
        raise IncompletePartsError(
            f"No backup parts were found next to '{first}'. Make sure all "
            f"parts are in the same folder."
        )

    expected = list(range(1, max(found) + 1))
    missing = [i for i in expected if i not in found]
    if missing:
        names = ", ".join(f"part{i:02d}" for i in missing)
        raise IncompletePartsError(
            f"This backup is incomplete. The following parts are missing: "
            f"{names}. Copy every part into the same folder and try again."
        )
    return [found[i] for i in expected]


def merge_parts(first_part, output_path: Optional[str] = None,
                chunk_size: int = DEFAULT_CHUNK_SIZE) -> Path:
    """Concatenate all parts of an archive into a single file.

    Parameters
    ----------
    first_part : str or pathlib.Path
        Path to any part of the archive (normally ``.arc.part01``).
    output_path : str, optional
        Destination; defaults to ``<base>_merged.zip``.  The parts are kept.

    Returns
    -------
    pathlib.Path
        The merged archive.
    """
    parts = find_parts(first_part)
    target = Path(output_path) if output_path else Path(f"{part_base(first_part)}_merged.zip")

    try:
        with open(target, "wb") as dst:
            for part in parts:
                with open(part, "rb") as src:
                    while True:
                        chunk = src.read(chunk_size)
                        if not chunk:
                            break
                        dst.write(chunk)
    except OSError:
        try:
            target.unlink()
        except OSError:
            pass
        raise

    logger.info("Merged %d part(s) into %s", len(parts), target)
    return target
