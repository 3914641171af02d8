"""
arcengine/entity_store.py -- Entity Store & Cascade Mutator for the ARC catalog

Owns the canonical catalog records in a local SQLite database (one keyed
table per entity kind, each row holding the record's JSON document).  Every
other component reads transient copies through this class and writes
through its typed operations.

Cascade rules (who strips what when a record disappears):

    delete_card        -> Collection.card_ids, Moodboard.card_ids, preview cache
    delete_tag         -> Card.tags
    delete_category    -> every Tag in Category.tag_ids (via delete_tag)
    delete_collection  -> Card.collections

``Tag.card_count`` is eventually consistent: it is incremented when a card
is added, adjusted when a card's tags are edited, and is NOT decremented
when a card is deleted.  ``recalculate_tag_counts()`` and the Integrity
Repairer bring it back in line.

Each cascade runs as an ordered list of sub-steps inside one SQLite
transaction.  Writes that bypass the cascades (``remove_record``) or a
crash between transactions can still leave dangling references; that is
what ``arcengine.integrity`` detects and heals.

Usage:
    from arcengine.entity_store import EntityStore

    store = EntityStore(config)
    tag_id = store.create(Tag(id="tag-1", name="Minimal", category_id="cat-1"))
    store.update(EntityKind.CARD, "card-1", {"tags": ["tag-1"]})
    store.delete(EntityKind.CATEGORY, "cat-1")
    snapshot = store.export_snapshot()
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from arcengine.config import CatalogConfig
from arcengine.errors import DuplicateEntityError, EntityNotFoundError, SnapshotValidationError
from arcengine.models.entities import (
    MOODBOARD_ID,
    Card,
    CatalogRecord,
    Category,
    Collection,
    EntityKind,
    Moodboard,
    Tag,
    ThumbnailCacheEntry,
    kind_of,
    model_for,
)
from arcengine.models.validators import ensure_valid_snapshot
from arcengine.utils import now_iso, now_utc, remove_quietly

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"

_THUMBNAIL_TABLE = "thumbnail_cache"

# Card files are laid out as <working_dir>/YYYY/MM/DD/<file>; previews as
# <working_dir>/_cache/thumbs/<stem>_thumb.jpg.  Used to rebase paths when a
# snapshot is imported into a different working directory.
_DATED_PATH_RE = re.compile(r"(\d{4}[\\/]\d{2}[\\/]\d{2}[\\/].+)$")
_THUMB_PATH_RE = re.compile(r"(_cache[\\/]thumbs[\\/].+)$")

RecordFilter = Union[Callable[[CatalogRecord], bool], dict, None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalize_changes(model: type[CatalogRecord], changes: dict) -> dict:
    """Map camelCase or snake_case keys in *changes* to field names.

    Keys that match no field are kept as-is (stored as extra data).  The
    ``id`` key is dropped: records cannot be re-keyed through an update.
    """
    by_alias = {
        (info.alias or to_camel(name)): name
        for name, info in model.model_fields.items()
    }
    normalized: dict[str, Any] = {}
    for key, value in changes.items():
        name = key if key in model.model_fields else by_alias.get(key, key)
        if name == "id":
            continue
        normalized[name] = value
    return normalized


def _merge(entity: CatalogRecord, changes: dict) -> CatalogRecord:
    """Return a validated copy of *entity* with *changes* applied."""
    model = type(entity)
    data = entity.model_dump()
    data.update(_normalize_changes(model, changes))
    return model.model_validate(data)


def _matches(entity: CatalogRecord, criteria: dict) -> bool:
    normalized = _normalize_changes(type(entity), criteria)
    for name, expected in normalized.items():
        if getattr(entity, name, None) != expected:
            return False
    if "id" in criteria and entity.id != criteria["id"]:
        return False
    return True


def _rebase(path: Optional[str], pattern: re.Pattern, new_root: str) -> Optional[str]:
    """Re-anchor the tail of *path* matched by *pattern* under *new_root*."""
    if not path or path.startswith("data:"):
        return path
    match = pattern.search(path)
    if not match:
        return path
    parts = re.split(r"[\\/]", match.group(1))
    return os.path.join(new_root, *parts)


# ---------------------------------------------------------------------------
# EntityStore
# ---------------------------------------------------------------------------

class EntityStore:
    """Typed CRUD and cascade mutation over the five linked catalog tables.

    Parameters
    ----------
    config : CatalogConfig
        Supplies ``database_path`` (the SQLite file) and ``working_dir``
        (used when media files are deleted alongside their card).
    """

    def __init__(self, config: CatalogConfig):
        self.config = config
        self.db_path = Path(config.database_path)

        if str(self.db_path) != ":memory:":
            os.makedirs(str(self.db_path.parent), exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._tx_depth = 0
        self._init_schema()

    # ------------------------------------------------------------------
    # Schema / connection
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        """Create one keyed table per entity kind plus the preview cache."""
        statements = [
            f"CREATE TABLE IF NOT EXISTS {kind.value} ("
            "id TEXT PRIMARY KEY, data JSON NOT NULL)"
            for kind in EntityKind
        ]
        statements.append(
            f"CREATE TABLE IF NOT EXISTS {_THUMBNAIL_TABLE} ("
            "card_id TEXT PRIMARY KEY, data JSON NOT NULL)"
        )
        self._conn.executescript(";\n".join(statements) + ";")
        self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Group writes into one commit; nested uses join the outer one."""
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
            return

        self._tx_depth = 1
        try:
            yield
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            self._tx_depth = 0

    # ------------------------------------------------------------------
    # Row-level primitives (no cascades, no commits)
    # ------------------------------------------------------------------

    def _read(self, kind: EntityKind, entity_id: str) -> Optional[CatalogRecord]:
        row = self._conn.execute(
            f"SELECT data FROM {kind.value} WHERE id = ?", (entity_id,)
        ).fetchone()
        if row is None:
            return None
        return model_for(kind).model_validate(json.loads(row["data"]))

    def _read_all(self, kind: EntityKind) -> list:
        rows = self._conn.execute(
            f"SELECT data FROM {kind.value} ORDER BY rowid"
        ).fetchall()
        model = model_for(kind)
        return [model.model_validate(json.loads(r["data"])) for r in rows]

    def _ids(self, kind: EntityKind) -> set[str]:
        rows = self._conn.execute(f"SELECT id FROM {kind.value}").fetchall()
        return {r["id"] for r in rows}

    def _write(self, entity: CatalogRecord) -> None:
        """Insert or replace *entity*, keeping its original row order."""
        kind = kind_of(entity)
        self._conn.execute(
            f"INSERT INTO {kind.value} (id, data) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
            (entity.id, json.dumps(entity.to_json_dict(), ensure_ascii=False)),
        )

    def _insert(self, entity: CatalogRecord) -> None:
        kind = kind_of(entity)
        try:
            self._conn.execute(
                f"INSERT INTO {kind.value} (id, data) VALUES (?, ?)",
                (entity.id, json.dumps(entity.to_json_dict(), ensure_ascii=False)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateEntityError(
                f"Could not add the record: '{entity.id}' already exists in "
                f"{kind.value}. Technical detail: {exc}"
            ) from exc

    def _remove(self, kind: EntityKind, entity_id: str) -> int:
        cur = self._conn.execute(f"DELETE FROM {kind.value} WHERE id = ?", (entity_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Generic contract
    # ------------------------------------------------------------------

    def create(self, entity: CatalogRecord) -> str:
        """Add a new record of any kind and return its id.

        Cards, Tags and Collections go through their typed ``add_*``
        operation so that back-references are maintained.

        Raises
        ------
        DuplicateEntityError
            If a record with the same id already exists.
        """
        if isinstance(entity, Card):
            return self.add_card(entity)
        if isinstance(entity, Tag):
            return self.add_tag(entity)
        if isinstance(entity, Category):
            return self.add_category(entity)
        if isinstance(entity, Collection):
            return self.add_collection(entity)
        with self._transaction():
            self._insert(entity)
        return entity.id

    def get(self, kind: EntityKind | str, entity_id: str) -> Optional[CatalogRecord]:
        """Return the record, or ``None`` if it does not exist."""
        return self._read(EntityKind(kind), entity_id)

    def list(self, kind: EntityKind | str, filter: RecordFilter = None) -> list:
        """Return every record of *kind* in insertion order.

        *filter* is either a predicate or a dict of ``field -> value``
        pairs (snake_case or camelCase) that must all match.
        """
        records = self._read_all(EntityKind(kind))
        if filter is None:
            return records
        if callable(filter):
            return [r for r in records if filter(r)]
        return [r for r in records if _matches(r, filter)]

    def update(self, kind: EntityKind | str, entity_id: str, changes: dict) -> int:
        """Apply a partial update.  Returns 1 on success, 0 if absent."""
        kind = EntityKind(kind)
        if kind is EntityKind.CARD:
            return self.update_card(entity_id, changes)
        if kind is EntityKind.COLLECTION:
            return self.update_collection(entity_id, changes)

        with self._transaction():
            existing = self._read(kind, entity_id)
            if existing is None:
                logger.debug("update(%s, %s): no such record", kind.value, entity_id)
                return 0
            self._write(_merge(existing, changes))
        return 1

    def delete(self, kind: EntityKind | str, entity_id: str) -> None:
        """Delete a record, running the cascade for its kind."""
        kind = EntityKind(kind)
        if kind is EntityKind.CARD:
            self.delete_card(entity_id)
        elif kind is EntityKind.TAG:
            self.delete_tag(entity_id)
        elif kind is EntityKind.CATEGORY:
            self.delete_category(entity_id)
        elif kind is EntityKind.COLLECTION:
            self.delete_collection(entity_id)
        elif self._read(kind, entity_id) is not None:
            with self._transaction():
                self.clear_moodboard()
                self._remove(kind, entity_id)

    def remove_record(self, kind: EntityKind | str, entity_id: str) -> int:
        """Delete a single row WITHOUT any cascade.  Returns rows removed.

        Leaves back-references dangling; the Integrity Repairer is the
        only component expected to clean up after this.
        """
        with self._transaction():
            return self._remove(EntityKind(kind), entity_id)

    def count(self, kind: EntityKind | str) -> int:
        row = self._conn.execute(f"SELECT COUNT(*) AS n FROM {EntityKind(kind).value}").fetchone()
        return row["n"]

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def add_card(self, card: Card) -> str:
        """Add a card and register it with its tags, collections and the moodboard."""
        with self._transaction():
            self._insert(card)
            for tag_id in card.tags:
                tag = self._read(EntityKind.TAG, tag_id)
                if tag is not None:
                    tag.card_count += 1
                    self._write(tag)
            for coll_id in card.collections:
                coll = self._read(EntityKind.COLLECTION, coll_id)
                if coll is not None and card.id not in coll.card_ids:
                    coll.card_ids.append(card.id)
                    coll.date_modified = now_utc()
                    self._write(coll)
            if card.in_moodboard:
                self._moodboard_add(card.id)
        logger.debug("Added card %s (%s)", card.id, card.file_name)
        return card.id

    def get_card(self, card_id: str) -> Optional[Card]:
        return self._read(EntityKind.CARD, card_id)

    def update_card(self, card_id: str, changes: dict) -> int:
        """Update a card, keeping tag counters and memberships in step.

        - ``tags`` edits decrement removed tags and increment added ones.
        - ``collections`` edits add/remove the card in each collection.
        - ``in_moodboard`` edits add/remove the card in the moodboard.

        Returns 1 when the card was updated, 0 when it does not exist.
        """
        with self._transaction():
            existing = self._read(EntityKind.CARD, card_id)
            if existing is None:
                logger.debug("update_card: card %s not found", card_id)
                return 0
            updated = _merge(existing, changes)

            old_tags, new_tags = set(existing.tags), set(updated.tags)
            for tag_id in old_tags - new_tags:
                tag = self._read(EntityKind.TAG, tag_id)
                if tag is not None and tag.card_count > 0:
                    tag.card_count -= 1
                    self._write(tag)
            for tag_id in new_tags - old_tags:
                tag = self._read(EntityKind.TAG, tag_id)
                if tag is not None:
                    tag.card_count += 1
                    self._write(tag)

            old_colls, new_colls = set(existing.collections), set(updated.collections)
            for coll_id in old_colls - new_colls:
                coll = self._read(EntityKind.COLLECTION, coll_id)
                if coll is not None and card_id in coll.card_ids:
                    coll.card_ids = [c for c in coll.card_ids if c != card_id]
                    coll.date_modified = now_utc()
                    self._write(coll)
            for coll_id in new_colls - old_colls:
                coll = self._read(EntityKind.COLLECTION, coll_id)
                if coll is not None and card_id not in coll.card_ids:
                    coll.card_ids.append(card_id)
                    coll.date_modified = now_utc()
                    self._write(coll)

            if updated.in_moodboard != existing.in_moodboard:
                if updated.in_moodboard:
                    self._moodboard_add(card_id)
                else:
                    self._moodboard_remove(card_id)

            self._write(updated)
        return 1

    def update_card_collections(self, card_id: str, collection_ids: list[str]) -> int:
        """Replace the card's collection memberships (both sides)."""
        return self.update_card(card_id, {"collections": list(collection_ids)})

    def delete_card(self, card_id: str, delete_files: bool = False) -> None:
        """Delete a card and strip it from collections, moodboard and preview cache.

        Tag counters are left alone (see module docstring).

        Parameters
        ----------
        card_id : str
            The card to delete.  Unknown ids are ignored.
        delete_files : bool
            Also remove the media file and its on-disk thumbnail.  File
            removal is best-effort; failures are logged and the catalog
            record is deleted regardless.
        """
        card = self._read(EntityKind.CARD, card_id)
        if card is None:
            logger.debug("delete_card: card %s not found", card_id)
            return

        with self._transaction():
            self._remove(EntityKind.CARD, card_id)

            for coll in self._read_all(EntityKind.COLLECTION):
                if card_id in coll.card_ids:
                    coll.card_ids = [c for c in coll.card_ids if c != card_id]
                    coll.date_modified = now_utc()
                    self._write(coll)

            moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
            if moodboard is not None and card_id in moodboard.card_ids:
                moodboard.card_ids = [c for c in moodboard.card_ids if c != card_id]
                moodboard.date_modified = now_utc()
                self._write(moodboard)

            self._conn.execute(
                f"DELETE FROM {_THUMBNAIL_TABLE} WHERE card_id = ?", (card_id,)
            )

        if delete_files:
            self._delete_media_files(card)
        logger.info("Deleted card %s", card_id)

    def _delete_media_files(self, card: Card) -> None:
        remove_quietly(card.file_path)
        thumb = card.thumbnail_url
        if thumb and not thumb.startswith("data:"):
            remove_quietly(thumb)
        else:
            stem = Path(card.file_path.replace("\\", "/")).stem
            remove_quietly(self.config.thumbnail_dir / f"{stem}_thumb.jpg")

    def search_cards(
        self,
        type: Optional[str] = None,
        tag_ids: Optional[list[str]] = None,
        moodboard_only: bool = False,
    ) -> list[Card]:
        """Return cards matching every given filter.

        Parameters
        ----------
        type : str, optional
            ``"image"`` or ``"video"``.
        tag_ids : list[str], optional
            A card matches only if it carries ALL of these tags.
        moodboard_only : bool
            Restrict to cards currently in the moodboard.
        """
        cards = self._read_all(EntityKind.CARD)
        if type:
            cards = [c for c in cards if c.type == type]
        if tag_ids:
            required = set(tag_ids)
            cards = [c for c in cards if required.issubset(c.tags)]
        if moodboard_only:
            moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
            members = set(moodboard.card_ids) if moodboard else set()
            cards = [c for c in cards if c.id in members]
        return cards

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, tag: Tag) -> str:
        """Add a tag and list it in its category (when the category exists)."""
        with self._transaction():
            self._insert(tag)
            category = self._read(EntityKind.CATEGORY, tag.category_id)
            if category is not None and tag.id not in category.tag_ids:
                category.tag_ids.append(tag.id)
                self._write(category)
        return tag.id

    def delete_tag(self, tag_id: str) -> None:
        """Delete a tag and strip it from every card.

        The owning category's ``tag_ids`` is NOT edited; callers removing a
        tag for good should also update the category (the Repairer heals
        it otherwise).
        """
        with self._transaction():
            self._delete_tag_steps(tag_id)
        logger.info("Deleted tag %s", tag_id)

    def _delete_tag_steps(self, tag_id: str) -> int:
        removed = self._remove(EntityKind.TAG, tag_id)
        stripped = 0
        for card in self._read_all(EntityKind.CARD):
            if tag_id in card.tags:
                card.tags = [t for t in card.tags if t != tag_id]
                self._write(card)
                stripped += 1
        logger.debug("Tag %s removed (%d row), stripped from %d card(s)", tag_id, removed, stripped)
        return stripped

    def move_tag_to_category(self, tag_id: str, category_id: str) -> None:
        """Move a tag to another category, updating both categories.

        Raises
        ------
        EntityNotFoundError
            If the tag or the target category does not exist.
        """
        with self._transaction():
            tag = self._read(EntityKind.TAG, tag_id)
            if tag is None:
                raise EntityNotFoundError(f"Tag '{tag_id}' was not found.")
            target = self._read(EntityKind.CATEGORY, category_id)
            if target is None:
                raise EntityNotFoundError(f"Category '{category_id}' was not found.")
            if tag.category_id == category_id:
                return

            previous = self._read(EntityKind.CATEGORY, tag.category_id)
            if previous is not None:
                previous.tag_ids = [t for t in previous.tag_ids if t != tag_id]
                self._write(previous)

            tag.category_id = category_id
            self._write(tag)
            if tag_id not in target.tag_ids:
                target.tag_ids.append(tag_id)
                self._write(target)

    def count_tag_usage(self) -> dict[str, int]:
        """Return ``tag_id -> number of cards carrying it`` for every tag.

        Tags that no card references are included with a count of 0.
        """
        usage = {tag_id: 0 for tag_id in self._ids(EntityKind.TAG)}
        for card in self._read_all(EntityKind.CARD):
            for tag_id in card.tags:
                if tag_id in usage:
                    usage[tag_id] += 1
        return usage

    def recalculate_tag_counts(self) -> int:
        """Recompute ``card_count`` on every tag from the cards.

        Returns
        -------
        int
            Number of tags whose stored count was wrong and got fixed.
        """
        fixed = 0
        with self._transaction():
            usage = self.count_tag_usage()
            for tag in self._read_all(EntityKind.TAG):
                actual = usage.get(tag.id, 0)
                if tag.card_count != actual:
                    tag.card_count = actual
                    self._write(tag)
                    fixed += 1
        logger.info("Recalculated tag counts: %d of %d tag(s) corrected", fixed, len(usage))
        return fixed

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def add_category(self, category: Category) -> str:
        with self._transaction():
            self._insert(category)
        return category.id

    def list_categories(self) -> list[Category]:
        """Categories sorted by ``order`` (unordered ones last, by creation date)."""
        categories = self._read_all(EntityKind.CATEGORY)
        return sorted(
            categories,
            key=lambda c: (c.order is None, c.order or 0, c.date_created),
        )

    def delete_category(self, category_id: str) -> None:
        """Delete every tag listed in the category, then the category."""
        with self._transaction():
            category = self._read(EntityKind.CATEGORY, category_id)
            if category is not None:
                for tag_id in list(category.tag_ids):
                    self._delete_tag_steps(tag_id)
            self._remove(EntityKind.CATEGORY, category_id)
        logger.info("Deleted category %s", category_id)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def add_collection(self, collection: Collection) -> str:
        """Add a collection and register it on each listed card."""
        with self._transaction():
            self._insert(collection)
            for card_id in collection.card_ids:
                card = self._read(EntityKind.CARD, card_id)
                if card is not None and collection.id not in card.collections:
                    card.collections.append(collection.id)
                    self._write(card)
        return collection.id

    def update_collection(self, collection_id: str, changes: dict) -> int:
        """Apply a partial update and bump ``date_modified``."""
        with self._transaction():
            existing = self._read(EntityKind.COLLECTION, collection_id)
            if existing is None:
                return 0
            updated = _merge(existing, {**changes, "date_modified": now_utc()})
            self._write(updated)
        return 1

    def delete_collection(self, collection_id: str) -> None:
        """Delete a collection and strip it from every card."""
        with self._transaction():
            self._remove(EntityKind.COLLECTION, collection_id)
            for card in self._read_all(EntityKind.CARD):
                if collection_id in card.collections:
                    card.collections = [c for c in card.collections if c != collection_id]
                    self._write(card)
        logger.info("Deleted collection %s", collection_id)

    # ------------------------------------------------------------------
    # Moodboard
    # ------------------------------------------------------------------

    def get_moodboard(self) -> Moodboard:
        """Return the moodboard, creating the empty singleton on first use."""
        moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
        if moodboard is None:
            moodboard = Moodboard()
            with self._transaction():
                self._write(moodboard)
        return moodboard

    def is_in_moodboard(self, card_id: str) -> bool:
        moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
        return moodboard is not None and card_id in moodboard.card_ids

    def _moodboard_add(self, card_id: str) -> None:
        moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID) or Moodboard()
        if card_id not in moodboard.card_ids:
            moodboard.card_ids.append(card_id)
            moodboard.date_modified = now_utc()
            self._write(moodboard)

    def _moodboard_remove(self, card_id: str) -> None:
        moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
        if moodboard is not None and card_id in moodboard.card_ids:
            moodboard.card_ids = [c for c in moodboard.card_ids if c != card_id]
            moodboard.date_modified = now_utc()
            self._write(moodboard)

    def _set_moodboard_flag(self, card_id: str, value: bool) -> None:
        card = self._read(EntityKind.CARD, card_id)
        if card is not None and card.in_moodboard != value:
            card.in_moodboard = value
            self._write(card)

    def add_to_moodboard(self, card_id: str) -> None:
        """Pin a card to the moodboard.  Unknown cards are ignored."""
        with self._transaction():
            if self._read(EntityKind.CARD, card_id) is None:
                logger.debug("add_to_moodboard: card %s not found", card_id)
                return
            self._moodboard_add(card_id)
            self._set_moodboard_flag(card_id, True)

    def remove_from_moodboard(self, card_id: str) -> None:
        with self._transaction():
            self._moodboard_remove(card_id)
            self._set_moodboard_flag(card_id, False)

    def clear_moodboard(self) -> None:
        """Reset ``in_moodboard`` on every pinned card, then empty the list."""
        with self._transaction():
            moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
            if moodboard is None:
                return
            for card_id in moodboard.card_ids:
                self._set_moodboard_flag(card_id, False)
            moodboard.card_ids = []
            moodboard.date_modified = now_utc()
            self._write(moodboard)

    # ------------------------------------------------------------------
    # Preview cache
    # ------------------------------------------------------------------

    def set_thumbnail(self, card_id: str, data: str) -> None:
        entry = ThumbnailCacheEntry(card_id=card_id, data=data)
        with self._transaction():
            self._conn.execute(
                f"INSERT INTO {_THUMBNAIL_TABLE} (card_id, data) VALUES (?, ?) "
                "ON CONFLICT(card_id) DO UPDATE SET data = excluded.data",
                (card_id, json.dumps(entry.model_dump(mode="json", by_alias=True))),
            )

    def get_thumbnail(self, card_id: str) -> Optional[ThumbnailCacheEntry]:
        row = self._conn.execute(
            f"SELECT data FROM {_THUMBNAIL_TABLE} WHERE card_id = ?", (card_id,)
        ).fetchone()
        if row is None:
            return None
        return ThumbnailCacheEntry.model_validate(json.loads(row["data"]))

    def _all_thumbnails(self) -> list[dict]:
        rows = self._conn.execute(
            f"SELECT data FROM {_THUMBNAIL_TABLE} ORDER BY rowid"
        ).fetchall()
        return [json.loads(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict:
        """Return catalog-wide counts for the settings / health screens."""
        cards = self._read_all(EntityKind.CARD)
        moodboard = self._read(EntityKind.MOODBOARD, MOODBOARD_ID)
        return {
            "total_cards": len(cards),
            "image_count": sum(1 for c in cards if c.type == "image"),
            "video_count": sum(1 for c in cards if c.type == "video"),
            "total_size": sum(c.file_size for c in cards),
            "collection_count": self.count(EntityKind.COLLECTION),
            "tag_count": self.count(EntityKind.TAG),
            "category_count": self.count(EntityKind.CATEGORY),
            "moodboard_count": len(moodboard.card_ids) if moodboard else 0,
        }

    # ------------------------------------------------------------------
    # Snapshot export / import
    # ------------------------------------------------------------------

    def export_snapshot(self) -> dict:
        """Serialize the whole catalog into a JSON-ready dict.

        The result is keyed by entity kind (``cards``, ``tags`` ...) plus
        ``thumbnailCache``, ``exportDate`` and ``version``.
        """
        snapshot: dict[str, Any] = {
            kind.value: [r.to_json_dict() for r in self._read_all(kind)]
            for kind in EntityKind
        }
        snapshot["thumbnailCache"] = self._all_thumbnails()
        snapshot["exportDate"] = now_iso()
        snapshot["version"] = SNAPSHOT_VERSION
        return snapshot

    def export_json(self, indent: int = 2) -> str:
        return json.dumps(self.export_snapshot(), indent=indent, ensure_ascii=False)

    def import_snapshot(self, snapshot, new_working_dir: Optional[str] = None) -> dict:
        """Replace the entire catalog with *snapshot*.

        Parameters
        ----------
        snapshot : dict or str
            A payload produced by ``export_snapshot`` (or its JSON text).
        new_working_dir : str, optional
            When given, card paths laid out as ``YYYY/MM/DD/<file>`` and
            previews under ``_cache/thumbs/`` are rebased onto it.

        Returns
        -------
        dict
            Number of records imported per kind.

        Raises
        ------
        SnapshotValidationError
            If the payload is malformed.  The live catalog is untouched.
        """
        if isinstance(snapshot, (str, bytes)):
            try:
                snapshot = json.loads(snapshot)
            except json.JSONDecodeError as exc:
                raise SnapshotValidationError(
                    f"The catalog data is not valid JSON. Technical detail: {exc}"
                ) from exc
        ensure_valid_snapshot(snapshot)

        records: dict[EntityKind, list[CatalogRecord]] = {}
        try:
            for kind in EntityKind:
                model = model_for(kind)
                records[kind] = [model.model_validate(raw) for raw in snapshot.get(kind.value, [])]
            thumbnails = [
                ThumbnailCacheEntry.model_validate(raw)
                for raw in snapshot.get("thumbnailCache", [])
                if "data" in raw
            ]
        except ValidationError as exc:
            raise SnapshotValidationError(
                f"The catalog data contains invalid records. Technical detail: {exc}"
            ) from exc

        if new_working_dir:
            for card in records[EntityKind.CARD]:
                card.file_path = _rebase(card.file_path, _DATED_PATH_RE, new_working_dir)
                card.thumbnail_url = _rebase(card.thumbnail_url, _THUMB_PATH_RE, new_working_dir)
            logger.info("Rebased card paths onto %s", new_working_dir)

        with self._transaction():
            for kind in EntityKind:
                self._conn.execute(f"DELETE FROM {kind.value}")
            self._conn.execute(f"DELETE FROM {_THUMBNAIL_TABLE}")
            for kind in EntityKind:
                for record in records[kind]:
                    self._write(record)
            for entry in thumbnails:
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {_THUMBNAIL_TABLE} (card_id, data) VALUES (?, ?)",
                    (entry.card_id, json.dumps(entry.model_dump(mode="json", by_alias=True))),
                )

        counts = {kind.value: len(records[kind]) for kind in EntityKind}
        counts["thumbnailCache"] = len(thumbnails)
        logger.info("Imported catalog snapshot: %s", counts)
        return counts
