"""
arcengine/models/entities.py -- Catalog record models.

Every record is a pydantic model with a unique string ``id``.  Python code
uses snake_case attribute names; serialization uses camelCase aliases
(``fileName``, ``cardCount``, ``tagIds`` ...) so that exported snapshots
match the catalog's JSON export format and older exports load unchanged.

Unknown keys are preserved (``extra="allow"``) so a snapshot written by a
newer build survives a round trip through an older one.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from arcengine.utils import now_utc

MOODBOARD_ID = "default"


class EntityKind(str, Enum):
    """The five linked collections of the catalog.

    Values double as snapshot keys and SQLite table names.
    """

    CARD = "cards"
    TAG = "tags"
    CATEGORY = "categories"
    COLLECTION = "collections"
    MOODBOARD = "moodboard"


class CatalogRecord(BaseModel):
    """Base class for all catalog records."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str = Field(min_length=1)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize using camelCase keys and ISO timestamps."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


class Card(CatalogRecord):
    """Catalog record for one media file."""

    file_name: str
    file_path: str
    type: Literal["image", "video"]
    format: str = ""
    file_size: int = Field(default=0, ge=0)
    date_added: datetime = Field(default_factory=now_utc)
    date_modified: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    collections: list[str] = Field(default_factory=list)
    in_moodboard: bool = False
    description: Optional[str] = None

    # tags / collections have set semantics; order is kept for display.
    @field_validator("tags", "collections", mode="after")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)


class Tag(CatalogRecord):
    """Categorization label; belongs to exactly one Category."""

    name: str
    category_id: str
    color: Optional[str] = None
    date_created: datetime = Field(default_factory=now_utc)
    card_count: int = Field(default=0, ge=0)
    description: Optional[str] = None


class Category(CatalogRecord):
    """Named, ordered group of Tags."""

    name: str
    tag_ids: list[str] = Field(default_factory=list)
    color: Optional[str] = None
    order: Optional[int] = None
    date_created: datetime = Field(default_factory=now_utc)

    @field_validator("tag_ids", mode="after")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)


class Collection(CatalogRecord):
    """User-curated group of Cards."""

    name: str
    card_ids: list[str] = Field(default_factory=list)
    date_created: datetime = Field(default_factory=now_utc)
    date_modified: datetime = Field(default_factory=now_utc)
    description: Optional[str] = None

    @field_validator("card_ids", mode="after")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)


class Moodboard(CatalogRecord):
    """The singleton transient working set of Cards."""

    id: str = MOODBOARD_ID
    card_ids: list[str] = Field(default_factory=list)
    date_modified: datetime = Field(default_factory=now_utc)

    @field_validator("card_ids", mode="after")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)


class ThumbnailCacheEntry(BaseModel):
    """Cached preview for a card (data URL or path)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    card_id: str
    data: str
    date_created: datetime = Field(default_factory=now_utc)


_MODELS: dict[EntityKind, type[CatalogRecord]] = {
    EntityKind.CARD: Card,
    EntityKind.TAG: Tag,
    EntityKind.CATEGORY: Category,
    EntityKind.COLLECTION: Collection,
    EntityKind.MOODBOARD: Moodboard,
}


def model_for(kind: EntityKind | str) -> type[CatalogRecord]:
    """Return the model class for *kind* (an ``EntityKind`` or its value)."""
    return _MODELS[EntityKind(kind)]


def kind_of(entity: CatalogRecord) -> EntityKind:
    """Return the ``EntityKind`` of a record instance."""
    for kind, model in _MODELS.items():
        if isinstance(entity, model):
            return kind
    raise TypeError(f"Not a catalog record: {type(entity).__name__}")
