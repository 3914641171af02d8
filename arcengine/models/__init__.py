"""
arcengine/models/ -- Pydantic v2 models for the ARC catalog.

Submodules:
    entities    Card, Tag, Category, Collection, Moodboard records.
    validators  Reference helpers and catalog snapshot validation.
"""

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

__all__ = [
    "MOODBOARD_ID",
    "Card",
    "CatalogRecord",
    "Category",
    "Collection",
    "EntityKind",
    "Moodboard",
    "Tag",
    "ThumbnailCacheEntry",
    "kind_of",
    "model_for",
]
