"""
arcengine/integrity.py -- Integrity Validator and Repairer for the ARC catalog

The Entity Store keeps five collections linked by id lists.  Cascades keep
them consistent in the normal case, but a crash between writes, a raw
``remove_record`` or an imported snapshot from an older build can leave
references pointing at nothing.  This module finds those problems and
fixes the ones that can be fixed without losing user data.

    IntegrityValidator  -- read-only scan, returns a ValidationResult
    IntegrityRepairer   -- one repair action per issue kind, isolated per issue
    describe_issues     -- plain-language, itemized review list for the user

``missing_file`` is the only error-level issue.  It is never repaired
automatically: the user decides whether to delete the card or restore the
file.

Usage:
    from arcengine.integrity import IntegrityValidator, IntegrityRepairer

    result = IntegrityValidator(store).validate()
    print(describe_issues(result.issues))
    fixed = IntegrityRepairer(store).repair(result.issues)
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, Field

from arcengine.entity_store import EntityStore
from arcengine.models.entities import MOODBOARD_ID, EntityKind
from arcengine.models.validators import dangling_ids, resolving_ids
from arcengine.utils import now_utc

logger = logging.getLogger(__name__)


class IssueKind(str, Enum):
    MISSING_FILE = "missing_file"
    ORPHANED_TAG = "orphaned_tag"
    ORPHANED_TAG_CATEGORY = "orphaned_tag_category"
    ORPHANED_COLLECTION = "orphaned_collection"
    ORPHANED_CATEGORY = "orphaned_category"
    MOODBOARD_MISMATCH = "moodboard_mismatch"
    TAG_COUNT_MISMATCH = "tag_count_mismatch"
    DANGLING_CARD_REFERENCE = "dangling_card_reference"
    UNLINKED_TAG = "unlinked_tag"
    MOODBOARD_FLAG_MISMATCH = "moodboard_flag_mismatch"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IntegrityIssue(BaseModel):
    """One detected violation of a cross-record reference rule."""

    kind: IssueKind
    severity: Severity = Severity.WARNING
    description: str
    card_id: Optional[str] = None
    tag_id: Optional[str] = None
    collection_id: Optional[str] = None
    category_id: Optional[str] = None


class ValidationResult(BaseModel):
    is_valid: bool
    issues: list[IntegrityIssue] = Field(default_factory=list)

    @property
    def warnings(self) -> list[IntegrityIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    @property
    def errors(self) -> list[IntegrityIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]


# What the repairer will do for each kind, shown to the user before repair.
_FIX_DESCRIPTIONS: dict[IssueKind, str] = {
    IssueKind.MISSING_FILE: (
        "Not fixed automatically. Delete the card, restore the file from a "
        "backup, or leave it as is."
    ),
    IssueKind.ORPHANED_TAG: "The tag's usage counter will be reset to match the cards.",
    IssueKind.ORPHANED_TAG_CATEGORY: (
        "The tag will be deleted and removed from every card that uses it."
    ),
    IssueKind.ORPHANED_COLLECTION: (
        "Links to the missing cards will be removed from the collection."
    ),
    IssueKind.ORPHANED_CATEGORY: "Links to the missing tags will be removed from the category.",
    IssueKind.MOODBOARD_MISMATCH: "Links to the missing cards will be removed from the moodboard.",
    IssueKind.TAG_COUNT_MISMATCH: "The tag's usage counter will be recalculated.",
    IssueKind.DANGLING_CARD_REFERENCE: (
        "Links to the missing tags or collections will be removed from the card."
    ),
    IssueKind.UNLINKED_TAG: "The tag will be listed in its category again.",
    IssueKind.MOODBOARD_FLAG_MISMATCH: (
        "The card's moodboard marker will be set to match the moodboard."
    ),
}


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class IntegrityValidator:
    """Read-only scan of the catalog producing a typed issue list.

    Parameters
    ----------
    store : EntityStore
        The live catalog.  Never modified.
    file_exists : callable
        ``file_exists(path) -> bool`` supplied by the host.  Defaults to
        ``os.path.isfile``.  If it raises, the card is logged and skipped.
    """

    def __init__(self, store: EntityStore, file_exists: Callable[[str], bool] = os.path.isfile):
        self.store = store
        self.file_exists = file_exists

    def validate(self) -> ValidationResult:
        cards = self.store.list(EntityKind.CARD)
        tags = self.store.list(EntityKind.TAG)
        categories = self.store.list(EntityKind.CATEGORY)
        collections = self.store.list(EntityKind.COLLECTION)
        moodboard = self.store.get(EntityKind.MOODBOARD, MOODBOARD_ID)

        card_ids = {c.id for c in cards}
        tag_ids = {t.id for t in tags}
        categories_by_id = {c.id: c for c in categories}
        collection_ids = {c.id for c in collections}
        usage = {t.id: 0 for t in tags}
        for card in cards:
            for tag_id in card.tags:
                if tag_id in usage:
                    usage[tag_id] += 1

        issues: list[IntegrityIssue] = []
        issues.extend(self._check_files(cards))
        issues.extend(self._check_tags(tags, usage, categories_by_id))
        issues.extend(self._check_collections(collections, card_ids))
        issues.extend(self._check_categories(categories, tag_ids))
        issues.extend(self._check_moodboard(moodboard, card_ids))
        issues.extend(self._check_cards(cards, tag_ids, collection_ids, moodboard))

        is_valid = not any(i.severity is Severity.ERROR for i in issues)
        logger.info(
            "Integrity check finished: %d issue(s) across %d card(s), %d tag(s)",
            len(issues), len(cards), len(tags),
        )
        return ValidationResult(is_valid=is_valid, issues=issues)

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_files(self, cards) -> list[IntegrityIssue]:
        issues = []
        for card in cards:
            try:
                exists = self.file_exists(card.file_path)
            except Exception:
                logger.warning("Could not check file for card %s (%s)", card.id, card.file_path, exc_info=True)
                continue
            if not exists:
                issues.append(IntegrityIssue(
                    kind=IssueKind.MISSING_FILE,
                    severity=Severity.ERROR,
                    description=(
                        f'File not found: "{card.file_name}" '
                        f"(card {card.id}, path {card.file_path})"
                    ),
                    card_id=card.id,
                ))
        return issues

    def _check_tags(self, tags, usage: dict[str, int], categories_by_id: dict) -> list[IntegrityIssue]:
        issues = []
        for tag in tags:
            actual = usage.get(tag.id, 0)
            if actual == 0 and tag.card_count > 0:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHANED_TAG,
                    description=(
                        f'Tag "{tag.name}" is not used by any card but its '
                        f"counter says {tag.card_count}"
                    ),
                    tag_id=tag.id,
                ))
            elif actual > 0 and tag.card_count != actual:
                issues.append(IntegrityIssue(
                    kind=IssueKind.TAG_COUNT_MISMATCH,
                    description=(
                        f'Tag "{tag.name}" is used by {actual} card(s) but its '
                        f"counter says {tag.card_count}"
                    ),
                    tag_id=tag.id,
                ))

            category = categories_by_id.get(tag.category_id)
            if tag.category_id and category is None:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHANED_TAG_CATEGORY,
                    description=f'Tag "{tag.name}" belongs to a category that no longer exists',
                    tag_id=tag.id,
                    category_id=tag.category_id,
                ))
            elif category is not None and tag.id not in category.tag_ids:
                issues.append(IntegrityIssue(
                    kind=IssueKind.UNLINKED_TAG,
                    description=(
                        f'Tag "{tag.name}" is missing from the list of category '
                        f'"{category.name}"'
                    ),
                    tag_id=tag.id,
                    category_id=category.id,
                ))
        return issues

    def _check_collections(self, collections, card_ids: set[str]) -> list[IntegrityIssue]:
        issues = []
        for collection in collections:
            missing = dangling_ids(collection.card_ids, card_ids)
            if missing:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHANED_COLLECTION,
                    description=(
                        f'Collection "{collection.name}" links to {len(missing)} missing '
                        f"card(s) (of {len(collection.card_ids)} total)"
                    ),
                    collection_id=collection.id,
                ))
        return issues

    def _check_categories(self, categories, tag_ids: set[str]) -> list[IntegrityIssue]:
        issues = []
        for category in categories:
            missing = dangling_ids(category.tag_ids, tag_ids)
            if missing:
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHANED_CATEGORY,
                    description=(
                        f'Category "{category.name}" links to {len(missing)} missing '
                        f"tag(s) (of {len(category.tag_ids)} total)"
                    ),
                    category_id=category.id,
                ))
        return issues

    def _check_moodboard(self, moodboard, card_ids: set[str]) -> list[IntegrityIssue]:
        if moodboard is None:
            return []
        missing = dangling_ids(moodboard.card_ids, card_ids)
        if not missing:
            return []
        return [IntegrityIssue(
            kind=IssueKind.MOODBOARD_MISMATCH,
            description=(
                f"The moodboard links to {len(missing)} missing card(s) "
                f"(of {len(moodboard.card_ids)} total)"
            ),
        )]

    def _check_cards(self, cards, tag_ids, collection_ids, moodboard) -> list[IntegrityIssue]:
        pinned = set(moodboard.card_ids) if moodboard else set()
        issues = []
        for card in cards:
            bad_tags = dangling_ids(card.tags, tag_ids)
            bad_colls = dangling_ids(card.collections, collection_ids)
            if bad_tags or bad_colls:
                issues.append(IntegrityIssue(
                    kind=IssueKind.DANGLING_CARD_REFERENCE,
                    description=(
                        f'Card "{card.file_name}" links to {len(bad_tags)} missing '
                        f"tag(s) and {len(bad_colls)} missing collection(s)"
                    ),
                    card_id=card.id,
                ))
            if card.in_moodboard != (card.id in pinned):
                where = "is marked as pinned but is not" if card.in_moodboard else "is not marked as pinned but is"
                issues.append(IntegrityIssue(
                    kind=IssueKind.MOODBOARD_FLAG_MISMATCH,
                    description=f'Card "{card.file_name}" {where} on the moodboard',
                    card_id=card.id,
                ))
        return issues


# ---------------------------------------------------------------------------
# Repairer
# ---------------------------------------------------------------------------

class IntegrityRepairer:
    """Apply the automatic fix for each issue.

    Every action re-reads the current state, so issues may be applied in
    any order and an issue that is already resolved is a no-op.  A
    failure on one issue is logged and the batch continues.
    """

    def __init__(self, store: EntityStore):
        self.store = store
        self._actions: dict[IssueKind, Callable[[IntegrityIssue], bool]] = {
            IssueKind.ORPHANED_TAG: self._recount_tag,
            IssueKind.TAG_COUNT_MISMATCH: self._recount_tag,
            IssueKind.ORPHANED_TAG_CATEGORY: self._drop_tag,
            IssueKind.ORPHANED_COLLECTION: self._prune_collection,
            IssueKind.ORPHANED_CATEGORY: self._prune_category,
            IssueKind.MOODBOARD_MISMATCH: self._prune_moodboard,
            IssueKind.DANGLING_CARD_REFERENCE: self._prune_card,
            IssueKind.UNLINKED_TAG: self._link_tag,
            IssueKind.MOODBOARD_FLAG_MISMATCH: self._sync_moodboard_flag,
        }

    def repair(self, issues: Iterable[IntegrityIssue]) -> int:
        """Fix what can be fixed.  Returns the number of issues fixed."""
        fixed = 0
        for issue in issues:
            action = self._actions.get(issue.kind)
            if action is None:
                logger.info("Skipping %s issue (needs a decision from the user)", issue.kind.value)
                continue
            try:
                if action(issue):
                    fixed += 1
                    logger.debug("Fixed %s: %s", issue.kind.value, issue.description)
            except Exception:
                logger.warning("Could not fix %s issue: %s", issue.kind.value, issue.description, exc_info=True)
        logger.info("Integrity repair fixed %d issue(s)", fixed)
        return fixed

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _recount_tag(self, issue: IntegrityIssue) -> bool:
        tag = self.store.get(EntityKind.TAG, issue.tag_id) if issue.tag_id else None
        if tag is None:
            return False
        actual = len(self.store.search_cards(tag_ids=[tag.id]))
        return self.store.update(EntityKind.TAG, tag.id, {"card_count": actual}) == 1

    def _drop_tag(self, issue: IntegrityIssue) -> bool:
        if not issue.tag_id or self.store.get(EntityKind.TAG, issue.tag_id) is None:
            return False
        self.store.delete_tag(issue.tag_id)
        for category in self.store.list(EntityKind.CATEGORY, lambda c: issue.tag_id in c.tag_ids):
            self.store.update(
                EntityKind.CATEGORY, category.id,
                {"tag_ids": [t for t in category.tag_ids if t != issue.tag_id]},
            )
        return True

    def _known(self, kind: EntityKind) -> set[str]:
        return {r.id for r in self.store.list(kind)}

    def _prune_collection(self, issue: IntegrityIssue) -> bool:
        collection = self.store.get(EntityKind.COLLECTION, issue.collection_id) if issue.collection_id else None
        if collection is None:
            return False
        kept = resolving_ids(collection.card_ids, self._known(EntityKind.CARD))
        # update_collection bumps date_modified.
        return self.store.update(EntityKind.COLLECTION, collection.id, {"card_ids": kept}) == 1

    def _prune_category(self, issue: IntegrityIssue) -> bool:
        category = self.store.get(EntityKind.CATEGORY, issue.category_id) if issue.category_id else None
        if category is None:
            return False
        kept = resolving_ids(category.tag_ids, self._known(EntityKind.TAG))
        return self.store.update(EntityKind.CATEGORY, category.id, {"tag_ids": kept}) == 1

    def _prune_moodboard(self, issue: IntegrityIssue) -> bool:
        moodboard = self.store.get(EntityKind.MOODBOARD, MOODBOARD_ID)
        if moodboard is None:
            return False
        kept = resolving_ids(moodboard.card_ids, self._known(EntityKind.CARD))
        return self.store.update(
            EntityKind.MOODBOARD, MOODBOARD_ID,
            {"card_ids": kept, "date_modified": now_utc()},
        ) == 1

    def _prune_card(self, issue: IntegrityIssue) -> bool:
        card = self.store.get(EntityKind.CARD, issue.card_id) if issue.card_id else None
        if card is None:
            return False
        return self.store.update(EntityKind.CARD, card.id, {
            "tags": resolving_ids(card.tags, self._known(EntityKind.TAG)),
            "collections": resolving_ids(card.collections, self._known(EntityKind.COLLECTION)),
        }) == 1

    def _link_tag(self, issue: IntegrityIssue) -> bool:
        tag = self.store.get(EntityKind.TAG, issue.tag_id) if issue.tag_id else None
        if tag is None:
            return False
        category = self.store.get(EntityKind.CATEGORY, tag.category_id)
        if category is None or tag.id in category.tag_ids:
            return False
        return self.store.update(
            EntityKind.CATEGORY, category.id, {"tag_ids": [*category.tag_ids, tag.id]}
        ) == 1

    def _sync_moodboard_flag(self, issue: IntegrityIssue) -> bool:
        card = self.store.get(EntityKind.CARD, issue.card_id) if issue.card_id else None
        if card is None:
            return False
        pinned = self.store.is_in_moodboard(card.id)
        if card.in_moodboard == pinned:
            return False
        return self.store.update(EntityKind.CARD, card.id, {"in_moodboard": pinned}) == 1


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def describe_issues(issues: Iterable[IntegrityIssue]) -> str:
    """Render issues as an itemized list for review before repair.

    Each entry states what is wrong and what the repair will do about it.
    """
    issues = list(issues)
    if not issues:
        return "Everything looks good! No problems were found in your catalog."

    errors = sum(1 for i in issues if i.severity is Severity.ERROR)
    warnings = len(issues) - errors
    lines = [
        f"Found {len(issues)} {'problem' if len(issues) == 1 else 'problems'} "
        f"({errors} {'error' if errors == 1 else 'errors'}, "
        f"{warnings} {'warning' if warnings == 1 else 'warnings'}):",
        "",
    ]
    for number, issue in enumerate(issues, start=1):
        label = "ERROR" if issue.severity is Severity.ERROR else "Warning"
        lines.append(f"{number}. [{label}] {issue.description}")
        lines.append(f"   What happens on repair: {_FIX_DESCRIPTIONS[issue.kind]}")
    return "\n".join(lines)
