"""
Tests for arcengine/models, arcengine/config.py and arcengine/utils.py
"""

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from arcengine.config import CatalogConfig
from arcengine.errors import EntityNotFoundError, SnapshotValidationError
from arcengine.models import (
    MOODBOARD_ID,
    Card,
    Category,
    Collection,
    EntityKind,
    Moodboard,
    Tag,
    kind_of,
    model_for,
)
from arcengine.models.validators import (
    dangling_ids,
    ensure_valid_snapshot,
    resolving_ids,
    validate_snapshot,
)
from arcengine.utils import generate_id, remove_quietly, safe_read_json, safe_write_json


# ---------------------------------------------------------------------------
# Entity models
# ---------------------------------------------------------------------------

class TestCardModel:
    def test_accepts_camel_case_input(self):
        card = Card.model_validate({
            "id": "c1", "fileName": "a.jpg", "filePath": "/m/a.jpg",
            "type": "image", "inMoodboard": True,
        })
        assert card.file_name == "a.jpg"
        assert card.in_moodboard is True

    def test_serializes_camel_case(self):
        card = Card(id="c1", file_name="a.jpg", file_path="/m/a.jpg", type="image")
        data = card.to_json_dict()
        assert data["fileName"] == "a.jpg"
        assert "dateAdded" in data
        assert "width" not in data

    def test_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            Card(id="c1", file_name="a", file_path="/a", type="audio")

    def test_rejects_empty_id(self):
        with pytest.raises(ValidationError):
            Card(id="", file_name="a", file_path="/a", type="image")

    def test_tags_and_collections_deduplicated(self):
        card = Card(id="c1", file_name="a", file_path="/a", type="image",
                    tags=["t1", "t2", "t1"], collections=["x", "x"])
        assert card.tags == ["t1", "t2"]
        assert card.collections == ["x"]


class TestOtherModels:
    def test_tag_count_non_negative(self):
        with pytest.raises(ValidationError):
            Tag(id="t", name="T", category_id="c", card_count=-1)

    def test_category_tag_ids_deduplicated(self):
        assert Category(id="c", name="C", tag_ids=["a", "a", "b"]).tag_ids == ["a", "b"]

    def test_collection_defaults(self):
        coll = Collection(id="x", name="X")
        assert coll.card_ids == []
        assert coll.date_modified is not None

    def test_moodboard_default_id(self):
        assert Moodboard().id == MOODBOARD_ID == "default"

    def test_kind_helpers(self):
        assert model_for("tags") is Tag
        assert kind_of(Collection(id="x", name="X")) is EntityKind.COLLECTION
        with pytest.raises(TypeError):
            kind_of(object())


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

class TestReferenceHelpers:
    def test_split_ids(self):
        known = {"a", "c"}
        assert resolving_ids(["a", "b", "c"], known) == ["a", "c"]
        assert dangling_ids(["a", "b", "c"], known) == ["b"]


class TestSnapshotValidation:
    def test_valid_snapshot(self):
        snapshot = {
            "cards": [{"id": "c", "fileName": "a", "filePath": "/a", "type": "image"}],
            "tags": [{"id": "t", "name": "T", "categoryId": "x"}],
            "version": "1.0",
        }
        assert validate_snapshot(snapshot) == []

    def test_missing_required_field(self):
        errors = validate_snapshot({"tags": [{"id": "t", "name": "T"}]})
        assert len(errors) == 1
        assert "categoryId" in errors[0]

    def test_wrong_type(self):
        errors = validate_snapshot({"cards": {}})
        assert errors and "Wrong data type" in errors[0]

    def test_not_an_object(self):
        assert validate_snapshot([1, 2]) != []

    def test_ensure_raises_with_friendly_message(self):
        with pytest.raises(SnapshotValidationError) as exc_info:
            ensure_valid_snapshot({"cards": [{"id": "c"}] * 12})
        message = str(exc_info.value)
        assert "cannot be imported" in message
        assert "more" in message


# ---------------------------------------------------------------------------
# Config, errors, utils
# ---------------------------------------------------------------------------

class TestCatalogConfig:
    def test_paths_coerced(self, tmp_path):
        config = CatalogConfig(working_dir=str(tmp_path), database_path=str(tmp_path / "c.db"))
        assert isinstance(config.working_dir, Path)
        assert config.thumbnail_dir == tmp_path / "_cache" / "thumbs"

    def test_frozen(self, tmp_path):
        config = CatalogConfig(working_dir=tmp_path, database_path=tmp_path / "c.db")
        with pytest.raises(ValidationError):
            config.working_dir = Path("/elsewhere")

    def test_with_working_dir(self, tmp_path):
        config = CatalogConfig(working_dir=tmp_path, database_path=tmp_path / "c.db")
        moved = config.with_working_dir(tmp_path / "other")
        assert moved.working_dir == tmp_path / "other"
        assert moved.database_path == config.database_path

    def test_chunk_size_positive(self, tmp_path):
        with pytest.raises(ValidationError):
            CatalogConfig(working_dir=tmp_path, database_path=tmp_path / "c.db", chunk_size=0)


class TestErrors:
    def test_not_found_message_unquoted(self):
        assert str(EntityNotFoundError("Tag 'x' was not found.")) == "Tag 'x' was not found."


class TestUtils:
    def test_generate_id_prefix_and_uniqueness(self):
        ids = {generate_id("card") for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("card-") for i in ids)

    def test_safe_write_and_read(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        safe_write_json(path, {"a": "é"})
        assert safe_read_json(path) == {"a": "é"}
        assert os.listdir(path.parent) == ["data.json"]

    def test_safe_read_corrupt_returns_default(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        assert safe_read_json(path, default={}) == {}

    def test_remove_quietly(self, tmp_path):
        path = tmp_path / "f.txt"
        path.write_text("x")
        assert remove_quietly(path) is True
        assert remove_quietly(path) is False

    def test_safe_write_is_json(self, tmp_path):
        path = tmp_path / "d.json"
        safe_write_json(path, [1, 2])
        assert json.loads(path.read_text(encoding="utf-8")) == [1, 2]
