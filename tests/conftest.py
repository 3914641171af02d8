"""
Shared pytest fixtures for the ARC catalog test suite.

Provides:
    - config: a CatalogConfig rooted in tmp_path (media dir, db, temp dir)
    - store: an empty EntityStore on that config
    - make_card: factory writing a media file and returning a matching Card
    - populated_store: a small catalog with categories, tags, cards,
      a collection and a pinned card
"""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure arcengine/ and arcapp/ are importable regardless of where pytest runs
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from arcengine.config import CatalogConfig  # noqa: E402
from arcengine.entity_store import EntityStore  # noqa: E402
from arcengine.models import Card, Category, Collection, Tag  # noqa: E402


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config(tmp_path):
    """CatalogConfig with its own media folder, database and temp dir."""
    media = tmp_path / "media"
    media.mkdir()
    temp = tmp_path / "tmp"
    temp.mkdir()
    return CatalogConfig(
        working_dir=media,
        database_path=tmp_path / "db" / "catalog.db",
        temp_dir=temp,
        chunk_size=4096,
    )


@pytest.fixture
def store(config):
    """An empty EntityStore, closed after the test."""
    s = EntityStore(config)
    yield s
    s.close()


@pytest.fixture
def make_card(config):
    """Return a factory that writes a media file and builds its Card.

    ``make_card("card-a", "2024/05/17/a.jpg", tags=["tag-x"])`` writes
    ``<working_dir>/2024/05/17/a.jpg`` and returns an unsaved Card.
    """
    def _make(card_id, rel_path, content=b"\xff\xd8\xff fake jpeg", **fields):
        path = Path(config.working_dir) / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        fields.setdefault("type", "video" if rel_path.endswith(".mp4") else "image")
        return Card(
            id=card_id,
            file_name=path.name,
            file_path=str(path),
            format=path.suffix.lstrip("."),
            file_size=len(content),
            **fields,
        )

    return _make


@pytest.fixture
def populated_store(store, make_card):
    """A small but fully linked catalog.

    Categories: Style {Minimal, Bold}, Mood {Calm}
    Cards:      card-a [Minimal], card-b [Minimal, Calm] (video), card-c []
    Collection: Refs [card-a, card-b, card-c]
    Moodboard:  [card-a]
    """
    store.add_category(Category(id="cat-style", name="Style", order=1))
    store.add_category(Category(id="cat-mood", name="Mood", order=2))
    store.add_tag(Tag(id="tag-minimal", name="Minimal", category_id="cat-style"))
    store.add_tag(Tag(id="tag-bold", name="Bold", category_id="cat-style"))
    store.add_tag(Tag(id="tag-calm", name="Calm", category_id="cat-mood"))

    store.add_card(make_card("card-a", "2024/05/17/a.jpg", tags=["tag-minimal"]))
    store.add_card(make_card("card-b", "2024/05/17/b.mp4", tags=["tag-minimal", "tag-calm"]))
    store.add_card(make_card("card-c", "2024/05/18/c.png"))

    store.add_collection(Collection(id="coll-refs", name="Refs", card_ids=["card-a", "card-b", "card-c"]))
    store.add_to_moodboard("card-a")
    return store
