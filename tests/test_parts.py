"""
Tests for arcengine/parts.py -- splitting archives into parts and merging them.
"""

import os

import pytest

from arcengine.errors import ArchiveFormatError, IncompletePartsError
from arcengine.parts import find_parts, is_part_file, merge_parts, part_base, part_name, split_file


@pytest.fixture
def archive(tmp_path):
    """A 10_001-byte file with non-repeating content."""
    path = tmp_path / "arc_backup.zip"
    path.write_bytes(bytes(i % 251 for i in range(10_001)))
    return path


class TestNaming:
    def test_part_name_is_zero_padded(self):
        assert part_name("/b/arc_backup", 3) == "/b/arc_backup.arc.part03"

    def test_is_part_file(self):
        assert is_part_file("x/arc_backup.arc.part01")
        assert not is_part_file("x/arc_backup.zip")
        assert not is_part_file("x/arc_backup.arc.part01.bak")

    def test_part_base_strips_part_suffix(self):
        assert part_base("/b/arc_backup.arc.part07") == "/b/arc_backup"

    def test_part_base_strips_archive_extension(self):
        assert part_base("/b/arc_backup.zip") == "/b/arc_backup"
        assert part_base("/b/arc_backup.arc") == "/b/arc_backup"
        assert part_base("/b/arc_backup.tar") == "/b/arc_backup.tar"


class TestSplit:
    def test_part_count_and_names(self, archive):
        parts = split_file(archive, 4)
        assert [p.name for p in parts] == [
            "arc_backup.arc.part01", "arc_backup.arc.part02",
            "arc_backup.arc.part03", "arc_backup.arc.part04",
        ]

    def test_part_sizes_use_ceiling(self, archive):
        parts = split_file(archive, 4)
        sizes = [p.stat().st_size for p in parts]
        assert sizes == [2501, 2501, 2501, 2498]
        assert sum(sizes) == 10_001

    def test_original_deleted(self, archive):
        split_file(archive, 3)
        assert not archive.exists()

    def test_concatenation_reproduces_original(self, archive):
        original = archive.read_bytes()
        parts = split_file(archive, 7, chunk_size=100)
        assert b"".join(p.read_bytes() for p in parts) == original

    def test_more_parts_than_bytes(self, tmp_path):
        path = tmp_path / "tiny.zip"
        path.write_bytes(b"abc")
        parts = split_file(path, 5)
        assert [p.stat().st_size for p in parts] == [1, 1, 1, 0, 0]

    @pytest.mark.parametrize("count", [0, 100, -1])
    def test_invalid_part_count(self, archive, count):
        with pytest.raises(ValueError):
            split_file(archive, count)
        assert archive.exists()


class TestMerge:
    def test_round_trip(self, archive):
        original = archive.read_bytes()
        parts = split_file(archive, 4)
        merged = merge_parts(parts[0])
        assert merged.name == "arc_backup_merged.zip"
        assert merged.read_bytes() == original

    def test_parts_are_kept(self, archive):
        parts = split_file(archive, 2)
        merge_parts(parts[0])
        assert all(p.exists() for p in parts)

    def test_any_part_can_start_the_merge(self, archive):
        original = archive.read_bytes()
        parts = split_file(archive, 3)
        assert merge_parts(parts[2]).read_bytes() == original

    def test_explicit_output_path(self, archive, tmp_path):
        parts = split_file(archive, 2)
        out = tmp_path / "elsewhere" / "restored.zip"
        out.parent.mkdir()
        assert merge_parts(parts[0], output_path=str(out)) == out
        assert out.exists()

    def test_unrelated_parts_ignored(self, archive, tmp_path):
        original = archive.read_bytes()
        parts = split_file(archive, 2)
        (tmp_path / "other_backup.arc.part01").write_bytes(b"noise")
        (tmp_path / "arc_backup.arc.part01.tmp").write_bytes(b"noise")
        assert merge_parts(parts[0]).read_bytes() == original

    def test_missing_middle_part_raises(self, archive):
        parts = split_file(archive, 4)
        os.remove(parts[1])
        with pytest.raises(IncompletePartsError) as exc_info:
            merge_parts(parts[0])
        assert "part02" in str(exc_info.value)

    def test_missing_first_part_raises(self, archive):
        parts = split_file(archive, 3)
        os.remove(parts[0])
        with pytest.raises(ArchiveFormatError):
            find_parts(parts[1])

    def test_no_parts_raises(self, tmp_path):
        with pytest.raises(IncompletePartsError):
            find_parts(tmp_path / "nothing.arc.part01")
