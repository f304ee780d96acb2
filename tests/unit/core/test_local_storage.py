"""Tests for resolving stored upload paths."""

from core.storage.local import LocalStorage


def test_relative_path_joined_to_root(tmp_path):
    storage = LocalStorage(tmp_path)
    assert storage.resolve("allotments/letter.pdf") == tmp_path.resolve() / "allotments" / "letter.pdf"


def test_root_name_prefix_stripped(tmp_path):
    root = tmp_path / "uploads"
    storage = LocalStorage(root)
    assert storage.resolve("uploads/allotments/letter.pdf") == root.resolve() / "allotments" / "letter.pdf"


def test_absolute_path_unchanged(tmp_path):
    letter = tmp_path / "elsewhere" / "letter.pdf"
    assert LocalStorage(tmp_path / "uploads").resolve(letter) == letter


def test_exists(tmp_path):
    letter = tmp_path / "allotments" / "letter.pdf"
    letter.parent.mkdir()
    letter.write_bytes(b"%PDF")
    storage = LocalStorage(tmp_path)

    assert storage.exists("allotments/letter.pdf") is True
    assert storage.exists("allotments/missing.pdf") is False
