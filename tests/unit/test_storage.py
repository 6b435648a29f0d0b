"""Unit tests for atomic artifact storage."""

from __future__ import annotations

from pathlib import Path

import pytest

from bookglot.io.storage import ArtifactStore


def test_save_text_and_json_write_complete_files_without_temp_leftovers(tmp_path: Path) -> None:
    """Atomic writes create parents, replace content, and leave no temp files."""

    store = ArtifactStore(tmp_path / "root")

    store.save_text(Path("a/b/chapter.xhtml"), "first")
    store.save_text(Path("a/b/chapter.xhtml"), "second")
    store.save_json(Path("a/meta.json"), {"z": 1, "a": "č"})

    assert store.load_text(Path("a/b/chapter.xhtml")) == "second"
    assert store.load_json(Path("a/meta.json")) == {"a": "č", "z": 1}
    assert sorted(path.name for path in (tmp_path / "root" / "a" / "b").iterdir()) == [
        "chapter.xhtml"
    ]


def test_failed_write_keeps_previous_content(tmp_path: Path) -> None:
    """A payload that cannot be serialized never replaces the existing file."""

    store = ArtifactStore(tmp_path)
    store.save_json(Path("meta.json"), {"version": 1})

    with pytest.raises(TypeError):
        store.save_json(Path("meta.json"), {"bad": object()})

    assert store.load_json(Path("meta.json")) == {"version": 1}
    assert [path.name for path in tmp_path.iterdir()] == ["meta.json"]


def test_remove_tree_reports_presence(tmp_path: Path) -> None:
    """Removing a subtree reports whether anything was deleted."""

    store = ArtifactStore(tmp_path)
    store.save_text(Path("book/en/meta.json"), "{}")

    assert store.exists(Path("book/en/meta.json"))
    assert store.remove_tree(Path("book")) is True
    assert store.remove_tree(Path("book")) is False
    assert not store.exists(Path("book"))
