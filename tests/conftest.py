"""Shared pytest fixtures for the bookglot test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from bookglot.cache.store import CacheStore
from tests.epub_builder import FakeTranslationClient, three_chapter_book


@pytest.fixture
def cache_store(tmp_path: Path) -> CacheStore:
    """Provide a cache store rooted in a temporary directory."""

    return CacheStore(tmp_path / "cache")


@pytest.fixture
def fake_client() -> FakeTranslationClient:
    """Provide a recording translation client that always succeeds."""

    return FakeTranslationClient()


@pytest.fixture
def three_chapter_epub() -> bytes:
    """Provide deterministic bytes of a three-chapter ePub."""

    return three_chapter_book()
