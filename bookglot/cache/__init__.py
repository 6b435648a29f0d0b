"""Persistent cache of translated books."""

from .store import CacheStore, WriteHandle, chapter_file_name

__all__ = ["CacheStore", "WriteHandle", "chapter_file_name"]
