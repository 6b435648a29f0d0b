"""Artifact storage abstraction.

Responsibilities:
- Provide deterministic filesystem storage for text and JSON artifacts.
- Make every write atomic so readers never observe a partially written file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import shutil
import tempfile


class ArtifactStore:
    """Filesystem-backed artifact store rooted at one directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def _write_atomic(self, relative_path: Path, content: str) -> Path:
        """Write through a sibling temp file, fsync it, and rename into place."""

        path = self.root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        file_descriptor, temp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(file_descriptor, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return path

    def save_text(self, relative_path: Path, content: str) -> Path:
        """Save text content atomically and return final path."""

        return self._write_atomic(relative_path, content)

    def save_json(self, relative_path: Path, payload: dict[str, object]) -> Path:
        """Save JSON-serializable payload atomically and return final path."""

        return self._write_atomic(
            relative_path,
            json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
        )

    def load_text(self, relative_path: Path) -> str:
        """Load text content from artifact storage."""

        return (self.root / relative_path).read_text(encoding="utf-8")

    def load_json(self, relative_path: Path) -> object:
        """Load and decode a JSON artifact."""

        return json.loads(self.load_text(relative_path))

    def exists(self, relative_path: Path) -> bool:
        """Return whether the given artifact exists."""

        return (self.root / relative_path).exists()

    def remove_tree(self, relative_path: Path) -> bool:
        """Delete a directory subtree and report whether it existed."""

        path = self.root / relative_path
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True
