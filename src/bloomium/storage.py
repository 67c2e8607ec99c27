"""storage.py

Storage sink for tiles and JSON records.

Paths are '/'-separated keys relative to the storage root, e.g.
  {aoi_id}/{date}/tiles/{layer}/{z}/{x}/{y}.png
  {aoi_id}/{date}/meta.json
Writes are independent per key; there is no cross-file transaction.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List

JSON_CONTENT_TYPE = "application/json"


class Storage(ABC):
    @abstractmethod
    def write(self, path: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    def read(self, path: str) -> bytes: ...

    @abstractmethod
    def exists(self, path: str) -> bool: ...

    @abstractmethod
    def list(self, prefix: str) -> List[str]: ...

    @abstractmethod
    def listdir(self, prefix: str) -> List[str]: ...

    def write_json(self, path: str, obj: Any) -> None:
        self.write(path, json.dumps(obj, indent=2).encode("utf-8"), JSON_CONTENT_TYPE)

    def read_json(self, path: str) -> Any:
        return json.loads(self.read(path).decode("utf-8"))


class LocalStorage(Storage):
    """Filesystem-backed sink rooted at `root`."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _full(self, path: str) -> Path:
        rel = Path(path.lstrip("/"))
        if ".." in rel.parts:
            raise ValueError(f"Storage path escapes root: {path}")
        return self.root / rel

    def write(self, path: str, data: bytes, content_type: str) -> None:
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

    def read(self, path: str) -> bytes:
        return self._full(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._full(path).is_file()

    def list(self, prefix: str) -> List[str]:
        """Sorted keys of every file under `prefix` (a directory-style prefix)."""
        base = self._full(prefix)
        if not base.is_dir():
            return []
        return sorted(p.relative_to(self.root).as_posix() for p in base.rglob("*") if p.is_file())

    def listdir(self, prefix: str) -> List[str]:
        """Sorted names of the immediate sub-directories of `prefix` (not recursive)."""
        base = self._full(prefix)
        if not base.is_dir():
            return []
        return sorted(p.name for p in base.iterdir() if p.is_dir())
