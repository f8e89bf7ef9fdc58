"""Content store: cached source text keyed by string.

``FileContentStore`` keeps each object as a file under a root directory with
its metadata in a ``<file>.meta.json`` sidecar. Keys are slash-separated
relative paths (e.g. ``sources/<id>/content.html``); keys that would escape
the root are rejected.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

_META_SUFFIX = ".meta.json"


def default_content_key(source_id: str) -> str:
    """Key used for a source whose record has no explicit ``content_key``."""
    return f"sources/{source_id}/content.html"


class ContentStore(ABC):
    """Key/value store for cached source content."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return the stored bytes for *key*, or None if absent."""

    @abstractmethod
    def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        """Store *data* (and optional *metadata*) under *key*, replacing any existing object."""

    def get_text(self, key: str) -> str | None:
        """Return the object under *key* decoded as UTF-8, or None if absent."""
        data = self.get(key)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")


class FileContentStore(ContentStore):
    """Directory-backed content store.

    Args:
        root: Directory holding the objects (created on first write).
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise ValueError(f"Invalid content key: {key!r}")
        root = self.root.resolve()
        path = (root / key).resolve()
        if path == root or root not in path.parents:
            raise ValueError(f"Content key escapes the store root: {key!r}")
        return path

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        meta_path = path.with_name(path.name + _META_SUFFIX)
        if metadata:
            meta_path.write_text(json.dumps(metadata, sort_keys=True), encoding="utf-8")
        elif meta_path.exists():
            meta_path.unlink()
        logger.debug("Stored %d bytes under %s", len(data), key)

    def get_metadata(self, key: str) -> dict[str, str] | None:
        """Return the metadata stored with *key*, or None if the object is absent."""
        path = self._path(key)
        if not path.exists():
            return None
        meta_path = path.with_name(path.name + _META_SUFFIX)
        if not meta_path.exists():
            return {}
        return json.loads(meta_path.read_text(encoding="utf-8"))

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_name(path.name + _META_SUFFIX).unlink(missing_ok=True)
