"""Track which files each image layer adds and deletes."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable

from . import timing

Hasher = Callable[[str], str]

_HTML_ESCAPES = {
    "&": "\\u0026",
    "<": "\\u003c",
    ">": "\\u003e",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode(value: Any) -> str:
    text = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in _HTML_ESCAPES.items():
        text = text.replace(raw, escaped)
    return text + "\n"


class LayeredMap:
    """Per-layer added files (path to hash) and deleted files over an image."""

    def __init__(self, hasher: Hasher) -> None:
        self._hasher = hasher
        self._adds: list[dict[str, str]] = []
        self._deletes: list[set[str]] = []
        self._current_image: dict[str, str] = {}
        self._current_valid = False
        self._layer_hash_cache: dict[str, str] = {}

    def snapshot(self) -> None:
        """Commit the top layer into the current image and start a new layer."""
        self._update_current_image()
        self._adds.append({})
        self._deletes.append(set())
        self._layer_hash_cache = {}

    def key(self) -> str:
        """A hash of the files added and deleted in the top layer."""
        adds = self._adds[-1] if self._adds else None
        deletes = {path: {} for path in self._deletes[-1]} if self._adds else None
        payload = (_encode(adds) + _encode(deletes)).encode("utf-8")
        return hashlib.sha256(payload).hexdigest()

    def _merged_image(self) -> dict[str, str]:
        if self._current_valid or not self._adds:
            return self._current_image
        merged = dict(self._current_image)
        merged.update(self._adds[-1])
        for path in self._deletes[-1]:
            merged.pop(path, None)
        return merged

    def _update_current_image(self) -> None:
        if self._current_valid:
            return
        self._current_image = self._merged_image()
        self._current_valid = True

    def get_current_paths(self) -> set[str]:
        """All paths present in the image including the top layer."""
        return set(self._merged_image())

    def _require_layer(self) -> None:
        if not self._adds:
            raise RuntimeError("no layer to modify; take a snapshot first")

    def add_delete(self, path: str) -> None:
        """Mark ``path`` as deleted in the top layer."""
        self._require_layer()
        self._current_valid = False
        self._deletes[-1].add(path)

    def add(self, path: str) -> None:
        """Record ``path`` with its hash in the top layer."""
        self._require_layer()
        self._current_valid = False
        digest = self._layer_hash_cache.get(path)
        if digest is None:
            try:
                digest = self._hasher(path)
            except Exception as err:
                raise RuntimeError(f"error creating hash for {path}: {err}") from err
        self._adds[-1][path] = digest

    def check_file_change(self, path: str) -> bool:
        """True if ``path`` is new or its hash differs from the committed image."""
        timer = timing.start("Hashing files")
        try:
            digest = self._hasher(path)
            self._layer_hash_cache[path] = digest
            previous = self._current_image.get(path)
            return previous is None or previous != digest
        finally:
            timing.DEFAULT_RUN.stop(timer)