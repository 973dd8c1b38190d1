"""Virtual file tree handed to the external renderer.

The renderer never touches the archive format: it asks for `style.oca`
and receives freshly assembled archive bytes for the in-memory bundle,
and asks for `data.json` to get the caller's data document. Other paths
resolve below the configured root directory.

Template sources are cached per path together with a content
fingerprint. One lock guards the cache; reset() marks every slot
unaccessed at the start of a render pass, and a slot is replaced when
the file's fingerprint no longer matches.
"""

from __future__ import annotations

import copy
import hashlib
import json
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Union

from ocabundle.config import DEFAULT_CONFIG, BundleConfig
from ocabundle.kernel.models import Bundle
from ocabundle._internal.io.archive import write_archive

BUNDLE_PATH = "style.oca"
DATA_PATH = "data.json"
MAIN_PATH = "main.typ"


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class _Slot:
    fingerprint: str
    text: str
    accessed: bool


class RenderWorld:
    """Read-only file accessor for one bundle and one data document."""

    def __init__(
        self,
        root: Union[str, Path],
        data: Any,
        bundle: Bundle,
        main_source: str,
        config: BundleConfig = DEFAULT_CONFIG,
    ):
        self.root = Path(root)
        self.data = data
        self.bundle = bundle
        self.main_source = main_source
        self.config = config
        self._lock = threading.Lock()
        self._sources: Dict[str, _Slot] = {}

    def _resolve(self, path: str) -> Path:
        posix_path = PurePosixPath(path.replace("\\", "/"))
        if posix_path.is_absolute() or ".." in posix_path.parts:
            raise PermissionError(f"Path must stay below the render root: {path}")
        return self.root.joinpath(*posix_path.parts)

    def file(self, path: str) -> bytes:
        """Return the bytes behind a virtual path."""
        if path == BUNDLE_PATH:
            # Packing mutates digests; hand the renderer a copy.
            return write_archive(copy.deepcopy(self.bundle), self.config)
        if path == DATA_PATH:
            return json.dumps(self.data, ensure_ascii=False).encode("utf-8")
        resolved = self._resolve(path)
        try:
            return resolved.read_bytes()
        except FileNotFoundError:
            raise FileNotFoundError(f"File not found: {resolved}") from None

    def source(self, path: str) -> str:
        """Return template source text, reusing the cached slot when current."""
        with self._lock:
            slot = self._sources.get(path)
            if slot is not None and slot.accessed:
                return slot.text
            if path == MAIN_PATH:
                return self.main_source

            resolved = self._resolve(path)
            try:
                text = resolved.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise FileNotFoundError(f"File not found: {resolved}") from None

            current = fingerprint(text)
            if slot is None:
                slot = _Slot(fingerprint=current, text=text, accessed=True)
                self._sources[path] = slot
            elif slot.fingerprint != current:
                slot.fingerprint = current
                slot.text = text
            slot.accessed = True
            return slot.text

    def reset(self) -> None:
        """Mark every cached source unaccessed (call before each render pass)."""
        with self._lock:
            for slot in self._sources.values():
                slot.accessed = False

    def cached_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._sources)

    def is_accessed(self, path: str) -> bool:
        with self._lock:
            slot = self._sources.get(path)
            return slot is not None and slot.accessed
