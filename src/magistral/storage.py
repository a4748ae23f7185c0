# magistral: Storage capability shared by the virtual and on-disk backends, plus language detection, tree walkers and the durable key-value stores that back virtual mode.

from __future__ import annotations

import pathlib
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .fs import read_json, write_json
from .models import FileNode, FileRecord, FolderNode, Language

_EXTENSION_LANGUAGES: Dict[str, Language] = {
    "js": Language.javascript,
    "jsx": Language.javascript,
    "mjs": Language.javascript,
    "ts": Language.typescript,
    "tsx": Language.typescript,
    "html": Language.html,
    "htm": Language.html,
    "css": Language.css,
    "json": Language.json,
    "md": Language.markdown,
    "py": Language.python,
    "java": Language.java,
    "xml": Language.xml,
    "php": Language.php,
    "sql": Language.sql,
    "yaml": Language.yaml,
    "yml": Language.yaml,
}


def detect_language(name: str) -> Language:
    """Map a file name's extension to an editor language tag; unknown maps to plaintext."""
    base = (name or "").rsplit("/", 1)[-1]
    if "." not in base:
        return Language.plaintext
    ext = base.rsplit(".", 1)[-1].lower()
    return _EXTENSION_LANGUAGES.get(ext, Language.plaintext)


@runtime_checkable
class Storage(Protocol):
    """
    Uniform asynchronous file operations over a logical slash-delimited tree.

    Misses are values, not exceptions: read returns None and the mutators
    return False when the path does not resolve.
    """

    mode: str

    @property
    def root(self) -> FolderNode:
        """Tree used for presentation; in real mode a cache refreshed by refresh()."""
        ...

    async def read(self, path: str) -> Optional[FileRecord]:
        ...

    async def write(self, path: str, content: str) -> bool:
        ...

    async def create_folder(self, path: str) -> bool:
        ...

    async def delete(self, path: str) -> bool:
        ...

    async def refresh(self) -> None:
        ...


def list_files(root: FolderNode) -> List[str]:
    """Return the sorted logical paths ("/a/b.js") of every file in the tree."""
    out: List[str] = []

    def _walk(node: FolderNode, prefix: str) -> None:
        for name, child in node.children.items():
            path = f"{prefix}/{name}"
            if isinstance(child, FileNode):
                out.append(path)
            else:
                _walk(child, path)

    _walk(root, "")
    return sorted(out)


def find_first(root: FolderNode, suffix: str) -> Optional[str]:
    """Depth-first search in insertion order for the first file whose name ends with suffix."""
    suffix = suffix.lower()

    def _walk(node: FolderNode, prefix: str) -> Optional[str]:
        for name, child in node.children.items():
            path = f"{prefix}/{name}"
            if isinstance(child, FileNode):
                if name.lower().endswith(suffix):
                    return path
            else:
                found = _walk(child, path)
                if found:
                    return found
        return None

    return _walk(root, "")


# -----------------------------
# Durable key-value stores
# -----------------------------

class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryStore:
    """Process-local key-value store; values are kept as given."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileStore:
    """
    Key-value store persisted as a single JSON document.

    Every set() rewrites the document atomically (temp file + replace), so a crash
    leaves either the previous or the new snapshot on disk.
    """

    def __init__(self, path: pathlib.Path) -> None:
        self.path = pathlib.Path(path)

    def get(self, key: str) -> Optional[Any]:
        data = read_json(self.path, {})
        if not isinstance(data, dict):
            return None
        return data.get(key)

    def set(self, key: str, value: Any) -> None:
        data = read_json(self.path, {})
        if not isinstance(data, dict):
            data = {}
        data[key] = value
        write_json(self.path, data)
