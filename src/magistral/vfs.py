# magistral: Virtual storage backend: an in-memory FolderNode tree persisted to a key-value store after every mutation.

from __future__ import annotations

from typing import Dict, Optional, Tuple

from pydantic import ValidationError

from .config import VFS_STORAGE_KEY
from .context import Context
from .fs import normalize_path, split_path
from .models import FileNode, FileRecord, FolderNode, Node
from .storage import KeyValueStore, detect_language

SEED_FILES = (
    ("/welcome.md", '# Local VFS\nUse "--folder PATH" to edit real files.'),
    ("/demo.js", '// Try asking the AI to refactor this!\nfunction hello() {\n  console.log("Hello World");\n}'),
)


class VirtualStorage:
    """
    Tree-of-objects workspace. Operations are synchronous underneath but exposed
    with the same async contract as the on-disk backend.
    """

    mode = "virtual"

    def __init__(self, store: KeyValueStore, ctx: Optional[Context] = None, key: str = VFS_STORAGE_KEY) -> None:
        self.store = store
        self.ctx = ctx or Context()
        self.key = key
        self._root = FolderNode(name="root")

    @property
    def root(self) -> FolderNode:
        return self._root

    def load(self) -> None:
        """Restore the tree from the store, seeding two files when no snapshot exists."""
        data = self.store.get(self.key)
        if data is not None:
            try:
                self._root = FolderNode.model_validate(data)
                return
            except ValidationError as e:
                self.ctx.warn(f"Discarding unreadable workspace snapshot: {e.error_count()} error(s)")
        self._root = FolderNode(name="root")
        for path, content in SEED_FILES:
            resolved = self._resolve(path)
            if resolved:
                parent, name = resolved
                parent.children[name] = FileNode(name=name, content=content, language=detect_language(name))
        self.save()

    def save(self) -> bool:
        """Persist the whole tree; a store failure is reported and returns False."""
        try:
            self.store.set(self.key, self._root.model_dump(mode="json"))
        except OSError as e:
            self.ctx.warn(f"Could not persist workspace: {e}")
            return False
        return True

    # magistral: Resolution walks every segment but the last as an existing folder; a miss is a None result.
    def _resolve(self, path: str) -> Optional[Tuple[FolderNode, str]]:
        parts = split_path(path)
        if not parts:
            return None
        current = self._root
        for part in parts[:-1]:
            child = current.children.get(part)
            if not isinstance(child, FolderNode):
                return None
            current = child
        return current, parts[-1]

    def _commit(self, parent: FolderNode, before: Dict[str, Node]) -> bool:
        # Memory and snapshot must agree: an unsaved mutation is undone.
        if self.save():
            return True
        parent.children.clear()
        parent.children.update(before)
        return False

    async def read(self, path: str) -> Optional[FileRecord]:
        resolved = self._resolve(path)
        if not resolved:
            return None
        parent, name = resolved
        node = parent.children.get(name)
        if not isinstance(node, FileNode):
            return None
        return FileRecord(path=normalize_path(path), name=node.name, content=node.content, language=node.language)

    async def write(self, path: str, content: str) -> bool:
        resolved = self._resolve(path)
        if not resolved:
            return False
        parent, name = resolved
        if isinstance(parent.children.get(name), FolderNode):
            return False
        before = dict(parent.children)
        parent.children[name] = FileNode(name=name, content=content if content is not None else "", language=detect_language(name))
        return self._commit(parent, before)

    async def create_folder(self, path: str) -> bool:
        resolved = self._resolve(path)
        if not resolved:
            return False
        parent, name = resolved
        existing = parent.children.get(name)
        if isinstance(existing, FolderNode):
            return True
        if isinstance(existing, FileNode):
            return False
        before = dict(parent.children)
        parent.children[name] = FolderNode(name=name)
        return self._commit(parent, before)

    async def delete(self, path: str) -> bool:
        resolved = self._resolve(path)
        if not resolved:
            return False
        parent, name = resolved
        if name not in parent.children:
            return False
        before = dict(parent.children)
        del parent.children[name]
        return self._commit(parent, before)

    async def refresh(self) -> None:
        # The in-memory tree is the source of truth; nothing to rescan.
        return None
