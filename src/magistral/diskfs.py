# magistral: On-disk storage backend. Every operation resolves the logical path against the workspace directory on demand; blocking filesystem calls run in a worker thread so the control flow only awaits them.

from __future__ import annotations

import asyncio
import contextlib
import os
import pathlib
import shutil
import uuid
from typing import Optional, Tuple

from .context import Context
from .fs import normalize_path, split_path
from .models import FileNode, FileRecord, FolderNode
from .storage import detect_language

# Directories never mirrored into the presentation tree.
PRUNED_DIRS = (".git", ".magistral")

# Suffix of in-progress write files; never mirrored.
TEMP_SUFFIX = ".magistral-tmp"


class DiskStorage:
    """
    Workspace backed by a real directory.

    `root` is a mirror of the directory tree for presentation only. It is rebuilt by
    refresh() (on open and after every applied action batch) and may be stale in
    between; reads and writes always go to disk.
    """

    mode = "real"

    def __init__(self, directory: pathlib.Path, ctx: Optional[Context] = None) -> None:
        self.directory = pathlib.Path(directory).resolve()
        self.ctx = ctx or Context()
        self._root = FolderNode(name=self.directory.name or "root")

    @property
    def root(self) -> FolderNode:
        return self._root

    async def open(self) -> "DiskStorage":
        if not self.directory.is_dir():
            raise NotADirectoryError(str(self.directory))
        await self.refresh()
        return self

    # -----------------------------
    # Path resolution
    # -----------------------------

    def _inside(self, p: pathlib.Path) -> bool:
        try:
            p.resolve().relative_to(self.directory)
        except ValueError:
            return False
        return True

    def _resolve(self, path: str, create: bool) -> Optional[Tuple[pathlib.Path, str]]:
        """
        Walk all but the last segment as directories, creating them when `create` is set.

        Returns (parent_dir, leaf_name) or None when an intermediate directory is
        missing (and not created) or the path leaves the workspace through a symlink.
        """
        parts = split_path(path)
        if not parts:
            return None
        current = self.directory
        for part in parts[:-1]:
            nxt = current / part
            if not nxt.is_dir():
                if not create or nxt.exists():
                    return None
                nxt.mkdir()
            if not self._inside(nxt):
                return None
            current = nxt
        target = current / parts[-1]
        if target.exists() and not self._inside(target):
            return None
        return current, parts[-1]

    # -----------------------------
    # Blocking implementations
    # -----------------------------

    def _read_sync(self, path: str) -> Optional[FileRecord]:
        loc = self._resolve(path, create=False)
        if not loc:
            return None
        parent, name = loc
        target = parent / name
        if not target.is_file():
            return None
        try:
            text = target.read_bytes().decode("utf-8", errors="replace")
        except OSError as e:
            self.ctx.warn(f"Could not read {normalize_path(path)}: {e}")
            return None
        return FileRecord(path=normalize_path(path), name=name, content=text, language=detect_language(name))

    def _write_sync(self, path: str, content: str) -> bool:
        tmp = None
        try:
            loc = self._resolve(path, create=True)
            if not loc:
                return False
            parent, name = loc
            target = parent / name
            if target.is_dir():
                return False
            # Write-and-commit: the target only changes once the temp file is complete.
            tmp = parent / f".{name}.{uuid.uuid4().hex}{TEMP_SUFFIX}"
            with tmp.open("w", encoding="utf-8", newline="") as f:
                f.write(content)
            tmp.replace(target)
            return True
        except OSError as e:
            self.ctx.warn(f"Could not write {normalize_path(path)}: {e}")
            if tmp is not None:
                with contextlib.suppress(OSError):
                    tmp.unlink(missing_ok=True)
            return False

    def _create_folder_sync(self, path: str) -> bool:
        try:
            loc = self._resolve(path, create=False)
            if not loc:
                return False
            parent, name = loc
            target = parent / name
            if target.exists() and not target.is_dir():
                return False
            target.mkdir(exist_ok=True)
            return True
        except OSError as e:
            self.ctx.warn(f"Could not create folder {normalize_path(path)}: {e}")
            return False

    def _delete_sync(self, path: str) -> bool:
        try:
            loc = self._resolve(path, create=False)
            if not loc:
                return False
            parent, name = loc
            target = parent / name
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
                return True
            if target.exists() or target.is_symlink():
                target.unlink()
                return True
            return False
        except OSError as e:
            self.ctx.warn(f"Could not delete {normalize_path(path)}: {e}")
            return False

    def _scan(self, directory: pathlib.Path, name: str) -> FolderNode:
        """Mirror one directory; unreadable entries are warned about and left out."""
        node = FolderNode(name=name)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self.ctx.warn(f"Could not list {directory}: {e}")
            return node
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in PRUNED_DIRS:
                        continue
                    node.children[entry.name] = self._scan(pathlib.Path(entry.path), entry.name)
                elif entry.is_file():
                    if entry.name.endswith(TEMP_SUFFIX):
                        continue
                    node.children[entry.name] = FileNode(name=entry.name, language=detect_language(entry.name))
            except OSError as e:
                self.ctx.warn(f"Skipping {entry.path}: {e}")
        return node

    # -----------------------------
    # Async contract
    # -----------------------------

    async def read(self, path: str) -> Optional[FileRecord]:
        return await asyncio.to_thread(self._read_sync, path)

    async def write(self, path: str, content: str) -> bool:
        return await asyncio.to_thread(self._write_sync, path, content if content is not None else "")

    async def create_folder(self, path: str) -> bool:
        return await asyncio.to_thread(self._create_folder_sync, path)

    async def delete(self, path: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, path)

    async def refresh(self) -> None:
        self._root = await asyncio.to_thread(self._scan, self.directory, self.directory.name or "root")
