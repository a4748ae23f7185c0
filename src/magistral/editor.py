# magistral: Editor collaborator boundary. EditorSession tracks the open file; AutoSaver persists edits once a quiet period passes without further changes.

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

from .config import AUTOSAVE_DELAY
from .context import Context
from .fs import normalize_path
from .models import Language
from .storage import Storage, detect_language


class AutoSaver:
    """
    Debounced persistence, one scheduled task per path.

    A new edit cancels the pending task for that path and re-arms it. Once a task
    has started writing it is no longer cancelled, and writes for the same path are
    serialised by a per-path lock, so two persists never overlap.
    """

    def __init__(self, storage: Storage, ctx: Optional[Context] = None, delay: float = AUTOSAVE_DELAY) -> None:
        self.storage = storage
        self.ctx = ctx or Context()
        self.delay = delay
        self._pending: Dict[str, asyncio.Task] = {}
        self._writing: Set[asyncio.Task] = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    def schedule(self, path: str, content: str) -> asyncio.Task:
        """Arm (or re-arm) the persist of `content` to `path`; must run inside an event loop."""
        path = normalize_path(path)
        previous = self._pending.get(path)
        if previous is not None and not previous.done() and previous not in self._writing:
            previous.cancel()
        task = asyncio.get_running_loop().create_task(self._persist(path, content))
        self._pending[path] = task
        return task

    async def _persist(self, path: str, content: str) -> bool:
        await asyncio.sleep(self.delay)
        task = asyncio.current_task()
        self._writing.add(task)
        try:
            lock = self._locks.setdefault(path, asyncio.Lock())
            async with lock:
                ok = await self.storage.write(path, content)
            if not ok:
                self.ctx.warn(f"Auto-save failed for {path}")
            else:
                self.ctx.log(f"Auto-saved {path}")
            return ok
        finally:
            self._writing.discard(task)
            if self._pending.get(path) is task:
                del self._pending[path]

    def pending(self, path: str) -> bool:
        task = self._pending.get(normalize_path(path))
        return task is not None and not task.done()

    async def flush(self) -> None:
        """Wait for every armed or running persist to finish."""
        while self._pending:
            tasks = list(self._pending.values())
            await asyncio.gather(*tasks, return_exceptions=True)
            for path, task in list(self._pending.items()):
                if task.done():
                    del self._pending[path]

    def cancel_all(self) -> None:
        for task in self._pending.values():
            if task not in self._writing:
                task.cancel()


class EditorSession:
    """The single open file shown to the user: (path, content, language)."""

    def __init__(self, storage: Storage, autosaver: Optional[AutoSaver] = None, ctx: Optional[Context] = None) -> None:
        self.storage = storage
        self.ctx = ctx or Context()
        self.autosaver = autosaver or AutoSaver(storage, self.ctx)
        self.path: Optional[str] = None
        self.content: str = ""
        self.language: Language = Language.plaintext

    async def open(self, path: str) -> bool:
        record = await self.storage.read(path)
        if record is None:
            return False
        self.path = record.path
        self.content = record.content
        self.language = record.language or detect_language(record.name)
        return True

    def on_change(self, content: str) -> Optional[asyncio.Task]:
        """Editor content changed; persisted after the quiet window."""
        if self.path is None:
            return None
        self.content = content
        return self.autosaver.schedule(self.path, content)

    async def reload(self) -> None:
        """Re-read the open file, since an action batch may have changed it underneath."""
        if self.path is None:
            return
        if self.autosaver.pending(self.path):
            # A local edit is about to be persisted; it wins over the stored copy.
            return
        record = await self.storage.read(self.path)
        if record is not None:
            self.content = record.content
