# magistral: Interactive application wiring storage, transport, executor, editor session and conversation behind a line-oriented REPL.

from __future__ import annotations

import asyncio
import pathlib
from typing import List, Optional

from .client import ClientConfig, StreamingClient
from .config import MAGISTRAL_HOME
from .context import Context, ConversationStore
from .diskfs import DiskStorage
from .editor import EditorSession
from .executor import ActionExecutor
from .orchestrator import Conversation
from .preview import build_preview
from .settings import load_settings
from .fs import normalize_path
from .storage import JsonFileStore, list_files
from .vfs import VirtualStorage

HELP_TEXT = """Commands:
  :help                Show this help
  :files               List workspace files
  :refresh             Rescan the workspace folder
  :open PATH           Open a file in the editor view
  :edit                Replace the open file's content (end with a '.' line)
  :new PATH            Create an empty file
  :mkdir PATH          Create a folder
  :model NAME          Switch the model for the next requests
  :preview [OUT]       Write the inlined preview document (default preview.html)
  :clear               Clear the conversation
  :quit                Exit
Anything else is sent to the assistant."""


class Magistral:
    def __init__(
        self,
        folder: Optional[pathlib.Path] = None,
        model: Optional[str] = None,
        home: pathlib.Path = MAGISTRAL_HOME,
        ctx: Optional[Context] = None,
    ) -> None:
        """
        Args:
            folder: Real directory to edit; virtual mode when None.
            model: Model override for this session.
            home: Directory for the virtual store and, in virtual mode, settings and history.
            ctx: Console context.

        Raises:
            ConfigurationError: no API key available.
        """
        self.ctx = ctx or Context()
        self.home = pathlib.Path(home)
        self.folder = pathlib.Path(folder).resolve() if folder else None
        settings_root = self.folder or self.home.parent
        self.settings = load_settings(settings_root)

        if self.folder:
            self.storage = DiskStorage(self.folder, self.ctx)
            store = ConversationStore(self.folder / ".magistral")
        else:
            self.storage = VirtualStorage(JsonFileStore(self.home / "store.json"), self.ctx)
            store = ConversationStore(self.home)

        config = ClientConfig.resolve(self.settings, model=model)
        if not config.httpcalls_dir and (settings_root / ".httpcalls").is_dir():
            config = config.model_copy(update={"httpcalls_dir": ".httpcalls"})
        if config.httpcalls_dir and not pathlib.Path(config.httpcalls_dir).is_absolute():
            config = config.model_copy(update={"httpcalls_dir": str(settings_root / config.httpcalls_dir)})
        self.client = StreamingClient(config, self.ctx)
        self.editor = EditorSession(self.storage, ctx=self.ctx)
        self.executor = ActionExecutor(self.storage, self.ctx, editor=self.editor)
        self.conversation = Conversation(self.client, self.storage, self.ctx, executor=self.executor, store=store)
        self._edit_lines: Optional[List[str]] = None

    async def start(self) -> None:
        if isinstance(self.storage, DiskStorage):
            await self.storage.open()
        else:
            self.storage.load()

    # -----------------------------
    # Commands
    # -----------------------------

    def cmd_files(self) -> None:
        files = list_files(self.storage.root)
        if not files:
            self.ctx.send_to_user("(no files)")
        for p in files:
            self.ctx.send_to_user(p)

    async def cmd_refresh(self) -> None:
        await self.storage.refresh()
        self.ctx.send_to_user(f"Workspace refreshed: {len(list_files(self.storage.root))} file(s).")

    async def cmd_open(self, path: str) -> None:
        if not await self.editor.open(path):
            self.ctx.error_message(f"Not found: {path}")
            return
        self.ctx.send_to_user(f"--- {self.editor.path} ({self.editor.language.value}) ---")
        self.ctx.send_to_user(self.editor.content)

    async def cmd_preview(self, out: str) -> None:
        html = await build_preview(self.storage)
        target = pathlib.Path(out)
        await asyncio.to_thread(target.write_text, html, encoding="utf-8")
        self.ctx.send_to_user(f"Preview written to {target.resolve()}")

    async def cmd_new(self, path: str) -> None:
        if await self.storage.read(path) is not None:
            self.ctx.error_message(f"Already exists: {path}")
            return
        if not await self.storage.write(path, ""):
            self.ctx.error_message(f"Could not create {path}")
            return
        await self.storage.refresh()
        self.ctx.send_to_user(f"Created {normalize_path(path)}")

    async def cmd_mkdir(self, path: str) -> None:
        if not await self.storage.create_folder(path):
            self.ctx.error_message(f"Could not create folder {path}")
            return
        await self.storage.refresh()
        self.ctx.send_to_user(f"Folder {normalize_path(path)}")

    def cmd_edit(self) -> None:
        if self.editor.path is None:
            self.ctx.error_message("No open file. Use :open PATH first.")
            return
        self._edit_lines = []
        self.ctx.send_to_user(f"Editing {self.editor.path}. Enter the new content; a single '.' line saves, ':abort' cancels.")

    def _edit_line(self, line: str) -> None:
        """Collect one line of :edit input; the terminating '.' hands the buffer to the editor."""
        if line.strip() == ":abort":
            self._edit_lines = None
            self.ctx.send_to_user("Edit discarded.")
            return
        if line.rstrip("\r\n") != ".":
            self._edit_lines.append(line.rstrip("\r\n"))
            return
        content = "\n".join(self._edit_lines)
        self._edit_lines = None
        self.editor.on_change(content)
        self.ctx.send_to_user(f"{self.editor.path} updated; saving in {self.editor.autosaver.delay:g}s.")

    @property
    def editing(self) -> bool:
        return self._edit_lines is not None

    async def handle_user_input(self, text: str) -> bool:
        """Execute a command or send a message. Returns False when the session should end."""
        if self.editing:
            self._edit_line(text)
            return True
        text = text.strip()
        if not text:
            return True
        if text.startswith(":"):
            parts = text.split(maxsplit=1)
            cmd = parts[0]
            arg = parts[1].strip() if len(parts) > 1 else ""
            if cmd == ":help":
                self.ctx.send_to_user(HELP_TEXT)
            elif cmd == ":files":
                self.cmd_files()
            elif cmd == ":refresh":
                await self.cmd_refresh()
            elif cmd == ":open":
                if not arg:
                    self.ctx.error_message("Usage: :open PATH")
                else:
                    await self.cmd_open(arg)
            elif cmd == ":edit":
                self.cmd_edit()
            elif cmd in (":new", ":mkdir"):
                if not arg:
                    self.ctx.error_message(f"Usage: {cmd} PATH")
                elif cmd == ":new":
                    await self.cmd_new(arg)
                else:
                    await self.cmd_mkdir(arg)
            elif cmd == ":model":
                if not arg:
                    self.ctx.send_to_user(f"Model: {self.client.model}")
                else:
                    self.client.set_model(arg)
                    self.ctx.send_to_user(f"Model set to {arg}")
            elif cmd == ":preview":
                await self.cmd_preview(arg or "preview.html")
            elif cmd == ":clear":
                self.conversation.clear()
            elif cmd == ":quit":
                self.ctx.send_to_user("Goodbye.")
                return False
            else:
                self.ctx.error_message(f"Unknown command: {cmd}. Type :help for help.")
            return True

        await self.conversation.send(text)
        self.ctx.send_to_user("")
        return True

    async def run(self) -> None:
        """Start the interactive REPL loop; input is only read while no turn is active."""
        await self.start()
        where = str(self.folder) if self.folder else f"virtual workspace ({self.home / 'store.json'})"
        self.ctx.send_to_user(f"Magistral ready on {where} with model {self.client.model}")
        self.ctx.send_to_user("Type :help for commands.")
        while True:
            try:
                text = await asyncio.to_thread(input, "... " if self.editing else "> ")
            except EOFError:
                self.ctx.send_to_user("\nGoodbye.")
                break
            if not await self.handle_user_input(text):
                break
        await self.editor.autosaver.flush()
