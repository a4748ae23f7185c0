# magistral: Console I/O Context (the presentation seam every component reports through) and the JSONL conversation store.

import pathlib
import shutil
import sys
import time
from typing import Any, Dict, List, Optional

from .config import CONV_CAP_TURNS
from .fs import append_jsonl, read_jsonl


class Context:
    """
    Thin wrapper around console I/O and logging.

    Components never print directly; a GUI or test double subclasses Context and
    overrides the hooks it cares about.
    """

    def __init__(self, verbose: bool = False) -> None:
        """Initialize a console context; verbose enables [LOG] trace lines."""
        self.verbose = verbose

    def send_to_user(self, message: str) -> None:
        """Send a user-facing message to stdout."""
        print(message)

    def log(self, message: str) -> None:
        """Emit a lightweight trace line to stdout when verbose."""
        if self.verbose:
            print(f"[LOG] {message}")

    def warn(self, message: str) -> None:
        """Report a recoverable anomaly (dropped action, unparseable tool arguments) to stderr."""
        print(f"[WARN] {message}", file=sys.stderr)

    def error_message(self, message: str) -> None:
        """Print an error message to stderr."""
        print(f"Error: {message}", file=sys.stderr)

    def status(self, message: str) -> None:
        """Transient transport status, e.g. rate-limit backoff."""
        print(f"... {message}")

    def stream_chunk(self, chunk: str, kind: str) -> None:
        """Render one streamed fragment; kind is "text" or "thinking"."""
        if kind == "thinking" and not self.verbose:
            return
        sys.stdout.write(chunk)
        sys.stdout.flush()

    def files_changed(self, paths: List[str]) -> None:
        """Called after an action batch was applied and the tree refreshed."""
        self.log(f"Workspace refreshed ({len(paths)} files)")


class ConversationStore:
    """
    Append-only JSONL log of the conversation history.

    The orchestrator appends every message it stores in memory; on start the log
    is loaded and trimmed to the most recent CONV_CAP_TURNS entries.
    """

    def __init__(self, home: pathlib.Path, cap: int = CONV_CAP_TURNS) -> None:
        self.home = pathlib.Path(home)
        self.conv_file = self.home / "conversation.jsonl"
        self.cap = cap

    def load_history(self) -> List[Dict[str, Any]]:
        """Load the conversation history and keep only the most recent `cap` entries."""
        hist = [h for h in read_jsonl(self.conv_file) if isinstance(h, dict)]
        if len(hist) > self.cap:
            hist = hist[-self.cap:]
        return hist

    def append_history(self, role: str, content: str, extra: Optional[Dict[str, Any]] = None) -> None:
        """Append a role/content entry stamped with the current time."""
        entry = {"ts": time.time(), "role": role, "content": content}
        if extra:
            entry.update(extra)
        append_jsonl(self.conv_file, entry)

    def clear_history(self) -> None:
        """Rotate the current log to a timestamped .bak.jsonl file if present."""
        if self.conv_file.exists():
            backup = self.conv_file.with_name(f"{self.conv_file.stem}-{int(time.time())}.bak.jsonl")
            shutil.move(str(self.conv_file), str(backup))
