# magistral: Path, JSON and line-count helpers shared by the storage backends, the conversation log and the executor.

import json
import os
import pathlib
from typing import Any, List, Optional


def split_path(path: str) -> Optional[List[str]]:
    """
    Split a slash-delimited logical path into its segments.

    Empty segments are discarded, so "/a/b", "a/b", "a//b/" all yield ["a", "b"].
    Returns None when a segment is "." or "..": such paths never resolve.
    """
    if not isinstance(path, str):
        return None
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    if any(p in (".", "..") for p in parts):
        return None
    return parts


def normalize_path(path: str) -> str:
    """Return the canonical "/a/b" form of a logical path ("" parts collapse to "/")."""
    parts = split_path(path) or []
    return "/" + "/".join(parts)


def count_lines(text: Optional[str]) -> int:
    """Count lines the way an editor gutter does: every "\\n" starts a new line; "" has none."""
    if not text:
        return 0
    return text.count("\n") + 1


# -----------------------------
# JSON documents
# -----------------------------

def read_json(path: pathlib.Path, default: Any) -> Any:
    """Load a JSON document; a missing or corrupt file yields `default`."""
    try:
        return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def write_json(path: pathlib.Path, obj: Any) -> None:
    """Replace the document at `path` in one step: serialise to a sibling temp file, then rename over."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.parent / f".{path.name}.{os.getpid()}.tmp"
    staging.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(staging, path)


def append_jsonl(path: pathlib.Path, obj: Any) -> None:
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = json.dumps(obj, ensure_ascii=False)
    with path.open("a", encoding="utf-8") as out:
        out.write(f"{record}\n")


# magistral: Invalid lines are skipped so one torn write does not lose the whole history.
def read_jsonl(path: pathlib.Path) -> List[Any]:
    """Parse every intact line of a JSONL log; a missing log is empty."""
    try:
        raw = pathlib.Path(path).read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    records: List[Any] = []
    for entry in filter(None, (r.strip() for r in raw)):
        try:
            records.append(json.loads(entry))
        except ValueError:
            pass
    return records
