# magistral: Action protocol parser. Locates the single action batch in a model response, recovers it from truncated or trailing-garbage JSON, and normalizes the dialects models emit into canonical Action objects.

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .context import Context
from .models import PATHLESS_TYPES, Action, ActionType

KNOWN_ACTION_TYPES = tuple(t.value for t in ActionType)

# Either fence style, tag matched case-insensitively; the first fenced block wins.
FENCED_JSON_RE = re.compile(r"~~~json\s*([\s\S]*?)\s*~~~|```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
RAW_ACTIONS_RE = re.compile(r'\{\s*"actions"\s*:')
RAW_UPDATE_FILE_RE = re.compile(r'\{\s*"update_file"\s*:')


# -----------------------------
# Lenient JSON
# -----------------------------

def parse_json_or_truncate(text: str) -> Optional[Any]:
    """
    Parse text as JSON; on failure cut it after the last "}" and try exactly once more.

    Returns None when both attempts fail.
    """
    try:
        return json.loads(text)
    except ValueError:
        pass
    cut = text.rfind("}")
    if cut == -1:
        return None
    try:
        return json.loads(text[: cut + 1])
    except ValueError:
        return None


def recover_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort recovery of a JSON object from streamed tool-call arguments.

    A direct parse is tried first. Failing that, every "}" is tried as the end of the
    document, scanning backward from the end of the text; the first prefix that
    parses to an object wins. Bounded by the number of "}" characters in the input.
    """
    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj
    except ValueError:
        pass
    i = text.rfind("}")
    while i >= 1:
        try:
            obj = json.loads(text[: i + 1])
            if isinstance(obj, dict):
                return obj
        except ValueError:
            pass
        i = text.rfind("}", 0, i)
    return None


# -----------------------------
# Batch location
# -----------------------------

def _strip_fences(candidate: str) -> str:
    s = candidate.strip()
    for fence in ("```json", "~~~json"):
        if s[:7].lower() == fence:
            s = s[7:]
    for fence in ("```", "~~~"):
        if s.endswith(fence):
            s = s[: -len(fence)]
    return s.strip()


def extract_action_block(text: str) -> Optional[str]:
    """
    Return the raw text of the one action batch in a response, or None.

    Priority: the first fenced ```json / ~~~json block; else the last raw
    `{"actions": ...` object through the end of the text; else the last legacy
    `{"update_file": ...` object.
    """
    if not text:
        return None
    m = FENCED_JSON_RE.search(text)
    if m:
        return _strip_fences(m.group(1) if m.group(1) is not None else m.group(2))
    for pattern in (RAW_ACTIONS_RE, RAW_UPDATE_FILE_RE):
        last = None
        for last in pattern.finditer(text):
            pass
        if last is not None:
            return _strip_fences(text[last.start():])
    return None


# -----------------------------
# Normalization
# -----------------------------

def _path_from(args: Dict[str, Any]) -> Optional[str]:
    for key in ("path", "filename", "file"):
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _flatten(action_type: str, args: Any) -> Dict[str, Any]:
    if isinstance(args, str):
        return {"type": action_type, "path": args}
    if not isinstance(args, dict):
        return {"type": action_type}
    flat = dict(args)
    flat["type"] = action_type
    path = _path_from(args)
    if path:
        flat["path"] = path
    return flat


def _normalize_element(element: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(element, dict):
        return None
    if "type" not in element and len(element) == 1:
        key = next(iter(element))
        return _flatten(key, element[key])
    a = dict(element)
    if not a.get("path") and a.get("file"):
        a["path"] = a["file"]
    if not a.get("type") and a.get("operation"):
        op = a["operation"]
        a["type"] = "create_file" if op == "create" else ("update_file" if op == "update" else op)
    path = _path_from(a)
    if path:
        a["path"] = path
    return a


def normalize_batch(doc: Any, ctx: Optional[Context] = None) -> List[Action]:
    """
    Turn a parsed command document into an ordered list of canonical actions.

    Accepted shapes: {"actions": [...]}; a top-level object keyed by a single
    known action name ({"update_file": {...}}); list elements either canonical,
    single-key wrappers ({"update_file": {...}}), or using file/operation/filename
    aliases. Elements without a resolvable path are dropped unless they create a
    file or folder.
    """
    ctx = ctx or Context()
    if not isinstance(doc, dict):
        return []
    raw = doc.get("actions")
    if not isinstance(raw, list):
        known = [k for k in doc if k in KNOWN_ACTION_TYPES]
        if len(known) != 1:
            return []
        raw = [{known[0]: doc[known[0]]}]

    actions: List[Action] = []
    for element in raw:
        a = _normalize_element(element)
        if a is None or not isinstance(a.get("type"), str) or not a["type"]:
            ctx.warn(f"Skipping malformed action: {element!r}"[:300])
            continue
        if not isinstance(a.get("path"), str):
            a.pop("path", None)
        if not a.get("path") and a["type"] not in PATHLESS_TYPES:
            ctx.warn(f"Skipping action without path: {a['type']}")
            continue
        try:
            actions.append(Action.model_validate(a))
        except ValidationError as e:
            ctx.warn(f"Skipping invalid {a['type']} action: {e.error_count()} error(s)")
    return actions


def parse_actions(text: str, ctx: Optional[Context] = None) -> List[Action]:
    """
    Extract and normalize the action batch of one response.

    A response without a batch, or whose batch cannot be parsed even after
    truncation, yields [] (prose-only turn), never an exception.
    """
    ctx = ctx or Context()
    block = extract_action_block(text)
    if block is None:
        return []
    doc = parse_json_or_truncate(block)
    if doc is None:
        ctx.warn("Action batch is not valid JSON; treating response as prose only")
        return []
    return normalize_batch(doc, ctx)
