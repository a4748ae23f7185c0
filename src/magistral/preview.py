# magistral: Preview document builder. Finds the entry HTML file and inlines the local stylesheets and scripts it references so the result renders standalone.

from __future__ import annotations

import posixpath
import re
from typing import Callable, Optional

from .storage import Storage, find_first

DEFAULT_ENTRY = "/index.html"

PLACEHOLDER_HTML = (
    "<h1>No index.html found</h1>"
    "<p>Please create an index.html file to run the preview.</p>"
)

LINK_RE = re.compile(r"""<link[^>]+href=["']([^"']+)["'][^>]*>""", re.IGNORECASE)
SCRIPT_RE = re.compile(r"""<script[^>]+src=["']([^"']+)["'][^>]*>\s*</script>""", re.IGNORECASE)


def resolve_reference(base_dir: str, ref: str) -> Optional[str]:
    """
    Resolve an href/src against the entry document's folder.

    Returns None for references that are not workspace files (absolute URLs,
    protocol-relative URLs, data: URIs, fragments).
    """
    ref = ref.split("#", 1)[0].split("?", 1)[0].strip()
    if not ref or "://" in ref or ref.startswith("//") or ref.startswith("data:"):
        return None
    joined = ref if ref.startswith("/") else posixpath.join(base_dir, ref)
    return posixpath.normpath(joined)


async def _inline(
    html: str,
    pattern: re.Pattern,
    storage: Storage,
    base_dir: str,
    render: Callable[[str, str], Optional[str]],
) -> str:
    out = []
    last = 0
    for m in pattern.finditer(html):
        out.append(html[last:m.start()])
        replacement = None
        path = resolve_reference(base_dir, m.group(1))
        if path is not None:
            record = await storage.read(path)
            if record is not None:
                replacement = render(m.group(0), record.content)
        out.append(replacement if replacement is not None else m.group(0))
        last = m.end()
    out.append(html[last:])
    return "".join(out)


def _style(tag: str, content: str) -> Optional[str]:
    # Only stylesheets are inlined; icons and preloads keep their <link>.
    if "stylesheet" not in tag.lower():
        return None
    return f"<style>{content}</style>"


def _script(tag: str, content: str) -> Optional[str]:
    return f"<script>{content}</script>"


async def build_preview(storage: Storage, entry: str = DEFAULT_ENTRY) -> str:
    """
    Return a self-contained HTML document for the workspace.

    Uses `entry` when it exists, else the first .html file in the tree. A missing
    entry yields a placeholder document rather than an error.
    """
    record = await storage.read(entry)
    if record is None:
        found = find_first(storage.root, ".html")
        record = await storage.read(found) if found else None
    if record is None:
        return PLACEHOLDER_HTML

    base_dir = posixpath.dirname(record.path) or "/"
    html = await _inline(record.content, LINK_RE, storage, base_dir, _style)
    html = await _inline(html, SCRIPT_RE, storage, base_dir, _script)
    return html
