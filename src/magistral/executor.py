# magistral: Action executor. Applies a canonical action batch to storage strictly in order, computes per-action line statistics, and turns a read_file into a tool-result continuation that ends the batch.

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from .context import Context
from .fs import count_lines, normalize_path
from .models import Action, ActionResult, ActionType, ChangeStats, ChatMessage, ExecutionReport
from .storage import Storage, list_files

if TYPE_CHECKING:
    from .editor import EditorSession

NOT_FOUND_CONTENT = "// Not found"

_CARD_LABELS = {
    ActionType.read_file.value: "Analyzed",
    ActionType.create_file.value: "Created",
    ActionType.delete_file.value: "Deleted",
    ActionType.create_folder.value: "Folder",
}


def update_stats(old_content: str, new_content: str) -> ChangeStats:
    """Line-count delta for an overwrite; equal counts report +1/-1 (changed, same length)."""
    delta = count_lines(new_content) - count_lines(old_content)
    if delta > 0:
        return ChangeStats(added=delta, removed=0)
    if delta < 0:
        return ChangeStats(added=0, removed=-delta)
    return ChangeStats(added=1, removed=1)


def slice_lines(content: str, start_line: Optional[int], end_line: Optional[int]) -> str:
    """Return the 1-based inclusive [start_line, end_line] range, clamped to the file."""
    if start_line is None and end_line is None:
        return content
    lines = content.split("\n")
    start = max(1, start_line or 1)
    end = min(len(lines), end_line if end_line is not None else len(lines))
    if end < start:
        return ""
    return "\n".join(lines[start - 1:end])


def tool_result_message(path: str, content: str) -> ChatMessage:
    return ChatMessage(role="system", content=f"[Tool Result] {path} Content:\n```\n{content}\n```")


def describe_action(action: Action, stats: ChangeStats) -> str:
    """One-line action card, e.g. "Created  JS  app.js  +12"."""
    label = _CARD_LABELS.get(action.type, "Edited")
    name = (action.path or "unknown.txt").rstrip("/").rsplit("/", 1)[-1]
    ext = name.rsplit(".", 1)[-1].upper() if "." in name else "-"
    if action.type == ActionType.read_file.value:
        detail = f"Read lines {action.start_line or 1}-{action.end_line or 'end'}"
    elif action.type == ActionType.create_folder.value:
        detail = ""
    else:
        parts = []
        if stats.added > 0:
            parts.append(f"+{stats.added}")
        if stats.removed > 0:
            parts.append(f"-{stats.removed}")
        detail = " ".join(parts) or "~"
    return "  ".join(p for p in (label, ext, name, detail) if p)


class ActionExecutor:
    """
    Sequential applier for one action batch.

    Actions never run concurrently: later actions may depend on the filesystem
    effects of earlier ones. A read_file stops the batch; the remaining actions are
    reported as skipped and the tool-result message is returned for the next turn.
    """

    def __init__(self, storage: Storage, ctx: Optional[Context] = None, editor: Optional["EditorSession"] = None) -> None:
        self.storage = storage
        self.ctx = ctx or Context()
        self.editor = editor

    async def execute(self, actions: List[Action]) -> ExecutionReport:
        report = ExecutionReport()
        mutated = False
        for i, action in enumerate(actions):
            if action.type == ActionType.read_file.value:
                path = normalize_path(action.path or "")
                record = await self.storage.read(path)
                content = slice_lines(record.content, action.start_line, action.end_line) if record else NOT_FOUND_CONTENT
                report.results.append(ActionResult(action=action, ok=record is not None))
                report.continuation = tool_result_message(action.path or path, content)
                report.skipped.extend(actions[i + 1:])
                self.ctx.send_to_user(describe_action(action, ChangeStats()))
                if report.skipped:
                    self.ctx.log(f"read_file ends the batch; {len(report.skipped)} action(s) not applied")
                if mutated:
                    await self.storage.refresh()
                return report

            if not action.path:
                self.ctx.warn(f"Skipping {action.type} without path")
                report.skipped.append(action)
                continue

            result = await self._apply(action)
            if result is None:
                report.skipped.append(action)
                continue
            report.results.append(result)
            if result.ok:
                mutated = True
                self.ctx.send_to_user(describe_action(action, result.stats))
            else:
                self.ctx.warn(f"{action.type} failed for {action.path}")

        await self.refresh()
        return report

    async def _apply(self, action: Action) -> Optional[ActionResult]:
        path = action.path
        if action.type == ActionType.create_file.value:
            content = action.content or ""
            ok = await self.storage.write(path, content)
            stats = ChangeStats(added=count_lines(content)) if ok else ChangeStats()
        elif action.type == ActionType.update_file.value:
            content = action.content or ""
            old = await self.storage.read(path)
            ok = await self.storage.write(path, content)
            stats = update_stats(old.content if old else "", content) if ok else ChangeStats()
        elif action.type == ActionType.delete_file.value:
            old = await self.storage.read(path)
            ok = await self.storage.delete(path)
            stats = ChangeStats(removed=count_lines(old.content if old else "")) if ok else ChangeStats()
        elif action.type == ActionType.create_folder.value:
            ok = await self.storage.create_folder(path)
            stats = ChangeStats()
        else:
            self.ctx.warn(f"Ignoring unknown action type: {action.type}")
            return None
        return ActionResult(action=action, ok=ok, stats=stats)

    async def refresh(self) -> None:
        """Rescan storage, then tell the presentation layer and the open editor to reload."""
        await self.storage.refresh()
        self.ctx.files_changed(list_files(self.storage.root))
        if self.editor is not None:
            await self.editor.reload()
