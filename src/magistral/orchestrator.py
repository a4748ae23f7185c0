# magistral: Conversation orchestrator. Owns the message history and drives one turn: send, stream, parse actions, execute, and loop on read_file continuations up to a depth limit.

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from .client import StreamingClient
from .config import MAX_TOOL_DEPTH
from .context import Context, ConversationStore
from .errors import MagistralError, TurnInProgress
from .executor import ActionExecutor
from .models import ChatMessage, TurnResult
from .prompts import system_message
from .protocol import parse_actions
from .storage import Storage, list_files


class TurnState(str, Enum):
    idle = "idle"
    sending = "sending"
    streaming = "streaming"
    parsing_actions = "parsing_actions"
    executing = "executing"


class Conversation:
    """
    One chat session against one workspace.

    Only one turn may be active; send() raises TurnInProgress otherwise. The system
    message is synthesized per request from the current file listing and is never
    stored in `messages`.
    """

    def __init__(
        self,
        client: StreamingClient,
        storage: Storage,
        ctx: Optional[Context] = None,
        executor: Optional[ActionExecutor] = None,
        store: Optional[ConversationStore] = None,
        max_tool_depth: int = MAX_TOOL_DEPTH,
    ) -> None:
        self.client = client
        self.storage = storage
        self.ctx = ctx or Context()
        self.executor = executor or ActionExecutor(storage, self.ctx)
        self.store = store
        self.max_tool_depth = max_tool_depth
        self.state = TurnState.idle
        self.messages: List[ChatMessage] = []
        if store is not None:
            self._load_history()

    def _load_history(self) -> None:
        for entry in self.store.load_history():
            if entry.get("role") in ("user", "assistant", "system") and isinstance(entry.get("content"), str):
                self.messages.append(ChatMessage(role=entry["role"], content=entry["content"]))

    def _append(self, message: ChatMessage) -> None:
        self.messages.append(message)
        if self.store is not None:
            self.store.append_history(message.role, message.content)

    def clear(self) -> None:
        """Forget the history (rotating the persisted log) and announce it."""
        if self.state != TurnState.idle:
            raise TurnInProgress("Cannot clear the conversation during a turn")
        self.messages = []
        if self.store is not None:
            self.store.clear_history()
        self.ctx.send_to_user("Chat cleared.")

    @property
    def busy(self) -> bool:
        return self.state != TurnState.idle

    async def send(self, text: str) -> TurnResult:
        """
        Run one full turn for a user message.

        Failures of any layer are reported through the context and recorded on the
        result; they never propagate. Each read_file continuation re-enters the
        stream step with the tool result appended, without a new user message.
        """
        if self.state != TurnState.idle:
            raise TurnInProgress("A turn is already in progress")
        result = TurnResult()
        try:
            if text:
                self._append(ChatMessage(role="user", content=text))
            depth = 0
            while True:
                continuation = await self._run_once(result)
                if continuation is None:
                    break
                if depth >= self.max_tool_depth:
                    self.ctx.warn(f"Stopping after {self.max_tool_depth} consecutive read_file continuations")
                    break
                self._append(continuation)
                depth += 1
                result.continuations = depth
        except MagistralError as e:
            result.error = str(e)
            self.ctx.error_message(str(e))
        except Exception as e:
            # Anything else still ends the turn as a reported error.
            result.error = f"{type(e).__name__}: {e}"
            self.ctx.error_message(f"Unexpected failure during turn: {result.error}")
        finally:
            self.state = TurnState.idle
        return result

    async def _run_once(self, result: TurnResult) -> Optional[ChatMessage]:
        self.state = TurnState.sending
        chunks: List[str] = []

        def on_chunk(chunk: str, kind: str) -> None:
            if kind == "thinking":
                result.thinking += chunk
            else:
                chunks.append(chunk)
            self.ctx.stream_chunk(chunk, kind)

        def on_connected() -> None:
            self.state = TurnState.streaming

        system = system_message(list_files(self.storage.root))
        await self.client.stream(system, self.messages, on_chunk, on_status=self.ctx.status, on_connected=on_connected)

        response = "".join(chunks)
        if response:
            self._append(ChatMessage(role="assistant", content=response))
            result.text = f"{result.text}\n\n{response}" if result.text else response

        self.state = TurnState.parsing_actions
        actions = parse_actions(response, self.ctx)

        self.state = TurnState.executing
        report = await self.executor.execute(actions)
        result.reports.append(report)
        return report.continuation
