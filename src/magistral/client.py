# magistral: Streaming chat-completions transport. Sends the bounded history, retries HTTP 429 with exponential backoff, demultiplexes answer text, thinking text and tool-call fragments from the event stream, and re-injects recovered tool calls as a fenced action block.

from __future__ import annotations

import asyncio
import json
import pathlib
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from .config import (
    AI_MODEL,
    HISTORY_WINDOW,
    MAGISTRAL_API_KEY,
    MAGISTRAL_API_URL,
    MAX_BACKOFF_SEC,
    MAX_RETRIES,
    REQUEST_TIMEOUT,
    TEMPERATURE,
)
from .context import Context
from .errors import ConfigurationError, RateLimitExceeded, UpstreamError
from .models import ChatMessage, ToolCallFragment
from .protocol import recover_json_object

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

ChunkCallback = Callable[[str, str], None]
StatusCallback = Callable[[str], None]


class ClientConfig(BaseModel):
    """Explicit transport configuration; resolved once and owned by the client."""

    api_key: str = Field(..., description="Bearer token for the endpoint")
    model: str = Field(default=AI_MODEL)
    api_url: str = Field(default=MAGISTRAL_API_URL)
    temperature: float = Field(default=TEMPERATURE)
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    max_backoff: int = Field(default=MAX_BACKOFF_SEC, ge=1)
    history_window: int = Field(default=HISTORY_WINDOW, ge=1)
    timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    httpcalls_dir: Optional[str] = Field(default=None, description="Directory for .http request dumps")

    @classmethod
    def resolve(cls, settings: Optional[Dict[str, Any]] = None, **overrides: Any) -> "ClientConfig":
        """
        Build a config with precedence: keyword overrides > settings["api"] > environment.

        Raises:
            ConfigurationError: when no API key can be found.
        """
        api_cfg = (settings or {}).get("api") if isinstance(settings, dict) else None
        api_cfg = api_cfg if isinstance(api_cfg, dict) else {}
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            if overrides.get(name) is not None:
                values[name] = overrides[name]
            elif api_cfg.get(name) is not None:
                values[name] = api_cfg[name]
        values.setdefault("api_key", MAGISTRAL_API_KEY)
        if not values["api_key"]:
            raise ConfigurationError("No API key. Set MAGISTRAL_API_KEY (or MISTRAL_API_KEY) or settings.api.api_key.")

        log_cfg = ((settings or {}).get("logging") or {}).get("httpcalls") if isinstance(settings, dict) else None
        if isinstance(log_cfg, dict) and log_cfg.get("enabled") and "httpcalls_dir" not in values:
            values["httpcalls_dir"] = str(log_cfg.get("dir") or ".httpcalls")
        return cls(**values)


def backoff_delay(attempt: int, cap: int = MAX_BACKOFF_SEC) -> int:
    """Seconds to wait before retry number attempt+1: 1, 2, 4, ... capped."""
    return min(2 ** attempt, cap)


# -----------------------------
# Stream decoding
# -----------------------------

def handle_delta(delta: Dict[str, Any], on_chunk: ChunkCallback, fragments: Dict[int, ToolCallFragment]) -> None:
    """
    Dispatch one choices[0].delta object.

    content may be a plain string (answer text) or a list of typed parts; thinking parts
    carry either a string or a list of {"type": "text"} nodes, each emitted verbatim.
    tool_calls fragments are merged by index: a name overwrites, arguments append.
    """
    content = delta.get("content")
    if isinstance(content, str):
        if content:
            on_chunk(content, "text")
    elif isinstance(content, list):
        for item in content:
            if not isinstance(item, dict):
                continue
            kind = item.get("type")
            if kind == "thinking":
                thinking = item.get("thinking")
                if isinstance(thinking, str):
                    on_chunk(thinking, "thinking")
                elif isinstance(thinking, list):
                    for t in thinking:
                        if isinstance(t, dict) and t.get("type") == "text" and isinstance(t.get("text"), str):
                            on_chunk(t["text"], "thinking")
            elif kind == "text" and isinstance(item.get("text"), str):
                on_chunk(item["text"], "text")

    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list):
        for tc in tool_calls:
            if not isinstance(tc, dict):
                continue
            index = tc.get("index", 0)
            if not isinstance(index, int):
                continue
            frag = fragments.setdefault(index, ToolCallFragment(index=index))
            fn = tc.get("function") or {}
            if isinstance(fn, dict):
                if fn.get("name"):
                    frag.name = fn["name"]
                if isinstance(fn.get("arguments"), str):
                    frag.arguments += fn["arguments"]


def handle_line(line: str, on_chunk: ChunkCallback, fragments: Dict[int, ToolCallFragment]) -> bool:
    """
    Process one event-stream line. Returns False once the terminal sentinel is seen.

    Lines without the data prefix and lines whose payload is not valid JSON are
    skipped; one corrupt delta never aborts the stream.
    """
    if not line.startswith(DATA_PREFIX):
        return True
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return False
    try:
        event = json.loads(payload)
        delta = event["choices"][0].get("delta")
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return True
    if isinstance(delta, dict):
        handle_delta(delta, on_chunk, fragments)
    return True


def fragments_to_actions(fragments: Dict[int, ToolCallFragment], ctx: Optional[Context] = None) -> List[Dict[str, Any]]:
    """
    Convert buffered tool calls (in index order) into action dicts.

    Arguments are recovered with backward brace truncation; fragments that cannot be
    recovered or have no function name are dropped with a warning.
    """
    ctx = ctx or Context()
    actions: List[Dict[str, Any]] = []
    for index in sorted(fragments):
        frag = fragments[index]
        if not frag.name:
            ctx.warn(f"Dropping tool call #{index} without a function name")
            continue
        args = recover_json_object(frag.arguments or "{}")
        if args is None:
            ctx.warn(f"Failed to parse tool args for {frag.name}: {frag.arguments[:200]}")
            continue
        action = dict(args)
        action["type"] = frag.name
        for key in ("file_path", "path", "filename"):
            if isinstance(args.get(key), str) and args[key]:
                action["path"] = args[key]
                break
        actions.append(action)
    return actions


def synthetic_action_block(actions: List[Dict[str, Any]]) -> str:
    """Fenced ```json batch for recovered tool calls; backticks in values are \\u-escaped so content cannot close the fence."""
    body = json.dumps({"actions": actions}, indent=2, ensure_ascii=False).replace("`", "\\u0060")
    return "\n\n```json\n" + body + "\n```"


# -----------------------------
# Client
# -----------------------------

class StreamingClient:
    def __init__(
        self,
        config: ClientConfig,
        ctx: Optional[Context] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        """
        Args:
            config: Resolved endpoint/model/retry configuration.
            ctx: Logger/console context.
            sleep: Awaitable delay used for backoff (asyncio.sleep by default).
        """
        self.config = config
        self.ctx = ctx or Context()
        self._sleep = sleep or asyncio.sleep
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            }
        )

    @property
    def model(self) -> str:
        return self.config.model

    def set_model(self, model: str) -> None:
        """Switch the model used by subsequent requests."""
        if not model:
            raise ValueError("model must be a non-empty string")
        self.config = self.config.model_copy(update={"model": model})

    def build_payload(self, system: ChatMessage, history: List[ChatMessage]) -> Dict[str, Any]:
        window = history[-self.config.history_window:]
        return {
            "model": self.config.model,
            "messages": [system.model_dump()] + [m.model_dump() for m in window],
            "stream": True,
            "temperature": self.config.temperature,
        }

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        self._dump_request(payload)
        try:
            return self.session.post(self.config.api_url, json=payload, stream=True, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise UpstreamError(None, str(e)) from e

    def _dump_request(self, payload: Dict[str, Any]) -> None:
        if not self.config.httpcalls_dir:
            return
        try:
            base_dir = pathlib.Path(self.config.httpcalls_dir)
            base_dir.mkdir(parents=True, exist_ok=True)
            headers_for_log = dict(self.session.headers)
            headers_for_log["Authorization"] = "Bearer {{MAGISTRAL_API_KEY}}"
            dump_http_file(
                base_dir / f"call-{int(time.time() * 1000)}.http",
                self.config.api_url,
                "POST",
                headers_for_log,
                payload,
            )
        except OSError as e:
            self.ctx.log(f"HTTP dump skipped: {e}")

    async def stream(
        self,
        system: ChatMessage,
        history: List[ChatMessage],
        on_chunk: ChunkCallback,
        on_status: Optional[StatusCallback] = None,
        on_connected: Optional[Callable[[], None]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Issue one streaming request and return once the stream has fully ended.

        Text and thinking fragments go to on_chunk as they arrive. Tool calls are
        recovered after the stream ends, appended to the text as a fenced JSON action
        block, and also returned as raw action dicts.

        Raises:
            RateLimitExceeded: HTTP 429 persisted through max_retries retries.
            UpstreamError: any other non-2xx status, a connection failure or a
                read timeout; carries the response body.
        """
        payload = self.build_payload(system, history)
        attempt = 0
        while True:
            self.ctx.log(f"POST {self.config.api_url} model={self.config.model} attempt={attempt}")
            response = await asyncio.to_thread(self._post, payload)
            if response.status_code == 429:
                response.close()
                if attempt >= self.config.max_retries:
                    raise RateLimitExceeded(self.config.max_retries)
                wait = backoff_delay(attempt, self.config.max_backoff)
                if on_status:
                    on_status(f"Rate limited. Retrying in {wait}s...")
                await self._sleep(wait)
                attempt += 1
                continue
            if not 200 <= response.status_code < 300:
                try:
                    body = await asyncio.to_thread(lambda: response.text)
                except requests.RequestException as e:
                    raise UpstreamError(response.status_code, f"<body unreadable: {e}>") from e
                finally:
                    response.close()
                raise UpstreamError(response.status_code, body)
            break

        if on_connected:
            on_connected()
        fragments: Dict[int, ToolCallFragment] = {}
        try:
            lines = response.iter_lines()
            while True:
                try:
                    raw = await asyncio.to_thread(next, lines, None)
                except requests.RequestException as e:
                    raise UpstreamError(None, f"stream interrupted: {e}") from e
                if raw is None:
                    break
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                if not handle_line(line, on_chunk, fragments):
                    break
        finally:
            response.close()

        actions = fragments_to_actions(fragments, self.ctx)
        if actions:
            on_chunk(synthetic_action_block(actions), "text")
        return actions


def dump_http_file(file: pathlib.Path, url: str, method: str, headers: Dict[str, str], obj: Any) -> None:
    """
    Write a human-readable HTTP request dump (REST Client format) for debugging.

    Raises OSError on write failure; callers treat dumps as best-effort.
    """
    json_str = json.dumps(obj, indent=2, ensure_ascii=False)
    with open(file, "w", encoding="utf-8") as f:
        f.write(f"{method.upper()} {url}\n")
        for key, value in headers.items():
            f.write(f"{key}: {value}\n")
        f.write("\n")
        f.write(json_str)
