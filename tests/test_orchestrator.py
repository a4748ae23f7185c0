import asyncio

import pytest

from magistral.context import ConversationStore
from magistral.errors import RateLimitExceeded, TurnInProgress, UpstreamError
from magistral.orchestrator import Conversation, TurnState
from magistral.storage import JsonFileStore
from magistral.vfs import VirtualStorage


class ScriptedClient:
    """Replays one scripted response (or exception) per stream() call."""

    def __init__(self, script, thinking=None):
        self.script = list(script)
        self.thinking = thinking
        self.systems = []
        self.histories = []
        self.gate = None
        self.model = "scripted"

    async def stream(self, system, history, on_chunk, on_status=None, on_connected=None):
        self.systems.append(system)
        self.histories.append([(m.role, m.content) for m in history])
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if self.script else "ok"
        if isinstance(item, Exception):
            raise item
        if on_connected:
            on_connected()
        if self.thinking:
            on_chunk(self.thinking, "thinking")
        on_chunk(item, "text")
        return []


READ_A = '```json\n{"actions": [{"type": "read_file", "path": "/a.js"}]}\n```'


async def test_prose_only_turn(vstorage, ctx):
    client = ScriptedClient(["Just an answer."], thinking="considering")
    conv = Conversation(client, vstorage, ctx)
    result = await conv.send("hi")
    assert result.text == "Just an answer."
    assert result.thinking == "considering"
    assert result.error is None
    assert [(m.role, m.content) for m in conv.messages] == [("user", "hi"), ("assistant", "Just an answer.")]
    assert conv.state == TurnState.idle


async def test_system_message_lists_current_files(vstorage, ctx):
    await vstorage.write("/a.js", "x")
    client = ScriptedClient(["ok"])
    await Conversation(client, vstorage, ctx).send("hi")
    assert client.systems[0].role == "system"
    assert "/a.js" in client.systems[0].content
    assert client.histories[0] == [("user", "hi")]


async def test_actions_in_response_are_applied(vstorage, ctx):
    reply = 'Creating file...\n```json\n{"actions": [{"type": "create_file", "path": "/new.txt", "content": "a\\nb"}]}\n```'
    conv = Conversation(ScriptedClient([reply]), vstorage, ctx)
    result = await conv.send("make a file")
    assert (await vstorage.read("/new.txt")).content == "a\nb"
    assert result.reports[0].results[0].stats.added == 2


async def test_read_file_triggers_follow_up_request(vstorage, ctx):
    await vstorage.write("/a.js", "const a = 1;")
    client = ScriptedClient([READ_A, "It declares a constant."])
    conv = Conversation(client, vstorage, ctx)
    result = await conv.send("what does a.js do?")

    assert len(client.histories) == 2
    role, content = client.histories[1][-1]
    assert role == "system"
    assert content.startswith("[Tool Result] /a.js Content:")
    assert "const a = 1;" in content
    assert result.continuations == 1
    assert [m.role for m in conv.messages] == ["user", "assistant", "system", "assistant"]
    assert result.text.endswith("It declares a constant.")


async def test_tool_depth_is_bounded(vstorage, ctx):
    await vstorage.write("/a.js", "x")
    client = ScriptedClient([READ_A] * 10)
    conv = Conversation(client, vstorage, ctx, max_tool_depth=2)
    result = await conv.send("loop forever")
    assert len(client.histories) == 3
    assert result.continuations == 2
    assert any("read_file" in w for w in ctx.warnings)
    assert conv.state == TurnState.idle


@pytest.mark.parametrize("error", [UpstreamError(500, "boom"), RateLimitExceeded(10)])
async def test_transport_errors_are_surfaced(vstorage, ctx, error):
    conv = Conversation(ScriptedClient([error]), vstorage, ctx)
    result = await conv.send("hi")
    assert result.error == str(error)
    assert ctx.errors == [str(error)]
    assert conv.state == TurnState.idle
    assert [m.role for m in conv.messages] == ["user"]


async def test_unpersistable_workspace_does_not_break_turn(tmp_path, ctx):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    vfs = VirtualStorage(JsonFileStore(blocker / "store.json"), ctx)
    reply = 'Creating file...\n```json\n{"actions": [{"type": "create_file", "path": "/a.txt", "content": "x"}]}\n```'
    conv = Conversation(ScriptedClient([reply]), vfs, ctx)
    result = await conv.send("make a file")
    assert result.error is None
    assert not result.reports[0].results[0].ok
    assert await vfs.read("/a.txt") is None
    assert ctx.warnings
    assert conv.state == TurnState.idle


async def test_unexpected_exception_ends_turn_as_error(vstorage, ctx):
    conv = Conversation(ScriptedClient([ValueError("bad")]), vstorage, ctx)
    result = await conv.send("hi")
    assert result.error == "ValueError: bad"
    assert len(ctx.errors) == 1 and "ValueError: bad" in ctx.errors[0]
    assert conv.state == TurnState.idle
    assert not conv.busy


async def test_second_send_during_turn_is_rejected(vstorage, ctx):
    client = ScriptedClient(["done"])
    client.gate = asyncio.Event()
    conv = Conversation(client, vstorage, ctx)
    first = asyncio.create_task(conv.send("one"))
    while not client.histories:
        await asyncio.sleep(0)
    assert conv.busy
    with pytest.raises(TurnInProgress):
        await conv.send("two")
    with pytest.raises(TurnInProgress):
        conv.clear()
    client.gate.set()
    result = await first
    assert result.text == "done"
    assert not conv.busy


async def test_history_persists_and_clears(vstorage, ctx, tmp_path):
    store = ConversationStore(tmp_path)
    conv = Conversation(ScriptedClient(["hello back"]), vstorage, ctx, store=store)
    await conv.send("hello")

    restored = Conversation(ScriptedClient([]), vstorage, ctx, store=ConversationStore(tmp_path))
    assert [(m.role, m.content) for m in restored.messages] == [("user", "hello"), ("assistant", "hello back")]

    restored.clear()
    assert restored.messages == []
    assert ctx.sent[-1] == "Chat cleared."
    assert ConversationStore(tmp_path).load_history() == []
