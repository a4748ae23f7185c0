import pathlib
from typing import List, Optional

import pytest

from magistral.client import ClientConfig, StreamingClient
from magistral.context import Context
from magistral.diskfs import DiskStorage
from magistral.storage import MemoryStore
from magistral.vfs import VirtualStorage


class RecordingContext(Context):
    """Context double that keeps everything it is told instead of printing."""

    def __init__(self) -> None:
        super().__init__(verbose=True)
        self.sent: List[str] = []
        self.logs: List[str] = []
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self.statuses: List[str] = []
        self.chunks: List[tuple] = []
        self.changed: List[List[str]] = []

    def send_to_user(self, message: str) -> None:
        self.sent.append(message)

    def log(self, message: str) -> None:
        self.logs.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def error_message(self, message: str) -> None:
        self.errors.append(message)

    def status(self, message: str) -> None:
        self.statuses.append(message)

    def stream_chunk(self, chunk: str, kind: str) -> None:
        self.chunks.append((chunk, kind))

    def files_changed(self, paths: List[str]) -> None:
        self.changed.append(list(paths))


class FakeResponse:
    def __init__(self, status_code: int = 200, lines: Optional[List[bytes]] = None, text: str = "") -> None:
        self.status_code = status_code
        self.lines = lines or []
        self.text = text
        self.closed = False

    def iter_lines(self):
        return iter(self.lines)

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for requests.Session: hands out scripted responses in order."""

    def __init__(self, responses: List[object]) -> None:
        self.responses = list(responses)
        self.headers = {"Authorization": "Bearer secret", "Content-Type": "application/json"}
        self.calls: List[dict] = []

    def post(self, url, json=None, stream=False, timeout=None):
        self.calls.append({"url": url, "json": json, "stream": stream, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class SleepRecorder:
    def __init__(self) -> None:
        self.waits: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


@pytest.fixture
def ctx() -> RecordingContext:
    return RecordingContext()


@pytest.fixture
def vstorage(ctx) -> VirtualStorage:
    """Empty virtual workspace (not seeded)."""
    return VirtualStorage(MemoryStore(), ctx)


@pytest.fixture
async def dstorage(tmp_path: pathlib.Path, ctx) -> DiskStorage:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return await DiskStorage(workspace, ctx).open()


@pytest.fixture(params=["virtual", "real"])
async def storage(request, tmp_path: pathlib.Path, ctx):
    if request.param == "virtual":
        return VirtualStorage(MemoryStore(), ctx)
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return await DiskStorage(workspace, ctx).open()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client(ctx, sleeper):
    def _make(responses, **overrides) -> StreamingClient:
        values = {"api_key": "secret", "model": "test-model", "api_url": "https://example.invalid/v1/chat/completions"}
        values.update(overrides)
        client = StreamingClient(ClientConfig(**values), ctx, sleep=sleeper)
        client.session = FakeSession(responses)
        return client

    return _make
