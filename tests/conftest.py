from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDispatcher:
    def __init__(self, *, succeed: bool = True) -> None:
        self.jobs: list[Any] = []
        self._succeed = succeed

    async def publish(self, job) -> bool:
        self.jobs.append(job)
        return self._succeed


class FakeRealtimeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, *, send_error: BaseException | None = None, send_blocks: bool = False) -> None:
        self.sent: list[str] = []
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False
        self._send_error = send_error
        self._send_blocks = send_blocks

    async def send(self, message: str) -> None:
        if self._send_blocks:
            await asyncio.Event().wait()
        if self._send_error is not None:
            raise self._send_error
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(None)

    def push(self, message: str) -> None:
        self.incoming.put_nowait(message)

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        while True:
            item = await self.incoming.get()
            if item is None:
                return
            yield item


class FakeConnector:
    """Callable replacing ``websockets.connect``; hands out queued sockets or errors."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeRealtimeSocket:
        self.calls.append({"url": url, **kwargs})
        if not self._outcomes:
            raise ConnectionRefusedError("no more sockets")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")
    db_path = tmp_dir / "recorder_test.db"

    # Must be set before importing modules that create the SQLAlchemy engine.
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{db_path.as_posix()}"
    os.environ["DATA_DIR"] = str(tmp_dir)
    os.environ["RECORDINGS_DIR"] = str(tmp_dir / "recordings")
    os.environ["OUTBOX_PATH"] = str(tmp_dir / "outbox" / "mix_jobs.jsonl")
    os.environ["AUTO_CREATE_DB_SCHEMA"] = "true"
    os.environ.pop("OPENAI_API_KEY", None)

    import importlib

    for module_name in [
        "config.settings",
        "db.base",
        "db.models",
        "db.repository",
        "api.dependencies",
        "api.twilio_routes",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
