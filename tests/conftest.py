"""Shared fixtures: a fake aiohttp session and a recording sleep."""
from typing import Any, Optional, Union

import orjson
import pytest

from skydeck_session.client import SessionClient
from skydeck_session.vault.persistence import PersistentStore
from skydeck_session.vault.storage import StorageManager


SESSION_BODY = {
    "accessJwt": "a",
    "refreshJwt": "r",
    "did": "did:plc:x",
    "handle": "u.test",
}


class FakeResponse:
    """Minimal stand-in for ``aiohttp.ClientResponse``."""

    def __init__(self, status: int, body: Union[str, dict]):
        self.status = status
        self._body = body if isinstance(body, str) else orjson.dumps(body).decode()

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class _Raiser:
    def __init__(self, err: BaseException):
        self._err = err

    async def __aenter__(self):
        raise self._err

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeSession:
    """Replays queued responses (or exceptions) for ``post`` calls."""

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.calls: list[dict] = []
        self.closed = False

    def queue(self, *replies: Any) -> None:
        self.replies.extend(replies)

    def post(self, url: str, json: Optional[dict] = None, headers: Optional[dict] = None, **kwargs):
        self.calls.append({"url": url, "json": json, "headers": headers})
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            return _Raiser(reply)
        status, body = reply
        return FakeResponse(status, body)

    async def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_client(fake_session, sleeper):
    """Factory building clients wired to the fake session."""
    def _factory(server_url: Optional[str] = None) -> SessionClient:
        return SessionClient(server_url, session=fake_session, sleep=sleeper)
    return _factory


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def storage(store_dir):
    return StorageManager(PersistentStore.open(store_dir, "test_password"))


@pytest.fixture
def session_body():
    return dict(SESSION_BODY)
