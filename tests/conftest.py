"""Shared fixtures for the sequence-builder test suite."""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from sequence_builder.config import CredentialRecord, CredentialStore, MemoryCredentialStore, Session
from sequence_builder.wallet import cipher

# Well-known development key (Hardhat/Anvil account #0).
KNOWN_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
KNOWN_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@pytest.fixture(autouse=True)
def fast_scrypt(monkeypatch):
    """Lower the scrypt cost so the suite stays quick."""
    monkeypatch.setattr(cipher, "SCRYPT_N", 2**10)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the credential file at a temp dir and clear the passphrase."""
    home = tmp_path / "sb-home"
    monkeypatch.setenv("SEQUENCE_BUILDER_HOME", str(home))
    monkeypatch.delenv("SEQUENCE_PASSPHRASE", raising=False)
    return home


@pytest.fixture
def file_store(isolated_home):
    return CredentialStore()


@pytest.fixture
def memory_store():
    return MemoryCredentialStore()


def future(hours: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def past(hours: int = 1) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


@pytest.fixture
def logged_in_store(file_store):
    file_store.update(session=Session(bearer_token="jwt-abc", expires_at=future()))
    return file_store


class Recorder:
    """Collects requests and replies from a queue of canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected request to {request.url}")
        return self._responses.pop(0)

    def queue(self, *responses: httpx.Response) -> None:
        self._responses.extend(responses)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


def ok_json(data: dict) -> httpx.Response:
    return httpx.Response(200, json=data)


def auth_response(token: str = "jwt-new", expires_at: str = "2099-01-01T00:00:00Z") -> httpx.Response:
    return ok_json({"ok": True, "auth": {"jwtToken": token, "expiresAt": expires_at}})


@pytest.fixture
def record_with_session():
    return CredentialRecord(session=Session(bearer_token="t", expires_at=future()))
