"""Global test configuration: test mode, a fresh database per test, provider HTTP stubs."""

import json
import os

# Set before any app module import so background work stays off.
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import httpx
import pytest

import app.database as _db_mod
from app.database import init_db

# Provider fallbacks read from the environment; a developer's .env must not leak in.
_PROVIDER_ENV = (
    "MERCADOPAGO_ACCESS_TOKEN",
    "MERCADOPAGO_WEBHOOK_SECRET",
    "MERCADOPAGO_DEVICE_ID",
    "PAGBANK_TOKEN",
    "PAGBANK_POINT_DEVICE_SERIAL",
)


@pytest.fixture(autouse=True)
def _setup_db(tmp_path, monkeypatch):
    """Each test gets its own SQLite file."""
    monkeypatch.setattr(_db_mod, "DB_PATH", str(tmp_path / "checkout.db"))
    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
    init_db()
    yield


class ProviderStub:
    """
    Canned provider API for httpx.MockTransport.

    Responses are registered per (method, path). Several responses for the
    same route are served in order; the last one repeats.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[tuple]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, path, json_body=None, status=200, content=None, error=None):
        self.routes.setdefault((method.upper(), path), []).append(
            (status, json_body, content, error)
        )
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "route not stubbed"})
        status, json_body, content, error = queue.pop(0) if len(queue) > 1 else queue[0]
        if error is not None:
            raise error
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=json_body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method, path) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and r.url.path == path
        ]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)


@pytest.fixture
def provider_stub():
    return ProviderStub()
