"""Shared test fixtures for az-marketplace tests."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from az_marketplace import app as app_module
from az_marketplace.models import User
from az_marketplace.services import TenantAwareServiceFactory
from az_marketplace.session import MarketplaceSession
from az_marketplace.settings import MarketplaceSettings
from az_marketplace.stores import AuthStore, StateFile


class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class StaticTokenProvider:
    def __init__(self, token: str = "fake-token", tenant_id: str | None = None) -> None:
        self.token = token
        self.tenant_id = tenant_id
        self.calls = 0

    def get_access_token(self) -> str:
        self.calls += 1
        return self.token


def make_response(
    status: int = 200,
    json_data: Any = None,
    headers: dict[str, str] | None = None,
    text: str = "",
) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.headers = headers or {}
    resp.text = text or json.dumps(json_data)
    resp.json.return_value = json_data
    return resp


def make_jwt(claims: dict[str, Any]) -> str:
    def _b64(obj: dict[str, Any]) -> str:
        raw = base64.urlsafe_b64encode(json.dumps(obj).encode()).decode()
        return raw.rstrip("=")

    return f"{_b64({'alg': 'none'})}.{_b64(claims)}.signature"


class FakeArm:
    """Routes patched ``requests.get`` calls by URL fragment.

    The longest registered fragment contained in the URL wins.  A list of
    responses is consumed in order, the last one repeating.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[MagicMock]] = {}
        self.calls: list[str] = []

    def add(self, fragment: str, *responses: MagicMock) -> None:
        self.routes[fragment] = list(responses)

    def json(self, fragment: str, data: Any, status: int = 200) -> None:
        self.add(fragment, make_response(status, data))

    def __call__(self, url: str, headers: dict | None = None, timeout: float | None = None):
        self.calls.append(url)
        matches = [f for f in self.routes if f in url]
        if not matches:
            return make_response(404, {"error": {"code": "NotFound"}})
        queue = self.routes[max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def token_provider() -> StaticTokenProvider:
    return StaticTokenProvider()


@pytest.fixture()
def fake_arm() -> Iterator[FakeArm]:
    arm = FakeArm()
    with patch("az_marketplace.azure_api._transport.requests.get", side_effect=arm):
        yield arm


@pytest.fixture()
def settings(tmp_path) -> MarketplaceSettings:
    # No retries: failure paths would otherwise sleep for real.
    return MarketplaceSettings(data_dir=tmp_path, max_retries=0)


@pytest.fixture()
def user() -> User:
    return User(id="user-1", tenant_id="tenant-a", name="Ada", email="ada@contoso.com")


@pytest.fixture()
def session(settings, user) -> MarketplaceSession:
    factory = TenantAwareServiceFactory(
        lambda account, tenant_id: StaticTokenProvider(tenant_id=tenant_id),
        settings=settings,
        sign_in=lambda: "account-1",
    )
    auth = AuthStore(StateFile(settings.state_file))
    return MarketplaceSession(factory, auth=auth, user_resolver=lambda token: user)


@pytest.fixture()
def client(session) -> Iterator[TestClient]:
    """FastAPI test client bound to the fake session."""
    app_module.app.dependency_overrides[app_module.get_session] = lambda: session
    with TestClient(app_module.app) as c:
        yield c
    app_module.app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep state files in tmp and never build the process-wide session."""
    monkeypatch.setenv("AZ_MARKETPLACE_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("AZ_MARKETPLACE_AUTH_MODE", raising=False)
    monkeypatch.delenv("AZ_MARKETPLACE_CLIENT_ID", raising=False)
    monkeypatch.setattr(app_module, "_session", None)
    # The app logger stops propagation; caplog listens on the root logger.
    monkeypatch.setattr(logging.getLogger("az_marketplace"), "propagate", True)


@pytest.fixture(autouse=True)
def _mock_credential():
    """Prevent real Azure credential calls in every test."""
    mock_token = MagicMock()
    mock_token.token = make_jwt({"oid": "user-1", "tid": "tenant-a"})
    with patch("az_marketplace.services.DefaultAzureCredential") as cred_cls:
        cred_cls.return_value.get_token.return_value = mock_token
        yield cred_cls
