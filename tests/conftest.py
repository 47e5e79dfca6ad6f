# tests/conftest.py
from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("RATE_LIMIT_SECRET", "test-secret-key")
os.environ.pop("GETIMG_API_KEY", None)

from pixelsynth.main import app as fastapi_app
from pixelsynth.services.admission import (
    AdmissionController,
    AdmissionRequest,
    reset_admission_controller,
)

TEST_SECRET = "test-secret-key"
START_MS = 1_700_000_000_000
PUBLIC_IP = "8.8.8.8"

BROWSER_HEADERS: dict[str, str] = {
    "user-agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "accept": "text/html,application/json",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
    "sec-fetch-site": "same-origin",
    "sec-fetch-mode": "cors",
    "sec-fetch-dest": "empty",
}


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def controller(clock: FakeClock) -> AdmissionController:
    return AdmissionController(secret=TEST_SECRET, clock=clock)


@pytest.fixture()
def browser_headers() -> dict[str, str]:
    return {**BROWSER_HEADERS, "cf-connecting-ip": PUBLIC_IP}


@pytest.fixture()
def make_request(
    clock: FakeClock, browser_headers: dict[str, str]
) -> Callable[..., AdmissionRequest]:
    """Build an admission request stamped with the fake clock and a fresh nonce."""

    def _make(
        headers: dict[str, str] | None = None,
        *,
        nonce: str | None = None,
        timestamp: int | None = None,
        origin: str = "",
        signature: str | None = None,
    ) -> AdmissionRequest:
        return AdmissionRequest(
            headers=browser_headers if headers is None else headers,
            timestamp=clock.now if timestamp is None else timestamp,
            nonce=nonce if nonce is not None else uuid.uuid4().hex,
            origin=origin,
            signature=signature,
        )

    return _make


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def fresh_admission_controller(app: FastAPI) -> Iterator[None]:
    reset_admission_controller()
    try:
        yield
    finally:
        reset_admission_controller()
        app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def api_headers(overrides: dict[str, Any] | None = None) -> dict[str, str]:
    """Headers a well-behaved browser client sends to the admission API."""
    headers = {
        **BROWSER_HEADERS,
        "cf-connecting-ip": PUBLIC_IP,
        "x-timestamp": str(int(time.time() * 1000)),
        "x-nonce": uuid.uuid4().hex,
        "origin": "http://localhost:3000",
    }
    headers.update({name: str(value) for name, value in (overrides or {}).items()})
    return headers


@pytest.fixture()
def headers_factory() -> Callable[..., dict[str, str]]:
    return api_headers
