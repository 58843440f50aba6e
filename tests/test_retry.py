from __future__ import annotations

import httpx
import pytest

import chaosload.retry as retry_module
from chaosload.exceptions import ApiError, NotFoundError


def _request() -> httpx.Request:
    return httpx.Request("GET", "https://example.com")


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(retry_module.random, "uniform", lambda _a, _b: 0.0)
    monkeypatch.setattr(retry_module.time, "sleep", lambda d: recorded.append(d))
    return recorded


def test_retry_call_retries_and_succeeds(sleeps: list[float]) -> None:
    # Covers retryable exception path with exponential backoff.
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        if calls["count"] < 3:
            raise httpx.ConnectError("boom", request=_request())
        return "ok"

    assert retry_module.retry_call(_work, max_attempts=3, base_delay=1.0, max_delay=10.0) == "ok"
    assert calls["count"] == 3
    assert sleeps == [1.0, 2.0]


def test_retry_call_does_not_retry_client_errors(sleeps: list[float]) -> None:
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        raise ApiError("bad", status_code=400)

    with pytest.raises(ApiError):
        retry_module.retry_call(_work, max_attempts=3)
    assert calls["count"] == 1
    assert sleeps == []


def test_retry_call_does_not_retry_not_found(sleeps: list[float]) -> None:
    def _work():
        raise NotFoundError("gone", status_code=404)

    with pytest.raises(NotFoundError):
        retry_module.retry_call(_work, max_attempts=3)
    assert sleeps == []


@pytest.mark.parametrize("status", [429, 500, 503])
def test_retry_call_retries_on_transient_status(sleeps: list[float], status: int) -> None:
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        if calls["count"] == 1:
            raise ApiError("server error", status_code=status)
        return "ok"

    assert retry_module.retry_call(_work, max_attempts=2) == "ok"
    assert calls["count"] == 2


def test_retry_call_retries_on_timeout(sleeps: list[float]) -> None:
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ReadTimeout("slow", request=_request())
        return "ok"

    assert retry_module.retry_call(_work, max_attempts=2) == "ok"


def test_retry_call_gives_up_after_max_attempts(sleeps: list[float]) -> None:
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        raise ApiError("still down", status_code=502)

    with pytest.raises(ApiError):
        retry_module.retry_call(_work, max_attempts=3, base_delay=0.5)
    assert calls["count"] == 3
    assert sleeps == [0.5, 1.0]


def test_retry_call_caps_delay(sleeps: list[float]) -> None:
    def _work():
        raise ApiError("down", status_code=500)

    with pytest.raises(ApiError):
        retry_module.retry_call(_work, max_attempts=4, base_delay=2.0, max_delay=3.0)
    assert sleeps == [2.0, 3.0, 3.0]


def test_retry_call_stops_when_should_continue_is_false(sleeps: list[float]) -> None:
    calls = {"count": 0}

    def _work():
        calls["count"] += 1
        raise ValueError("nope")

    with pytest.raises(ValueError):
        retry_module.retry_call(
            _work,
            max_attempts=5,
            retriable=lambda _exc: True,
            should_continue=lambda: calls["count"] < 2,
        )
    assert calls["count"] == 2


def test_retry_call_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        retry_module.retry_call(lambda: None, max_attempts=0)
