from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType, classify_http_error, parse_retry_after
from ksiegai.integrations.ksef.rate_limit import KsefRateLimitHandler


@pytest.mark.parametrize(
    ("status_code", "error_type", "retryable"),
    [
        (400, KsefErrorType.VALIDATION, False),
        (401, KsefErrorType.AUTHENTICATION, False),
        (403, KsefErrorType.AUTHENTICATION, False),
        (409, KsefErrorType.DUPLICATE_INVOICE, False),
        (429, KsefErrorType.RATE_LIMIT, True),
        (500, KsefErrorType.SERVER, True),
        (503, KsefErrorType.SERVER, True),
        (404, KsefErrorType.NETWORK, False),
        (507, KsefErrorType.NETWORK, True),
    ],
)
def test_classify_http_error(status_code: int, error_type: KsefErrorType, retryable: bool) -> None:
    error = classify_http_error(status_code, "boom", retry_after=7)
    assert error.error_type == error_type
    assert error.retryable is retryable
    assert error.status_code == status_code
    assert error.retry_after == (7 if error_type == KsefErrorType.RATE_LIMIT else None)


def test_parse_retry_after_seconds_and_http_date() -> None:
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None

    now = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)
    assert parse_retry_after("Sat, 14 Mar 2026 12:00:30 GMT", now=now) == 30.0


def test_error_to_dict() -> None:
    error = KsefError(KsefErrorType.SESSION, "no session")
    assert error.to_dict() == {
        "error_type": "SESSION",
        "status_code": 0,
        "message": "no session",
        "retryable": False,
        "retry_after": None,
    }


def test_handler_retries_with_exponential_backoff() -> None:
    sleeps: list[float] = []
    handler = KsefRateLimitHandler(max_retries=3, base_delay_seconds=1.0, max_delay_seconds=3.0, sleep=sleeps.append)
    calls = {"count": 0}

    def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 4:
            raise classify_http_error(503, "unavailable")
        return "ok"

    assert handler.execute(flaky) == "ok"
    assert calls["count"] == 4
    assert sleeps == [1.0, 2.0, 3.0]


def test_handler_honours_retry_after_and_gives_up() -> None:
    sleeps: list[float] = []
    handler = KsefRateLimitHandler(max_retries=2, sleep=sleeps.append)

    def throttled() -> None:
        raise classify_http_error(429, "slow down", retry_after=5)

    with pytest.raises(KsefError) as exc_info:
        handler.execute(throttled)
    assert exc_info.value.error_type == KsefErrorType.RATE_LIMIT
    assert sleeps == [5, 5]


def test_handler_does_not_retry_non_retryable_errors() -> None:
    sleeps: list[float] = []
    handler = KsefRateLimitHandler(sleep=sleeps.append)
    calls = {"count": 0}

    def invalid() -> None:
        calls["count"] += 1
        raise classify_http_error(400, "bad invoice")

    with pytest.raises(KsefError):
        handler.execute(invalid)
    assert calls["count"] == 1
    assert sleeps == []
