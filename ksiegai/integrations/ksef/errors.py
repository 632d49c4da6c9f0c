from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any


class KsefErrorType(str, Enum):
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    SESSION = "SESSION"
    DUPLICATE_INVOICE = "DUPLICATE_INVOICE"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    NETWORK = "NETWORK"


class KsefError(Exception):
    """Failure talking to KSeF, classified so callers can decide whether to retry."""

    def __init__(
        self,
        error_type: KsefErrorType,
        message: str,
        *,
        status_code: int = 0,
        retryable: bool = False,
        details: Any = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.message = message
        self.retryable = retryable
        self.details = details
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "status_code": self.status_code,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given either in seconds or as an HTTP date."""

    if value is None or not value.strip():
        return None
    raw = value.strip()
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def classify_http_error(
    status_code: int,
    message: str,
    *,
    details: Any = None,
    retry_after: float | None = None,
) -> KsefError:
    if status_code == 400:
        error_type, retryable = KsefErrorType.VALIDATION, False
    elif status_code in (401, 403):
        error_type, retryable = KsefErrorType.AUTHENTICATION, False
    elif status_code == 409:
        error_type, retryable = KsefErrorType.DUPLICATE_INVOICE, False
    elif status_code == 429:
        error_type, retryable = KsefErrorType.RATE_LIMIT, True
    elif status_code in (500, 502, 503, 504):
        error_type, retryable = KsefErrorType.SERVER, True
    else:
        error_type, retryable = KsefErrorType.NETWORK, status_code >= 500

    return KsefError(
        error_type,
        message,
        status_code=status_code,
        retryable=retryable,
        details=details,
        retry_after=retry_after if error_type == KsefErrorType.RATE_LIMIT else None,
    )
