from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType
from ksiegai.metrics import observe_ksef_retry


logger = logging.getLogger("ksiegai.ksef")

T = TypeVar("T")


class KsefRateLimitHandler:
    """Retry retryable KSeF failures with Retry-After or exponential backoff."""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self._sleep = sleep

    def delay_for(self, error: KsefError, attempt: int) -> float:
        if error.error_type == KsefErrorType.RATE_LIMIT and error.retry_after is not None:
            return error.retry_after
        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)

    def execute(self, operation: Callable[[], T], *, operation_name: str = "ksef") -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except KsefError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                delay = self.delay_for(exc, attempt)
                logger.warning(
                    "ksef.retry",
                    extra={
                        "attempt": attempt + 1,
                        "delay_seconds": delay,
                        "error_type": exc.error_type.value,
                        "reason": operation_name,
                        "status_code": exc.status_code,
                    },
                )
                observe_ksef_retry(exc.error_type.value)
                self._sleep(delay)
                attempt += 1
