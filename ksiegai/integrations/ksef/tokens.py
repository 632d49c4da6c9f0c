from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType


logger = logging.getLogger("ksiegai.ksef")

REFRESH_MARGIN = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TokenInfo:
    token: str
    expires_in: int
    expires_at: datetime

    @classmethod
    def issued(cls, token: str, expires_in: int, *, now: datetime | None = None) -> TokenInfo:
        return cls(token=token, expires_in=expires_in, expires_at=(now or utcnow()) + timedelta(seconds=expires_in))


@dataclass(slots=True)
class StoredTokens:
    access_token: TokenInfo
    refresh_token: TokenInfo
    company_id: str
    context_type: str
    context_value: str


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


def _thread_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


RefreshCallback = Callable[[str], TokenInfo]
TimerFactory = Callable[[float, Callable[[], None]], Timer]


class KsefTokenManager:
    """Holds one KSeF session's tokens and refreshes the access token ahead of expiry."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = _thread_timer,
    ) -> None:
        self._clock = clock
        self._timer_factory = timer_factory
        self._tokens: StoredTokens | None = None
        self._refresh_callback: RefreshCallback | None = None
        self._timer: Timer | None = None
        self._lock = threading.RLock()

    def set_refresh_callback(self, callback: RefreshCallback) -> None:
        self._refresh_callback = callback

    def store_tokens(
        self,
        access_token: TokenInfo,
        refresh_token: TokenInfo,
        *,
        company_id: str,
        context_type: str,
        context_value: str,
    ) -> None:
        with self._lock:
            self._tokens = StoredTokens(
                access_token=access_token,
                refresh_token=refresh_token,
                company_id=company_id,
                context_type=context_type,
                context_value=context_value,
            )
            self._schedule_refresh()
        logger.info("ksef.tokens.stored", extra={"business_profile_id": company_id})

    def get_tokens(self) -> StoredTokens | None:
        return self._tokens

    def get_access_token(self) -> str:
        with self._lock:
            if self._tokens is None:
                raise KsefError(KsefErrorType.AUTHENTICATION, "no KSeF tokens available, authenticate first")
            if self._expires_within(self._tokens.access_token, REFRESH_MARGIN):
                self.refresh_access_token()
            return self._tokens.access_token.token

    def refresh_access_token(self) -> None:
        with self._lock:
            if self._tokens is None:
                raise KsefError(KsefErrorType.AUTHENTICATION, "no KSeF tokens available")
            if self._expires_within(self._tokens.refresh_token, timedelta(0)):
                self.clear()
                raise KsefError(KsefErrorType.AUTHENTICATION, "refresh token expired, re-authentication required")
            if self._refresh_callback is None:
                raise KsefError(KsefErrorType.SESSION, "refresh callback not set")

            self._tokens.access_token = self._refresh_callback(self._tokens.refresh_token.token)
            self._schedule_refresh()
        logger.info("ksef.tokens.refreshed", extra={"business_profile_id": self._tokens.company_id})

    def get_token_status(self) -> dict[str, Any]:
        tokens = self._tokens
        if tokens is None:
            return {"has_tokens": False}
        now = self._clock()
        return {
            "has_tokens": True,
            "access_token_valid": now < tokens.access_token.expires_at,
            "refresh_token_valid": now < tokens.refresh_token.expires_at,
            "access_token_expires_in": max(0, int((tokens.access_token.expires_at - now).total_seconds())),
            "refresh_token_expires_in": max(0, int((tokens.refresh_token.expires_at - now).total_seconds())),
        }

    def has_scheduled_refresh(self) -> bool:
        return self._timer is not None

    def clear(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._tokens = None

    def destroy(self) -> None:
        self.clear()
        self._refresh_callback = None

    def _expires_within(self, token: TokenInfo, margin: timedelta) -> bool:
        return token.expires_at - self._clock() <= margin

    def _schedule_refresh(self) -> None:
        self._cancel_timer()
        if self._tokens is None:
            return
        refresh_at = self._tokens.access_token.expires_at - REFRESH_MARGIN
        delay = max(0.0, (refresh_at - self._clock()).total_seconds())
        self._timer = self._timer_factory(delay, self._scheduled_refresh)
        self._timer.start()

    def _scheduled_refresh(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.refresh_access_token()
        except KsefError as exc:
            logger.warning(
                "ksef.tokens.scheduled_refresh_failed",
                extra={"error_type": exc.error_type.value, "error": exc.message},
            )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class KsefTokenRegistry:
    """One token manager per business profile."""

    def __init__(self, factory: Callable[[], KsefTokenManager] = KsefTokenManager) -> None:
        self._factory = factory
        self._managers: dict[str, KsefTokenManager] = {}
        self._lock = threading.Lock()

    def get(self, business_profile_id: str) -> KsefTokenManager:
        with self._lock:
            manager = self._managers.get(business_profile_id)
            if manager is None:
                manager = self._factory()
                self._managers[business_profile_id] = manager
            return manager

    def find(self, business_profile_id: str) -> KsefTokenManager | None:
        return self._managers.get(business_profile_id)

    def remove(self, business_profile_id: str) -> None:
        with self._lock:
            manager = self._managers.pop(business_profile_id, None)
        if manager is not None:
            manager.destroy()

    def clear(self) -> None:
        with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            manager.destroy()


token_registry = KsefTokenRegistry()
