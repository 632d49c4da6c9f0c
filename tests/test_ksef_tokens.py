from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType
from ksiegai.integrations.ksef.tokens import KsefTokenManager, KsefTokenRegistry, TokenInfo


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture()
def manager(clock: FakeClock, timers: list[FakeTimer]) -> KsefTokenManager:
    def factory(delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        timers.append(timer)
        return timer

    return KsefTokenManager(clock=clock, timer_factory=factory)


def _store(manager: KsefTokenManager, clock: FakeClock, *, access_seconds: int = 900, refresh_seconds: int = 86400) -> None:
    manager.store_tokens(
        TokenInfo.issued("access-1", access_seconds, now=clock()),
        TokenInfo.issued("refresh-1", refresh_seconds, now=clock()),
        company_id="profile-1",
        context_type="nip",
        context_value="5260250274",
    )


def test_store_schedules_refresh_five_minutes_before_expiry(
    manager: KsefTokenManager,
    clock: FakeClock,
    timers: list[FakeTimer],
) -> None:
    assert manager.get_token_status() == {"has_tokens": False}
    _store(manager, clock)

    assert manager.has_scheduled_refresh()
    assert timers[0].started
    assert timers[0].delay == 600.0
    assert manager.get_access_token() == "access-1"

    status = manager.get_token_status()
    assert status["access_token_valid"] is True
    assert status["access_token_expires_in"] == 900
    assert status["refresh_token_expires_in"] == 86400


def test_access_token_refreshes_inside_margin(
    manager: KsefTokenManager,
    clock: FakeClock,
    timers: list[FakeTimer],
) -> None:
    refreshed_with: list[str] = []

    def refresh(refresh_token: str) -> TokenInfo:
        refreshed_with.append(refresh_token)
        return TokenInfo.issued("access-2", 900, now=clock())

    manager.set_refresh_callback(refresh)
    _store(manager, clock)
    clock.advance(seconds=700)

    assert manager.get_access_token() == "access-2"
    assert refreshed_with == ["refresh-1"]
    assert timers[0].cancelled
    assert len(timers) == 2


def test_scheduled_refresh_runs_callback(manager: KsefTokenManager, clock: FakeClock, timers: list[FakeTimer]) -> None:
    manager.set_refresh_callback(lambda _token: TokenInfo.issued("access-2", 900, now=clock()))
    _store(manager, clock)
    clock.advance(seconds=600)

    timers[0].callback()
    assert manager.get_tokens().access_token.token == "access-2"


def test_refresh_errors(manager: KsefTokenManager, clock: FakeClock) -> None:
    with pytest.raises(KsefError) as exc_info:
        manager.get_access_token()
    assert exc_info.value.error_type == KsefErrorType.AUTHENTICATION

    _store(manager, clock)
    with pytest.raises(KsefError) as exc_info:
        manager.refresh_access_token()
    assert exc_info.value.error_type == KsefErrorType.SESSION

    manager.set_refresh_callback(lambda _token: TokenInfo.issued("access-2", 900, now=clock()))
    clock.advance(days=2)
    with pytest.raises(KsefError) as exc_info:
        manager.refresh_access_token()
    assert exc_info.value.error_type == KsefErrorType.AUTHENTICATION
    assert manager.get_tokens() is None
    assert not manager.has_scheduled_refresh()


def test_registry_keeps_one_manager_per_profile(clock: FakeClock) -> None:
    registry = KsefTokenRegistry(lambda: KsefTokenManager(clock=clock, timer_factory=FakeTimer))
    first = registry.get("profile-1")
    assert registry.get("profile-1") is first
    assert registry.get("profile-2") is not first
    assert registry.find("profile-3") is None

    _store(first, clock)
    registry.remove("profile-1")
    assert first.get_tokens() is None
    assert registry.find("profile-1") is None

    registry.clear()
    assert registry.find("profile-2") is None
