"""Pytest configuration and shared fixtures."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest  # type: ignore[import-not-found]

from worktime.core.clock import SessionClock
from worktime.core.notifier import Notifier
from worktime.gateway.base import AuthenticationError, Gateway, GatewayError
from worktime.gateway.models import Actor, AuthSession, TimesheetRecord


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")


class VirtualTimer:
    """Scheduled callback of a VirtualClock."""

    def __init__(self, due: datetime, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClock:
    """Deterministic wall clock and scheduler.

    Serves both as the `now` callable and as the Scheduler of a SessionClock.
    """

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)
        self.timers: list[VirtualTimer] = []

    def __call__(self) -> datetime:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self.now + timedelta(seconds=delay), callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[VirtualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.now + timedelta(seconds=seconds)
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = max(self.now, timer.due)
            timer.fired = True
            timer.callback()
        self.now = target

    def jump(self, seconds: float) -> None:
        """Move time forward without firing timers (missed ticks)."""
        self.now = self.now + timedelta(seconds=seconds)


class FakeGateway(Gateway):
    """In-memory gateway recording every call."""

    def __init__(self) -> None:
        self.auth: Optional[AuthSession] = None
        self.records: dict[str, dict[str, Any]] = {}
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.updates: list[tuple[str, str, int, str]] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_sign_out = False
        self.create_gate: Optional[asyncio.Event] = None
        self.signed_out = 0
        self.closed = False
        self.password = "secret"
        self.actor = Actor(id="user-1", email="me@example.com")
        self._next_id = 1

    async def sign_in(self, email: str, password: str) -> AuthSession:
        if password != self.password:
            raise AuthenticationError("sign in failed (400): Invalid login credentials", 400)
        self.auth = AuthSession(
            access_token="token-1",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            actor=Actor(id=self.actor.id, email=email),
        )
        return self.auth

    async def refresh(self, auth: AuthSession) -> AuthSession:
        self.auth = AuthSession(
            access_token="token-2",
            refresh_token=auth.refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            actor=auth.actor,
        )
        return self.auth

    async def sign_out(self) -> None:
        self.signed_out += 1
        if self.fail_sign_out:
            raise GatewayError("sign out failed")
        self.auth = None

    def set_auth(self, auth: Optional[AuthSession]) -> None:
        self.auth = auth

    async def create_session_record(self, actor_id: str, fields: dict[str, Any]) -> str:
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_create:
            raise GatewayError("create session record failed (503)", 503)
        record_id = f"session-{self._next_id}"
        self._next_id += 1
        self.created.append((actor_id, fields))
        self.records[record_id] = {"id": record_id, "user_id": actor_id, **fields}
        return record_id

    async def update_session_record(
        self,
        session_id: str,
        actor_id: str,
        elapsed_seconds: int,
        summary: str,
    ) -> None:
        if self.fail_update:
            raise GatewayError("update session record failed: connection reset")
        self.updates.append((session_id, actor_id, elapsed_seconds, summary))
        record = self.records.setdefault(session_id, {"id": session_id, "user_id": actor_id})
        record["hours"] = elapsed_seconds / 3600
        record["description"] = summary

    async def list_session_records(
        self, actor_id: str, limit: Optional[int] = None
    ) -> list[TimesheetRecord]:
        rows = [
            TimesheetRecord(
                id=r["id"],
                user_id=r["user_id"],
                date=r.get("date") or date(2026, 1, 5),
                hours=r.get("hours", 0),
                description=r.get("description"),
            )
            for r in self.records.values()
            if r["user_id"] == actor_id
        ]
        rows.sort(key=lambda r: r.date, reverse=True)
        return rows[:limit] if limit else rows

    async def create_timesheet(
        self,
        actor_id: str,
        hours: float,
        day: date,
        description: Optional[str] = None,
    ) -> TimesheetRecord:
        record_id = f"manual-{self._next_id}"
        self._next_id += 1
        self.records[record_id] = {
            "id": record_id,
            "user_id": actor_id,
            "date": day,
            "hours": hours,
            "description": description,
        }
        return TimesheetRecord(
            id=record_id, user_id=actor_id, date=day, hours=hours, description=description
        )

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def virtual_clock() -> VirtualClock:
    """Create a deterministic clock/scheduler."""
    return VirtualClock()


@pytest.fixture
def gateway() -> FakeGateway:
    """Create an in-memory gateway."""
    return FakeGateway()


@pytest.fixture
def notifier() -> Notifier:
    """Create a notifier without desktop notifications."""
    return Notifier(enabled=False)


@pytest.fixture
def session_clock(
    gateway: FakeGateway, virtual_clock: VirtualClock, notifier: Notifier
) -> SessionClock:
    """Create a session clock for an authenticated actor."""
    clock = SessionClock(gateway, scheduler=virtual_clock, notifier=notifier, now=virtual_clock)
    clock.set_actor("user-1")
    return clock
