"""Tests for the REST gateway."""

import asyncio
import json
from datetime import date
from typing import Any, Callable, Optional

import httpx
import pytest  # type: ignore[import-not-found]
from conftest import VirtualClock

from worktime.core.clock import SessionClock
from worktime.core.context import TrackingContext
from worktime.core.models import ClockState
from worktime.core.notifier import NoticeLevel, Notifier
from worktime.gateway.base import AuthenticationError, GatewayError
from worktime.gateway.models import Actor, AuthSession
from worktime.gateway.rest import RestGateway

TOKEN_RESPONSE = {
    "access_token": "access-1",
    "refresh_token": "refresh-1",
    "expires_in": 3600,
    "user": {"id": "user-1", "email": "me@example.com", "role": "authenticated"},
}


class Recorder:
    """Mock transport handler that records requests."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_gateway(
    handler: Callable[[httpx.Request], httpx.Response], signed_in: bool = True
) -> tuple[RestGateway, Recorder]:
    recorder = Recorder(handler)
    gateway = RestGateway(
        "https://project.example.test/",
        "anon-key",
        transport=httpx.MockTransport(recorder),
    )
    if signed_in:
        gateway.set_auth(
            AuthSession(access_token="access-1", actor=Actor(id="user-1"))
        )
    return gateway, recorder


def body(request: httpx.Request) -> Any:
    return json.loads(request.content)


def respond(status: int, payload: Optional[Any] = None) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload)

    return handler


class TestConfiguration:
    """Test gateway construction."""

    def test_missing_url_rejected(self) -> None:
        """Test a gateway without URL cannot be built."""
        with pytest.raises(ValueError, match="URL"):
            RestGateway("", "anon-key")

    def test_missing_key_rejected(self) -> None:
        """Test a gateway without API key cannot be built."""
        with pytest.raises(ValueError, match="API key"):
            RestGateway("https://project.example.test", "")


class TestAuth:
    """Test sign-in, refresh and sign-out."""

    def test_sign_in(self) -> None:
        """Test password sign-in returns the actor and tokens."""
        gateway, recorder = make_gateway(respond(200, TOKEN_RESPONSE), signed_in=False)

        auth = asyncio.run(gateway.sign_in("me@example.com", "secret"))

        assert auth.access_token == "access-1"
        assert auth.actor == Actor(id="user-1", email="me@example.com")
        assert auth.expires_at is not None
        assert not auth.is_expired

        request = recorder.last
        assert request.method == "POST"
        assert request.url.path == "/auth/v1/token"
        assert request.url.params["grant_type"] == "password"
        assert request.headers["apikey"] == "anon-key"
        assert body(request) == {"email": "me@example.com", "password": "secret"}

    def test_sign_in_rejected(self) -> None:
        """Test rejected credentials raise AuthenticationError."""
        gateway, _ = make_gateway(
            respond(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"}),
            signed_in=False,
        )

        with pytest.raises(AuthenticationError, match="Invalid login credentials") as exc_info:
            asyncio.run(gateway.sign_in("me@example.com", "wrong"))

        assert exc_info.value.status_code == 400

    def test_sign_in_unexpected_body(self) -> None:
        """Test a token response without user raises GatewayError."""
        gateway, _ = make_gateway(respond(200, {"access_token": "a"}), signed_in=False)

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.sign_in("me@example.com", "secret"))

    def test_refresh(self) -> None:
        """Test refreshing uses the refresh token grant."""
        gateway, recorder = make_gateway(respond(200, TOKEN_RESPONSE))
        expired = AuthSession(
            access_token="old", refresh_token="refresh-0", actor=Actor(id="user-1")
        )

        auth = asyncio.run(gateway.refresh(expired))

        assert auth.access_token == "access-1"
        assert recorder.last.url.params["grant_type"] == "refresh_token"
        assert body(recorder.last) == {"refresh_token": "refresh-0"}

    def test_refresh_without_token(self) -> None:
        """Test refresh fails without a refresh token."""
        gateway, recorder = make_gateway(respond(200, TOKEN_RESPONSE))

        with pytest.raises(AuthenticationError):
            asyncio.run(gateway.refresh(AuthSession(access_token="old", actor=Actor(id="user-1"))))

        assert recorder.requests == []

    def test_sign_out(self) -> None:
        """Test sign-out posts to the logout endpoint with the bearer token."""
        gateway, recorder = make_gateway(respond(204))

        asyncio.run(gateway.sign_out())

        assert recorder.last.url.path == "/auth/v1/logout"
        assert recorder.last.headers["Authorization"] == "Bearer access-1"

    def test_sign_out_clears_auth_on_failure(self) -> None:
        """Test local auth is dropped even if logout fails."""
        gateway, recorder = make_gateway(respond(500, {"message": "boom"}))

        with pytest.raises(GatewayError):
            asyncio.run(gateway.sign_out())

        # Now signed out: nothing else is sent
        asyncio.run(gateway.sign_out())
        assert len(recorder.requests) == 1


class TestSessionRecords:
    """Test session record operations."""

    def test_create_session_record(self) -> None:
        """Test creating a record posts the placeholder row."""
        gateway, recorder = make_gateway(respond(201, [{"id": "abc-123"}]))
        fields = {
            "description": "Active session",
            "hours": 0,
            "date": date(2026, 1, 5),
            "project_id": None,
            "task_id": None,
        }

        session_id = asyncio.run(gateway.create_session_record("user-1", fields))

        assert session_id == "abc-123"
        request = recorder.last
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/timesheets"
        assert request.headers["Prefer"] == "return=representation"
        assert request.headers["Authorization"] == "Bearer access-1"
        assert body(request) == {
            "user_id": "user-1",
            "date": "2026-01-05",
            "hours": 0,
            "description": "Active session",
            "project_id": None,
            "task_id": None,
        }

    def test_create_without_id_fails(self) -> None:
        """Test a response without an id is an error."""
        gateway, _ = make_gateway(respond(201, []))

        with pytest.raises(GatewayError, match="no id"):
            asyncio.run(gateway.create_session_record("user-1", {"hours": 0}))

    def test_create_requires_auth(self) -> None:
        """Test record operations require a signed-in actor."""
        gateway, recorder = make_gateway(respond(201, [{"id": "x"}]), signed_in=False)

        with pytest.raises(AuthenticationError):
            asyncio.run(gateway.create_session_record("user-1", {"hours": 0}))

        assert recorder.requests == []

    def test_update_session_record(self) -> None:
        """Test the update filters by id and owner."""
        gateway, recorder = make_gateway(respond(204))

        asyncio.run(gateway.update_session_record("abc-123", "user-1", 5400, "Session: 1:30:00"))

        request = recorder.last
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.abc-123"
        assert request.url.params["user_id"] == "eq.user-1"
        assert body(request) == {"hours": 1.5, "description": "Session: 1:30:00"}

    def test_service_error(self) -> None:
        """Test a 5xx response raises GatewayError with its status."""
        gateway, _ = make_gateway(respond(503, {"message": "unavailable"}))

        with pytest.raises(GatewayError, match="unavailable") as exc_info:
            asyncio.run(gateway.update_session_record("abc", "user-1", 10, "Session: 0:10"))

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, AuthenticationError)

    def test_unauthorized(self) -> None:
        """Test a 401 response raises AuthenticationError."""
        gateway, _ = make_gateway(respond(401, {"message": "JWT expired"}))

        with pytest.raises(AuthenticationError, match="JWT expired"):
            asyncio.run(gateway.update_session_record("abc", "user-1", 10, "Session: 0:10"))

    def test_network_error(self) -> None:
        """Test transport failures become GatewayError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway, _ = make_gateway(handler)

        with pytest.raises(GatewayError, match="connection refused") as exc_info:
            asyncio.run(gateway.update_session_record("abc", "user-1", 10, "Session: 0:10"))

        assert exc_info.value.status_code is None

    def test_list_session_records(self) -> None:
        """Test listing returns typed rows, newest first."""
        rows = [
            {
                "id": "r2",
                "user_id": "user-1",
                "date": "2026-01-06",
                "hours": 0.25,
                "description": "Session: 15:00",
                "organization_id": "ignored",
            },
            {"id": "r1", "user_id": "user-1", "date": "2026-01-05", "hours": 1},
        ]
        gateway, recorder = make_gateway(respond(200, rows))

        records = asyncio.run(gateway.list_session_records("user-1", limit=5))

        assert [r.id for r in records] == ["r2", "r1"]
        assert records[0].seconds == 900
        assert records[1].date == date(2026, 1, 5)
        params = recorder.last.url.params
        assert params["user_id"] == "eq.user-1"
        assert params["order"] == "date.desc"
        assert params["limit"] == "5"

    def test_list_malformed_rows(self) -> None:
        """Test malformed rows raise GatewayError."""
        gateway, _ = make_gateway(respond(200, [{"id": "r1"}]))

        with pytest.raises(GatewayError, match="malformed"):
            asyncio.run(gateway.list_session_records("user-1"))

    def test_create_timesheet(self) -> None:
        """Test manual entries are posted with their day and hours."""
        row = {"id": "m1", "user_id": "user-1", "date": "2026-01-04", "hours": 2.5}
        gateway, recorder = make_gateway(respond(201, [row]))

        record = asyncio.run(
            gateway.create_timesheet("user-1", 2.5, date(2026, 1, 4), "Code review")
        )

        assert record.id == "m1"
        assert record.hours == 2.5
        sent = body(recorder.last)
        assert sent["date"] == "2026-01-04"
        assert sent["description"] == "Code review"

    def test_custom_table(self) -> None:
        """Test the table name is configurable."""
        recorder = Recorder(respond(204))
        gateway = RestGateway(
            "https://project.example.test",
            "anon-key",
            table="worklog",
            transport=httpx.MockTransport(recorder),
        )
        gateway.set_auth(AuthSession(access_token="a", actor=Actor(id="user-1")))

        asyncio.run(gateway.update_session_record("abc", "user-1", 0, "Session: 0:00"))

        assert recorder.last.url.path == "/rest/v1/worklog"


def html_page(status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    """Handler answering like a proxy error page: 2xx status, HTML body."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="<html>gateway</html>")

    return handler


class TestNonJsonBodies:
    """Test successful responses whose body is not JSON."""

    def test_create_session_record(self) -> None:
        """Test an HTML body on create raises GatewayError."""
        gateway, _ = make_gateway(html_page(201))

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.create_session_record("user-1", {"hours": 0}))

    def test_list_session_records(self) -> None:
        """Test an HTML body on list raises GatewayError."""
        gateway, _ = make_gateway(html_page())

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.list_session_records("user-1"))

    def test_create_timesheet(self) -> None:
        """Test an HTML body on insert raises GatewayError."""
        gateway, _ = make_gateway(html_page(201))

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.create_timesheet("user-1", 1.0, date(2026, 1, 4)))

    def test_sign_in(self) -> None:
        """Test an HTML body on sign-in raises GatewayError."""
        gateway, _ = make_gateway(html_page(), signed_in=False)

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.sign_in("me@example.com", "secret"))

    def test_token_body_that_is_not_an_object(self) -> None:
        """Test a JSON list on sign-in raises GatewayError."""
        gateway, _ = make_gateway(respond(200, ["unexpected"]), signed_in=False)

        with pytest.raises(GatewayError, match="unexpected response"):
            asyncio.run(gateway.sign_in("me@example.com", "secret"))

    def test_clock_start_reports_notice(self) -> None:
        """Test the clock turns the decode failure into an error notice."""
        gateway, _ = make_gateway(html_page(201))
        virtual_clock = VirtualClock()
        notifier = Notifier()
        clock = SessionClock(gateway, scheduler=virtual_clock, notifier=notifier, now=virtual_clock)
        clock.set_actor("user-1")

        started = asyncio.run(clock.start())

        assert started is False
        assert clock.state is ClockState.IDLE
        assert not clock.is_busy
        assert not clock.has_active_tick
        assert notifier.history[-1].level is NoticeLevel.ERROR
        assert "Failed to start time tracking" in notifier.history[-1].message


class TestSignOutDuringCreate:
    """Test signing out while the session record is still being created."""

    def test_record_is_closed_before_logout(self) -> None:
        """Test the new record is closed while the actor is still authenticated."""

        async def scenario() -> list[tuple[str, str, Optional[str]]]:
            release = asyncio.Event()
            seen: list[tuple[str, str, Optional[str]]] = []

            async def handler(request: httpx.Request) -> httpx.Response:
                seen.append(
                    (request.method, request.url.path, request.headers.get("Authorization"))
                )
                if request.url.path == "/auth/v1/token":
                    return httpx.Response(200, json=TOKEN_RESPONSE)
                if request.method == "POST" and request.url.path == "/rest/v1/timesheets":
                    await release.wait()
                    return httpx.Response(201, json=[{"id": "abc"}])
                return httpx.Response(204)

            gateway = RestGateway(
                "https://project.example.test/",
                "anon-key",
                transport=httpx.MockTransport(handler),
            )
            virtual_clock = VirtualClock()
            clock = SessionClock(
                gateway, scheduler=virtual_clock, notifier=Notifier(), now=virtual_clock
            )
            context = TrackingContext(gateway, clock=clock, auto_start=False)
            await context.sign_in("me@example.com", "secret")

            start = asyncio.create_task(clock.start())
            while not any(path == "/rest/v1/timesheets" for _, path, _ in seen):
                await asyncio.sleep(0)
            sign_out = asyncio.create_task(context.sign_out())
            await asyncio.sleep(0)
            release.set()
            await asyncio.gather(start, sign_out)

            assert clock.state is ClockState.IDLE
            assert clock.session_id is None
            assert not clock.has_active_tick
            assert not context.is_authenticated
            await context.close()
            return seen

        seen = asyncio.run(scenario())

        methods = [(method, path) for method, path, _ in seen]
        assert methods == [
            ("POST", "/auth/v1/token"),
            ("POST", "/rest/v1/timesheets"),
            ("PATCH", "/rest/v1/timesheets"),
            ("POST", "/auth/v1/logout"),
        ]
        # The close is sent with the actor's token
        assert seen[2][2] == "Bearer access-1"
