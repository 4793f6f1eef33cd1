"""Gateway implementation for the hosted backend's REST endpoints."""

import logging
from datetime import date
from typing import Any, Optional

import httpx
from pydantic import ValidationError  # type: ignore[import-untyped]

from worktime.gateway.base import AuthenticationError, Gateway, GatewayError
from worktime.gateway.models import AuthSession, TimesheetInsert, TimesheetRecord

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response, context: str) -> None:
    """Convert an error response into a GatewayError.

    Args:
        response: Response to check
        context: Operation name used in log and error messages

    Raises:
        AuthenticationError: On 401/403 or rejected credentials
        GatewayError: On any other 4xx/5xx status
    """
    if response.status_code < 400:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = ""
    if isinstance(body, dict):
        detail = str(
            body.get("error_description")
            or body.get("msg")
            or body.get("message")
            or body.get("error")
            or ""
        )
    message = f"{context} failed ({response.status_code})"
    if detail:
        message = f"{message}: {detail}"

    rejected = isinstance(body, dict) and body.get("error") == "invalid_grant"
    if response.status_code in {401, 403} or rejected:
        logger.warning("Gateway authentication failed for %s", context)
        raise AuthenticationError(message, response.status_code)
    if response.status_code >= 500:
        logger.error("Gateway service error %s during %s", response.status_code, context)
    else:
        logger.error("Gateway request error %s during %s", response.status_code, context)
    raise GatewayError(message, response.status_code)


def _decode(response: httpx.Response, context: str) -> Any:
    """Decode a JSON body, raising GatewayError when it is not JSON."""
    try:
        return response.json()
    except ValueError as e:
        logger.error("Gateway returned a non-JSON body during %s", context)
        raise GatewayError(f"{context} returned an unexpected response: {e}") from e


class RestGateway(Gateway):
    """Talks to the backend's auth (/auth/v1) and table (/rest/v1) endpoints."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        table: str = "timesheets",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gateway.

        Args:
            url: Base URL of the backend project
            anon_key: Public API key sent with every request
            table: Table holding session records
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not url:
            raise ValueError("Gateway URL is not configured")
        if not anon_key:
            raise ValueError("Gateway API key is not configured")

        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.table = table
        self._auth: Optional[AuthSession] = None
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=httpx.Timeout(timeout),
            headers={"apikey": anon_key},
            transport=transport,
        )

    def set_auth(self, auth: Optional[AuthSession]) -> None:
        self._auth = auth

    def _headers(self, **extra: str) -> dict[str, str]:
        token = self._auth.access_token if self._auth else self.anon_key
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(extra)
        return headers

    def _require_auth(self) -> AuthSession:
        if self._auth is None:
            raise AuthenticationError("Not signed in")
        return self._auth

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Gateway request failed during %s: %s", context, e)
            raise GatewayError(f"{context} failed: {e}") from e
        _raise_for_status(response, context)
        return response

    async def _token(self, grant_type: str, payload: dict[str, Any], context: str) -> AuthSession:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            context,
            params={"grant_type": grant_type},
            json=payload,
        )
        try:
            auth = AuthSession.from_token_response(_decode(response, context))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"{context} returned an unexpected response: {e}") from e
        self._auth = auth
        return auth

    async def sign_in(self, email: str, password: str) -> AuthSession:
        auth = await self._token("password", {"email": email, "password": password}, "sign in")
        logger.info(f"Signed in as {auth.actor.email or auth.actor.id}")
        return auth

    async def refresh(self, auth: AuthSession) -> AuthSession:
        if not auth.refresh_token:
            raise AuthenticationError("Session expired and no refresh token is available")
        return await self._token(
            "refresh_token", {"refresh_token": auth.refresh_token}, "token refresh"
        )

    async def sign_out(self) -> None:
        if self._auth is None:
            return
        try:
            await self._request("POST", "/auth/v1/logout", "sign out", headers=self._headers())
        finally:
            self._auth = None

    async def create_session_record(self, actor_id: str, fields: dict[str, Any]) -> str:
        self._require_auth()
        payload = TimesheetInsert(user_id=actor_id, **fields).model_dump(mode="json")
        response = await self._request(
            "POST",
            f"/rest/v1/{self.table}",
            "create session record",
            json=payload,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = _decode(response, "create session record")
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or not row.get("id"):
            raise GatewayError("create session record returned no id")
        logger.debug(f"Created session record {row['id']}")
        return str(row["id"])

    async def update_session_record(
        self,
        session_id: str,
        actor_id: str,
        elapsed_seconds: int,
        summary: str,
    ) -> None:
        self._require_auth()
        await self._request(
            "PATCH",
            f"/rest/v1/{self.table}",
            "update session record",
            params={"id": f"eq.{session_id}", "user_id": f"eq.{actor_id}"},
            json={"hours": elapsed_seconds / 3600, "description": summary},
            headers=self._headers(Prefer="return=minimal"),
        )
        logger.debug(f"Updated session record {session_id} ({elapsed_seconds}s)")

    async def list_session_records(
        self, actor_id: str, limit: Optional[int] = None
    ) -> list[TimesheetRecord]:
        self._require_auth()
        params = {"select": "*", "user_id": f"eq.{actor_id}", "order": "date.desc"}
        if limit:
            params["limit"] = str(limit)
        response = await self._request(
            "GET",
            f"/rest/v1/{self.table}",
            "list session records",
            params=params,
            headers=self._headers(),
        )
        rows = _decode(response, "list session records")
        try:
            return [TimesheetRecord(**row) for row in rows]
        except (TypeError, ValidationError) as e:
            raise GatewayError(f"list session records returned malformed rows: {e}") from e

    async def create_timesheet(
        self,
        actor_id: str,
        hours: float,
        day: date,
        description: Optional[str] = None,
    ) -> TimesheetRecord:
        self._require_auth()
        payload = TimesheetInsert(
            user_id=actor_id, date=day, hours=hours, description=description
        ).model_dump(mode="json")
        response = await self._request(
            "POST",
            f"/rest/v1/{self.table}",
            "create timesheet",
            json=payload,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = _decode(response, "create timesheet")
        row = rows[0] if isinstance(rows, list) and rows else rows
        try:
            return TimesheetRecord(**row)
        except (TypeError, ValidationError) as e:
            raise GatewayError(f"create timesheet returned a malformed row: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
