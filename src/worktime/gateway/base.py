"""Gateway contract for the hosted backend."""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

from worktime.gateway.models import AuthSession, TimesheetRecord


class GatewayError(Exception):
    """Network, auth or storage failure reported by the gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        """Initialize error.

        Args:
            message: Human-readable description
            status_code: HTTP status code, if the backend answered
        """
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(GatewayError):
    """Credentials were rejected or the actor is not signed in."""

    pass


class Gateway(ABC):
    """Record, auth and storage operations consumed by the client.

    Every method is a coroutine and raises GatewayError on failure.
    """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Sign in with email and password.

        Args:
            email: Account email
            password: Account password

        Returns:
            Authenticated session

        Raises:
            AuthenticationError: If the credentials are rejected
        """

    @abstractmethod
    async def refresh(self, auth: AuthSession) -> AuthSession:
        """Exchange a refresh token for a new session."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Invalidate the current auth session."""

    @abstractmethod
    def set_auth(self, auth: Optional[AuthSession]) -> None:
        """Use the given auth session for subsequent requests."""

    @abstractmethod
    async def create_session_record(self, actor_id: str, fields: dict[str, Any]) -> str:
        """Create a tracking session record.

        Args:
            actor_id: Owner of the record
            fields: Placeholder column values

        Returns:
            Identifier of the created record
        """

    @abstractmethod
    async def update_session_record(
        self,
        session_id: str,
        actor_id: str,
        elapsed_seconds: int,
        summary: str,
    ) -> None:
        """Record the final elapsed time of a session.

        Args:
            session_id: Record identifier
            actor_id: Owner of the record
            elapsed_seconds: Final elapsed seconds
            summary: Description text stored with the record
        """

    @abstractmethod
    async def list_session_records(
        self, actor_id: str, limit: Optional[int] = None
    ) -> list[TimesheetRecord]:
        """List timesheet records of an actor, newest date first."""

    @abstractmethod
    async def create_timesheet(
        self,
        actor_id: str,
        hours: float,
        day: date,
        description: Optional[str] = None,
    ) -> TimesheetRecord:
        """Create a manual timesheet record."""

    async def aclose(self) -> None:
        """Release network resources."""
        return None
