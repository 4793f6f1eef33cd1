"""Pydantic models for gateway records and auth sessions.

These models describe the rows and payloads exchanged with the hosted
backend. Unknown columns returned by the backend are ignored.
"""

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field  # type: ignore[import-untyped]


class Actor(BaseModel):
    """Authenticated user of the hosted backend."""

    id: str
    email: Optional[str] = None

    class Config:
        """Pydantic configuration."""

        extra = "ignore"


class AuthSession(BaseModel):
    """Tokens returned by a successful sign-in."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[dt.datetime] = None
    actor: Actor

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if self.expires_at is None:
            return False
        return dt.datetime.now(dt.timezone.utc) >= self.expires_at

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "AuthSession":
        """Create session from an auth token response.

        Args:
            data: Decoded JSON body of the token endpoint

        Returns:
            AuthSession instance
        """
        expires_at = None
        if data.get("expires_at"):
            expires_at = dt.datetime.fromtimestamp(int(data["expires_at"]), tz=dt.timezone.utc)
        elif data.get("expires_in"):
            expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(
                seconds=int(data["expires_in"])
            )

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            actor=Actor(**data["user"]),
        )


class TimesheetRecord(BaseModel):
    """Row of the timesheets table."""

    id: str
    user_id: str
    date: dt.date
    hours: float = 0
    description: Optional[str] = None
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        """Pydantic configuration."""

        extra = "ignore"

    @property
    def seconds(self) -> int:
        """Recorded time in whole seconds."""
        return int(round(self.hours * 3600))


class TimesheetInsert(BaseModel):
    """Payload for creating a timesheet row."""

    user_id: str
    date: dt.date = Field(default_factory=dt.date.today)
    hours: float = 0
    description: Optional[str] = None
    project_id: Optional[str] = None
    task_id: Optional[str] = None
