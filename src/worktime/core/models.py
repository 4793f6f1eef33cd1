"""Core data models for session tracking."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ClockState(Enum):
    """States of the session clock."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class TrackingSession:
    """Snapshot of the single tracked activity of an actor.

    Attributes:
        session_id: Identifier assigned by the gateway (None while idle)
        state: Current clock state
        accumulated_seconds: Elapsed seconds as last computed
        baseline_seconds: Elapsed seconds frozen at the last transition
        run_started_at: Start of the current running interval (running only)
        actor_id: Actor the session belongs to
        opened_at: When the session record was created
    """

    session_id: Optional[str] = None
    state: ClockState = ClockState.IDLE
    accumulated_seconds: int = 0
    baseline_seconds: int = 0
    run_started_at: Optional[datetime] = None
    actor_id: Optional[str] = None
    opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """Check if a session record is open."""
        return self.session_id is not None

    @property
    def is_running(self) -> bool:
        """Check if the session is currently running."""
        return self.state is ClockState.RUNNING

    def elapsed_at(self, now: datetime) -> int:
        """Derive elapsed seconds at a given instant.

        Args:
            now: Instant to evaluate at

        Returns:
            Baseline plus the running interval, never below the last computed value
        """
        if self.state is not ClockState.RUNNING or self.run_started_at is None:
            return self.accumulated_seconds

        interval = int((now - self.run_started_at).total_seconds())
        return max(self.accumulated_seconds, self.baseline_seconds + max(0, interval))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "accumulated_seconds": self.accumulated_seconds,
            "baseline_seconds": self.baseline_seconds,
            "run_started_at": self.run_started_at.isoformat() if self.run_started_at else None,
            "actor_id": self.actor_id,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackingSession":
        """Create TrackingSession from dictionary (JSON deserialization)."""
        return cls(
            session_id=data.get("session_id") or None,
            state=ClockState(data.get("state", ClockState.IDLE.value)),
            accumulated_seconds=int(data.get("accumulated_seconds") or 0),
            baseline_seconds=int(data.get("baseline_seconds") or 0),
            run_started_at=(
                datetime.fromisoformat(data["run_started_at"])
                if data.get("run_started_at")
                else None
            ),
            actor_id=data.get("actor_id") or None,
            opened_at=(
                datetime.fromisoformat(data["opened_at"]) if data.get("opened_at") else None
            ),
        )


@dataclass
class SessionEvent:
    """Change published by the session clock to its listeners.

    Attributes:
        kind: What happened ("tick", "started", "paused", "resumed", "stopped")
        state: Clock state after the change
        elapsed_seconds: Elapsed seconds after the change
        session_id: Session the change applies to
    """

    kind: str
    state: ClockState
    elapsed_seconds: int
    session_id: Optional[str] = None


def format_elapsed(seconds: int) -> str:
    """Format elapsed seconds as H:MM:SS, or M:SS under an hour."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
