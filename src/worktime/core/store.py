"""Local persistence of the tracking session and auth credentials."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError  # type: ignore[import-untyped]

from worktime.core.models import TrackingSession
from worktime.gateway.models import AuthSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Keeps the session snapshot and credentials between CLI invocations."""

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize session store.

        Args:
            state_dir: Directory for state files (default: ~/.worktime/state)
        """
        if state_dir is None:
            state_dir = Path.home() / ".worktime" / "state"

        self.state_dir = state_dir
        self.session_file = state_dir / "session.json"
        self.auth_file = state_dir / "credentials.json"

    def load_session(self) -> Optional[TrackingSession]:
        """Load the saved session snapshot.

        Returns:
            Saved session or None if there is none or it is unreadable
        """
        data = self._read(self.session_file)
        if data is None:
            return None

        try:
            return TrackingSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load session state: {e}")
            return None

    def save_session(self, session: TrackingSession) -> None:
        """Save a session snapshot; idle sessions remove the file.

        Args:
            session: Session to save
        """
        if not session.is_open:
            self.clear_session()
            return
        self._write(self.session_file, session.to_dict())
        logger.debug("Session state saved")

    def clear_session(self) -> None:
        """Delete the saved session snapshot."""
        self._remove(self.session_file)

    def load_auth(self) -> Optional[AuthSession]:
        """Load saved credentials.

        Returns:
            Saved auth session or None
        """
        data = self._read(self.auth_file)
        if data is None:
            return None

        try:
            return AuthSession(**data)
        except (TypeError, ValidationError) as e:
            logger.error(f"Failed to load credentials: {e}")
            return None

    def save_auth(self, auth: AuthSession) -> None:
        """Save credentials, readable by the owner only.

        Args:
            auth: Auth session to save
        """
        self._write(self.auth_file, auth.model_dump(mode="json"), private=True)
        logger.debug("Credentials saved")

    def clear_auth(self) -> None:
        """Delete saved credentials."""
        self._remove(self.auth_file)

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Ignoring malformed state file {path}")
            return None
        return data

    def _write(self, path: Path, data: dict[str, Any], private: bool = False) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)

        # Atomic write: write to temp file, then rename
        temp_file = path.with_suffix(".tmp")
        if private:
            # A leftover temp file would keep its old mode
            temp_file.unlink(missing_ok=True)
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            f = os.fdopen(fd, "w", encoding="utf-8")
        else:
            f = open(temp_file, "w", encoding="utf-8")
        with f:
            json.dump(data, f, indent=2)
        temp_file.replace(path)

    def _remove(self, path: Path) -> None:
        if path.exists():
            path.unlink()
            logger.debug(f"{path.name} removed")
