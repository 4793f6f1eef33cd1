"""User-visible notices for session tracking."""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from worktime.core.models import format_elapsed

logger = logging.getLogger(__name__)


class NoticeLevel(Enum):
    """Severity of a notice."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """Non-fatal message shown to the actor."""

    title: str
    message: str
    level: NoticeLevel = NoticeLevel.INFO


class Notifier:
    """Deliver notices to listeners and, optionally, desktop notifications."""

    def __init__(self, enabled: bool = False, backend: str = "auto", history_size: int = 50):
        """Initialize notifier.

        Args:
            enabled: Whether desktop notifications are enabled
            backend: Notification backend ('auto', 'plyer')
            history_size: Number of recent notices to keep
        """
        self.enabled = enabled
        self.backend = backend
        self.history: deque[Notice] = deque(maxlen=history_size)
        self._listeners: list[Callable[[Notice], None]] = []
        self._notifier = self._init_notifier()

    def _init_notifier(self) -> Any:
        """Initialize desktop notification backend.

        Returns:
            Notification handler or None if not available
        """
        if not self.enabled:
            return None

        try:
            from plyer import notification  # type: ignore[import-not-found]

            return notification  # type: ignore[no-any-return]
        except ImportError:
            logger.debug("plyer not installed, desktop notifications disabled")
            return None

    def add_listener(self, listener: Callable[[Notice], None]) -> None:
        """Register a callable that receives every notice."""
        self._listeners.append(listener)

    def notify(
        self,
        title: str,
        message: str,
        level: NoticeLevel = NoticeLevel.INFO,
        timeout: int = 5,
    ) -> Notice:
        """Publish a notice.

        Args:
            title: Notice title
            message: Notice message
            level: Severity of the notice
            timeout: Desktop display duration in seconds

        Returns:
            The published notice
        """
        notice = Notice(title=title, message=message, level=level)
        self.history.append(notice)

        if level is NoticeLevel.ERROR:
            logger.warning(f"{title}: {message}")
        else:
            logger.info(f"{title}: {message}")

        for listener in self._listeners:
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}")

        if self.enabled and self._notifier:
            try:
                self._notifier.notify(  # type: ignore[attr-defined]
                    title=title,
                    message=message,
                    app_name="worktime",
                    timeout=timeout,
                )
            except Exception as e:
                # Desktop notifications are non-critical
                logger.debug(f"Desktop notification failed: {e}")

        return notice

    def notify_saved(self, elapsed_seconds: int) -> Notice:
        """Notify that a session was saved.

        Args:
            elapsed_seconds: Final elapsed seconds of the session
        """
        return self.notify(
            "Session Saved",
            f"Time tracked: {format_elapsed(elapsed_seconds)}",
            level=NoticeLevel.SUCCESS,
        )

    def notify_start_failed(self, error: Optional[Exception] = None) -> Notice:
        """Notify that a session could not be opened."""
        message = "Failed to start time tracking"
        if error is not None:
            message = f"{message}: {error}"
        return self.notify("Error", message, level=NoticeLevel.ERROR)

    def notify_save_failed(self, error: Optional[Exception] = None) -> Notice:
        """Notify that a session could not be saved."""
        message = "Failed to save time tracking session"
        if error is not None:
            message = f"{message}: {error}"
        return self.notify("Error", message, level=NoticeLevel.ERROR)
