"""Session clock: start/pause/resume/stop for the actor's tracked activity."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from worktime.core.models import ClockState, SessionEvent, TrackingSession, format_elapsed
from worktime.core.notifier import Notifier
from worktime.core.scheduler import AsyncioScheduler, Scheduler, TimerHandle, utc_now
from worktime.gateway.base import Gateway, GatewayError

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


class PreconditionViolation(Exception):
    """Operation is not valid in the current clock state."""

    pass


class SessionClock:
    """Stopwatch for one tracking session per actor, mirrored to the gateway.

    The clock is driven by a single-shot timer that re-arms itself while the
    session is running. Each tick re-derives the elapsed time from the wall
    clock instead of incrementing a counter, so missed ticks do not lose time.

    Invalid transitions are ignored: operations return False (or None for
    stop) and log the reason at debug level. Gateway failures are turned into
    notices and never raised.
    """

    def __init__(
        self,
        gateway: Gateway,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[Notifier] = None,
        now: Callable[[], datetime] = utc_now,
        tick_interval: float = 1.0,
        placeholder_description: str = "Active session",
    ):
        """Initialize session clock.

        Args:
            gateway: Gateway used to persist session records
            scheduler: Scheduler for the tick. Defaults to the asyncio loop.
            notifier: Notifier for user-visible notices
            now: Wall clock returning timezone-aware datetimes
            tick_interval: Seconds between ticks while running
            placeholder_description: Description stored when a session opens
        """
        self.gateway = gateway
        self.scheduler = scheduler or AsyncioScheduler()
        self.notifier = notifier or Notifier()
        self.tick_interval = tick_interval
        self.placeholder_description = placeholder_description
        self._now = now

        self._session = TrackingSession()
        self._actor_id: Optional[str] = None
        self._tick: Optional[TimerHandle] = None
        self._creating = False
        self._stopping = False
        self._created: Optional[asyncio.Event] = None
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def actor_id(self) -> Optional[str]:
        return self._actor_id

    def set_actor(self, actor_id: Optional[str]) -> None:
        """Set the authenticated actor (None when signed out)."""
        self._actor_id = actor_id

    @property
    def state(self) -> ClockState:
        return self._session.state

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id

    @property
    def accumulated_seconds(self) -> int:
        """Elapsed seconds as of the last tick or transition."""
        return self._session.accumulated_seconds

    @property
    def elapsed_seconds(self) -> int:
        """Elapsed seconds re-derived from the wall clock now."""
        return self._session.elapsed_at(self._now())

    @property
    def is_tracking(self) -> bool:
        return self._session.state is ClockState.RUNNING

    @property
    def is_busy(self) -> bool:
        """Check if a gateway request of this clock is in flight."""
        return self._creating or self._stopping

    @property
    def has_active_tick(self) -> bool:
        return self._tick is not None

    def snapshot(self) -> TrackingSession:
        """Return a copy of the current session with elapsed time brought up to date."""
        session = replace(self._session)
        session.accumulated_seconds = session.elapsed_at(self._now())
        return session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for ticks and transitions.

        Args:
            listener: Callable receiving SessionEvent instances

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Open a new session and start ticking.

        Returns:
            True if a session was opened
        """
        actor_id = self._actor_id
        if actor_id is None:
            logger.debug("Ignoring start: no authenticated actor")
            return False
        try:
            self._require(not self.is_busy, "a gateway request is in flight")
            self._require(not self._session.is_open, "a session is already open")
        except PreconditionViolation as e:
            logger.debug(f"Ignoring start: {e}")
            return False

        self._creating = True
        self._created = asyncio.Event()
        try:
            session_id = await self.gateway.create_session_record(
                actor_id, self._placeholder_fields()
            )
        except GatewayError as e:
            logger.error(f"Error starting time tracking: {e}")
            self.notifier.notify_start_failed(e)
            return False
        finally:
            self._creating = False
            self._created.set()

        if self._actor_id != actor_id:
            # Actor changed while the record was being created
            logger.warning(f"Actor changed during start, closing record {session_id}")
            await self._close_orphan(session_id, actor_id)
            return False

        now = self._now()
        self._session = TrackingSession(
            session_id=session_id,
            state=ClockState.RUNNING,
            run_started_at=now,
            actor_id=actor_id,
            opened_at=now,
        )
        self._arm_tick()
        logger.info(f"Started session {session_id}")
        self._publish("started")
        return True

    async def wait_for_start(self) -> None:
        """Wait until a pending start() has received its session record."""
        if self._creating and self._created is not None:
            await self._created.wait()

    def pause(self) -> bool:
        """Freeze elapsed time and stop ticking.

        Returns:
            True if the clock was paused
        """
        try:
            self._require(not self.is_busy, "a gateway request is in flight")
            self._require(self._session.state is ClockState.RUNNING, "clock is not running")
        except PreconditionViolation as e:
            logger.debug(f"Ignoring pause: {e}")
            return False

        self._cancel_tick()
        self._freeze(self._now())
        self._session.state = ClockState.PAUSED
        logger.info(f"Paused session {self._session.session_id} at {self._session.accumulated_seconds}s")
        self._publish("paused")
        return True

    def resume(self) -> bool:
        """Continue a paused session from its frozen elapsed time.

        Returns:
            True if the clock was resumed
        """
        try:
            self._require(not self.is_busy, "a gateway request is in flight")
            self._require(self._session.state is ClockState.PAUSED, "clock is not paused")
            self._require(self._session.is_open, "no open session")
        except PreconditionViolation as e:
            logger.debug(f"Ignoring resume: {e}")
            return False

        self._session.baseline_seconds = self._session.accumulated_seconds
        self._session.run_started_at = self._now()
        self._session.state = ClockState.RUNNING
        self._arm_tick()
        logger.info(f"Resumed session {self._session.session_id}")
        self._publish("resumed")
        return True

    async def stop(self) -> Optional[int]:
        """Close the session, persisting its elapsed time best-effort.

        Local state always returns to idle, even when the gateway update
        fails; the failure is reported as a notice.

        Returns:
            Final elapsed seconds, or None if there was nothing to stop
        """
        actor_id = self._actor_id
        session_id = self._session.session_id
        if actor_id is None:
            logger.debug("Ignoring stop: no authenticated actor")
            return None
        if session_id is None:
            logger.debug("Ignoring stop: no open session")
            return None
        if self.is_busy:
            logger.debug("Ignoring stop: a gateway request is in flight")
            return None

        self._cancel_tick()
        self._freeze(self._now())
        final_seconds = self._session.accumulated_seconds

        self._stopping = True
        saved = False
        try:
            await self.gateway.update_session_record(
                session_id,
                actor_id,
                final_seconds,
                f"Session: {format_elapsed(final_seconds)}",
            )
            saved = True
        except GatewayError as e:
            logger.error(f"Error stopping time tracking: {e}")
            self.notifier.notify_save_failed(e)
        finally:
            self._stopping = False
            self._cancel_tick()
            self._session = TrackingSession()

        logger.info(f"Stopped session {session_id} after {final_seconds}s (saved={saved})")
        self._publish("stopped", elapsed_seconds=final_seconds, session_id=session_id)
        if saved:
            self.notifier.notify_saved(final_seconds)
        return final_seconds

    async def toggle(self) -> bool:
        """Pause, resume or start depending on the current state.

        Returns:
            True if a transition happened
        """
        if self._session.state is ClockState.PAUSED:
            return self.resume()
        if self._session.state is ClockState.RUNNING:
            return self.pause()
        if self._session.is_open:
            # Open session that is neither running nor paused
            logger.warning(f"Recovering idle clock with open session {self._session.session_id}")
            self._session.state = ClockState.PAUSED
            self._session.run_started_at = None
            return self.resume()
        return await self.start()

    def restore(self, session: TrackingSession) -> bool:
        """Adopt a previously saved session.

        Args:
            session: Snapshot produced by snapshot()

        Returns:
            True if the session was adopted
        """
        try:
            self._require(not self.is_busy, "a gateway request is in flight")
            self._require(not self._session.is_open, "a session is already open")
            self._require(session.is_open, "snapshot has no open session")
            self._require(
                session.actor_id is None or session.actor_id == self._actor_id,
                "snapshot belongs to another actor",
            )
        except PreconditionViolation as e:
            logger.debug(f"Ignoring restore: {e}")
            return False

        self._session = replace(session, actor_id=self._actor_id)
        if self._session.state is ClockState.RUNNING:
            if self._session.run_started_at is None:
                self._session.state = ClockState.PAUSED
            else:
                self._arm_tick()
        logger.debug(f"Restored session {session.session_id} ({session.state.value})")
        return True

    def close(self) -> None:
        """Cancel the tick; the session itself is left as is."""
        self._cancel_tick()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require(condition: bool, reason: str) -> None:
        if not condition:
            raise PreconditionViolation(reason)

    def _placeholder_fields(self) -> dict[str, Any]:
        return {
            "description": self.placeholder_description,
            "hours": 0,
            "date": self._now().date(),
            "project_id": None,
            "task_id": None,
        }

    def _freeze(self, now: datetime) -> None:
        elapsed = self._session.elapsed_at(now)
        self._session.accumulated_seconds = elapsed
        self._session.baseline_seconds = elapsed
        self._session.run_started_at = None

    def _arm_tick(self) -> None:
        self._cancel_tick()
        self._tick = self.scheduler.call_later(self.tick_interval, self._on_tick)

    def _cancel_tick(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

    def _on_tick(self) -> None:
        self._tick = None
        if self._session.state is not ClockState.RUNNING:
            return
        self._session.accumulated_seconds = self._session.elapsed_at(self._now())
        self._publish("tick")
        self._arm_tick()

    async def _close_orphan(self, session_id: str, actor_id: str) -> None:
        try:
            await self.gateway.update_session_record(
                session_id, actor_id, 0, f"Session: {format_elapsed(0)}"
            )
        except GatewayError as e:
            logger.error(f"Failed to close record {session_id}: {e}")

    def _publish(
        self,
        kind: str,
        elapsed_seconds: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> None:
        event = SessionEvent(
            kind=kind,
            state=self._session.state,
            elapsed_seconds=(
                self._session.accumulated_seconds if elapsed_seconds is None else elapsed_seconds
            ),
            session_id=session_id or self._session.session_id,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")
