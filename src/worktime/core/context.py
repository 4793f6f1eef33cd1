"""Tracking context: the actor's auth session bound to its session clock."""

import logging
from types import TracebackType
from typing import Optional, Type

from worktime.core.clock import SessionClock
from worktime.core.notifier import Notifier
from worktime.core.store import SessionStore
from worktime.gateway.base import Gateway, GatewayError
from worktime.gateway.models import Actor, AuthSession

logger = logging.getLogger(__name__)


class TrackingContext:
    """Owns the current actor, the gateway and the session clock.

    Signing in opens a tracking session automatically (when auto_start is
    set); signing out stops it first. Closing the context cancels the tick
    and saves the session snapshot so another process can pick it up.
    """

    def __init__(
        self,
        gateway: Gateway,
        clock: Optional[SessionClock] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[SessionStore] = None,
        auto_start: bool = True,
    ):
        """Initialize tracking context.

        Args:
            gateway: Gateway to the hosted backend
            clock: Session clock. Created with the gateway if None.
            notifier: Notifier for notices. Taken from the clock if None.
            store: Local state store. Nothing is persisted if None.
            auto_start: Open a session when the actor signs in
        """
        self.gateway = gateway
        self.clock = clock or SessionClock(gateway, notifier=notifier)
        self.notifier = notifier or self.clock.notifier
        self.store = store
        self.auto_start = auto_start
        self._auth: Optional[AuthSession] = None

    @property
    def actor(self) -> Optional[Actor]:
        return self._auth.actor if self._auth else None

    @property
    def is_authenticated(self) -> bool:
        return self._auth is not None

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Sign in and open a tracking session when auto-start is enabled.

        Args:
            email: Account email
            password: Account password

        Returns:
            Authenticated session

        Raises:
            GatewayError: If sign-in fails
        """
        if self._auth is not None:
            await self.sign_out()

        auth = await self.gateway.sign_in(email, password)
        self._bind(auth)

        if self.auto_start:
            await self.clock.start()
        return auth

    async def sign_out(self) -> None:
        """Stop the open session (best-effort) and sign out.

        A start() still waiting for its session record is awaited first, so
        the record is closed while the actor is still authenticated.
        """
        if self._auth is None:
            return

        await self.clock.wait_for_start()
        await self.clock.stop()
        try:
            await self.gateway.sign_out()
        except GatewayError as e:
            logger.warning(f"Sign out failed on the gateway: {e}")
        finally:
            self._auth = None
            self.clock.set_actor(None)
            self.gateway.set_auth(None)
            if self.store:
                self.store.clear_auth()
                self.store.clear_session()
        logger.info("Signed out")

    async def load(self) -> bool:
        """Restore saved credentials and session snapshot.

        Returns:
            True if an authenticated actor was restored
        """
        if self.store is None:
            return False

        auth = self.store.load_auth()
        if auth is None:
            return False

        if auth.is_expired:
            try:
                auth = await self.gateway.refresh(auth)
            except GatewayError as e:
                logger.warning(f"Could not refresh saved session: {e}")
                self.store.clear_auth()
                return False

        self._bind(auth)

        session = self.store.load_session()
        if session is not None:
            if not self.clock.restore(session):
                logger.warning(f"Discarding saved session {session.session_id}")
                self.store.clear_session()
        return True

    def save(self) -> None:
        """Save the session snapshot."""
        if self.store is not None:
            self.store.save_session(self.clock.snapshot())

    async def close(self) -> None:
        """Cancel the tick, save state and release the gateway."""
        self.clock.close()
        self.save()
        await self.gateway.aclose()

    async def __aenter__(self) -> "TrackingContext":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    def _bind(self, auth: AuthSession) -> None:
        self._auth = auth
        self.gateway.set_auth(auth)
        self.clock.set_actor(auth.actor.id)
        if self.store:
            self.store.save_auth(auth)
