from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass

from app.auth import AuthorizedUser, AuthSession, Role
from app.security.sessions import AuthClient, AuthEventType
from app.services.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    user: AuthorizedUser | None
    is_loading: bool


class SessionStore:
    """Who is signed in, and with which role.

    Owned by whoever created it (the auth middleware, per request). After
    teardown() the store ignores late bootstrap results and auth events.
    """

    def __init__(self, auth: AuthClient, resolver: ProfileResolver) -> None:
        self._auth = auth
        self._resolver = resolver
        self.user: AuthorizedUser | None = None
        self.is_loading = True
        self._alive = True
        self._unsubscribe: Callable[[], None] | None = None
        self._event_lock = asyncio.Lock()
        self._version = 0

    @property
    def alive(self) -> bool:
        return self._alive

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(user=self.user, is_loading=self.is_loading)

    async def start(self) -> None:
        if not self._alive:
            return
        if self._unsubscribe is None:
            self._unsubscribe = self._auth.subscribe_to_auth_events(self.on_auth_event)
        await self.initialize()

    async def initialize(self) -> None:
        version = self._version
        try:
            session = await self._auth.get_current_session()
            if session is not None:
                user = await self._resolver.resolve(session.principal)
                # An auth event or logout that landed meanwhile is newer.
                if self._alive and self._version == version:
                    self.user = user
        finally:
            if self._alive:
                self.is_loading = False

    async def on_auth_event(self, event: AuthEventType, session: AuthSession | None) -> None:
        # The lock is FIFO, so events are applied in delivery order.
        async with self._event_lock:
            if not self._alive:
                return
            self._version += 1
            logger.debug('Auth event %s for %s', event.value, session.principal.id if session else None)
            if session is not None and session.principal is not None:
                user = await self._resolver.resolve(session.principal)
                if not self._alive:
                    return
                self.user = user
            else:
                self.user = None

    async def logout(self) -> None:
        self._version += 1
        self.is_loading = True
        try:
            await self._auth.sign_out()
        except Exception:
            logger.exception('Sign-out failed; clearing local session anyway')
        finally:
            if self._alive:
                self.user = None
                self.is_loading = False

    def is_authorized(self, allowed_roles: Collection[Role]) -> bool:
        return self.user is not None and self.user.role in allowed_roles

    def teardown(self) -> None:
        self._alive = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
