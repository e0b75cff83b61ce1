from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.auth import AuthSession, Principal, Role
from app.config import settings
from app.errors import AuthFailure
from app.models import AuthUser, Profile, WebSession
from app.security.passwords import hash_password, verify_password
from app.services.audit_service import log_audit, log_auth_event

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {'/login', '/signup', '/robots.txt'}


class AuthEventType(str, Enum):
    SIGNED_IN = 'SIGNED_IN'
    SIGNED_OUT = 'SIGNED_OUT'


AuthEventHandler = Callable[[AuthEventType, AuthSession | None], Awaitable[None]]


class AuthClient(Protocol):
    async def get_current_session(self) -> AuthSession | None: ...

    def subscribe_to_auth_events(self, handler: AuthEventHandler) -> Callable[[], None]: ...

    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    async def sign_up(self, email: str, password: str, *, full_name: str, role: Role) -> AuthSession: ...

    async def sign_out(self) -> None: ...


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _principal_from_row(user: AuthUser) -> Principal:
    metadata = {'avatar_url': user.avatar_url} if user.avatar_url else {}
    return Principal(id=user.id, email=user.email, metadata=metadata)


def create_web_session(db: Session, auth_user_id: uuid.UUID, ip: str | None, user_agent: str | None) -> WebSession:
    web_session = WebSession(
        session_token=secrets.token_urlsafe(48),
        auth_user_id=auth_user_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return web_session


def revoke_web_session(db: Session, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_session_from_token(db: Session, token: str | None) -> AuthSession | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, AuthUser)
        .join(AuthUser, AuthUser.id == WebSession.auth_user_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now or not user.active:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return AuthSession(principal=_principal_from_row(user), access_token=token, expires_at=web_session.expires_at)


class SqlAuthClient:
    """Auth service backed by the auth_users / web_sessions tables.

    One instance is bound to the session token of a single browser request.
    Subscribers receive auth events one at a time, in the order they occur.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        token: str | None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.token = token
        self._ip = ip
        self._user_agent = user_agent
        self._handlers: list[AuthEventHandler] = []

    def subscribe_to_auth_events(self, handler: AuthEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    async def _emit(self, event: AuthEventType, session: AuthSession | None) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event, session)
            except Exception:
                logger.exception('Auth event handler failed for %s', event.value)

    async def get_current_session(self) -> AuthSession | None:
        return await run_in_threadpool(self._load_current_session)

    def _load_current_session(self) -> AuthSession | None:
        with self._session_factory() as db:
            session = load_session_from_token(db, self.token)
            db.commit()
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        session = await run_in_threadpool(self._sign_in, normalize_email(email), password)
        self.token = session.access_token
        await self._emit(AuthEventType.SIGNED_IN, session)
        return session

    def _sign_in(self, email: str, password: str) -> AuthSession:
        with self._session_factory() as db:
            user = db.execute(select(AuthUser).where(AuthUser.email == email)).scalar_one_or_none()
            failure_reason = None
            if not user:
                failure_reason = 'UNKNOWN_EMAIL'
            elif not user.active:
                failure_reason = 'INACTIVE_ACCOUNT'
            elif not verify_password(password, user.password_hash):
                failure_reason = 'BAD_PASSWORD'

            if failure_reason:
                log_auth_event(
                    db,
                    attempted_email=email,
                    success=False,
                    failure_reason=failure_reason,
                    auth_user_id=user.id if user else None,
                    ip=self._ip,
                    user_agent=self._user_agent,
                )
                db.commit()
                logger.info('Sign-in rejected for %s: %s', email, failure_reason)
                raise AuthFailure()

            web_session = create_web_session(db, user.id, ip=self._ip, user_agent=self._user_agent)
            log_auth_event(
                db,
                attempted_email=email,
                success=True,
                auth_user_id=user.id,
                ip=self._ip,
                user_agent=self._user_agent,
            )
            log_audit(db, actor_id=user.id, action='AUTH_LOGIN', ip=self._ip, metadata={'email': email})
            db.commit()
            return AuthSession(
                principal=_principal_from_row(user),
                access_token=web_session.session_token,
                expires_at=web_session.expires_at,
            )

    async def sign_up(self, email: str, password: str, *, full_name: str, role: Role) -> AuthSession:
        session = await run_in_threadpool(self._sign_up, normalize_email(email), password, full_name, role)
        self.token = session.access_token
        await self._emit(AuthEventType.SIGNED_IN, session)
        return session

    def _sign_up(self, email: str, password: str, full_name: str, role: Role) -> AuthSession:
        with self._session_factory() as db:
            user = AuthUser(email=email, password_hash=hash_password(password), active=True)
            db.add(user)
            try:
                db.flush()
            except IntegrityError as exc:
                db.rollback()
                raise AuthFailure('An account with this email already exists') from exc
            web_session = create_web_session(db, user.id, ip=self._ip, user_agent=self._user_agent)
            log_audit(db, actor_id=user.id, action='AUTH_SIGNUP', ip=self._ip, metadata={'email': email})
            db.commit()
            session = AuthSession(
                principal=_principal_from_row(user),
                access_token=web_session.session_token,
                expires_at=web_session.expires_at,
            )

            # The account stays usable without a profile; readers fall back to defaults.
            try:
                db.add(Profile(id=user.id, full_name=full_name.strip() or None, role=role.value))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception('Profile creation failed for %s', email)
            return session

    async def sign_out(self) -> None:
        token = self.token
        if token:
            await run_in_threadpool(self._revoke, token)
        self.token = None
        await self._emit(AuthEventType.SIGNED_OUT, None)

    def _revoke(self, token: str) -> None:
        with self._session_factory() as db:
            actor = load_session_from_token(db, token)
            revoke_web_session(db, token)
            log_audit(
                db,
                actor_id=actor.principal.id if actor else None,
                action='AUTH_LOGOUT',
                ip=self._ip,
                metadata={},
            )
            db.commit()


def install_auth_session_middleware(app: FastAPI) -> None:
    from app.db import SessionLocal
    from app.dependencies import get_client_ip, render
    from app.services.profile_resolver import ProfileResolver, profile_fetcher
    from app.services.session_store import SessionStore

    resolver = ProfileResolver(profile_fetcher(SessionLocal))

    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        auth_client = SqlAuthClient(
            SessionLocal,
            token=request.cookies.get(settings.session_cookie_name),
            ip=get_client_ip(request),
            user_agent=request.headers.get('user-agent'),
        )
        store = SessionStore(auth_client, resolver)
        request.state.auth_client = auth_client
        request.state.session_store = store
        try:
            try:
                await store.start()
            except SQLAlchemyError:
                logger.exception('Session lookup failed for %s', request.url.path)
                return render(request, 'unavailable.html', {'retry_path': '/' + request.url.path.lstrip('/')}, status_code=503)
            path = request.url.path
            if path not in AUTH_EXEMPT_PATHS and not store.is_loading and store.user is None:
                return RedirectResponse('/login', status_code=303)
            return await call_next(request)
        finally:
            store.teardown()
