from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from app.auth import DEFAULT_ROLE, AuthorizedUser, Principal, parse_role
from app.errors import ProfileLookupFailure
from app.models import Profile

logger = logging.getLogger(__name__)

FALLBACK_NAME = 'User'


class ProfileLike(Protocol):
    full_name: str | None
    role: str | None


ProfileFetcher = Callable[[uuid.UUID], Awaitable[ProfileLike | None]]


def _email_local_part(email: str | None) -> str:
    if not email:
        return ''
    return email.split('@', 1)[0].strip()


def build_authorized_user(principal: Principal, profile: ProfileLike | None) -> AuthorizedUser:
    """Apply the name and role fallback chain to a principal and its (optional) profile."""
    role = parse_role(profile.role if profile else None) or DEFAULT_ROLE
    full_name = (profile.full_name or '').strip() if profile else ''
    name = full_name or _email_local_part(principal.email) or FALLBACK_NAME
    return AuthorizedUser(
        id=principal.id,
        name=name,
        email=principal.email or '',
        role=role,
        avatar_url=principal.avatar_url,
    )


class ProfileResolver:
    """Turns a principal into an AuthorizedUser with a single profile read.

    Never raises and never creates a missing profile: a failed lookup yields a
    degraded cashier user so the UI can keep going.
    """

    def __init__(self, fetch_profile: ProfileFetcher) -> None:
        self._fetch_profile = fetch_profile

    async def _lookup(self, principal: Principal) -> ProfileLike | None:
        try:
            return await self._fetch_profile(principal.id)
        except Exception as exc:
            raise ProfileLookupFailure(f'Profile lookup failed for {principal.id}: {exc}') from exc

    async def resolve(self, principal: Principal) -> AuthorizedUser:
        try:
            profile = await self._lookup(principal)
        except ProfileLookupFailure:
            logger.exception('Continuing with a degraded user for %s', principal.id)
            return build_authorized_user(principal, None)
        if profile is None:
            logger.info('No profile row for %s; using defaults', principal.id)
        return build_authorized_user(principal, profile)


def profile_fetcher(session_factory: sessionmaker) -> ProfileFetcher:
    def _load(principal_id: uuid.UUID) -> Profile | None:
        with session_factory() as db:
            return db.execute(select(Profile).where(Profile.id == principal_id)).scalar_one_or_none()

    async def _fetch(principal_id: uuid.UUID) -> Profile | None:
        return await run_in_threadpool(_load, principal_id)

    return _fetch
