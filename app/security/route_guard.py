from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from fastapi import Depends, Request

from app.auth import AuthorizedUser, Role

LOGIN_PATH = '/login'
DEFAULT_FALLBACK_PATH = '/'


@dataclass(frozen=True)
class AccessPolicy:
    """Who may open a page.

    ``allowed_roles is None`` means any signed-in user. A restricted policy
    always names at least one role, so an empty set can never mean "everyone".
    """

    allowed_roles: frozenset[Role] | None = None

    def __post_init__(self) -> None:
        if self.allowed_roles is not None and not self.allowed_roles:
            raise ValueError('A role-restricted policy needs at least one role; use AccessPolicy.authenticated()')

    @classmethod
    def authenticated(cls) -> AccessPolicy:
        return cls(None)

    @classmethod
    def roles(cls, *roles: Role) -> AccessPolicy:
        return cls(frozenset(roles))

    @property
    def restricted(self) -> bool:
        return self.allowed_roles is not None

    def permits(self, role: Role) -> bool:
        return self.allowed_roles is None or role in self.allowed_roles


class GuardOutcome(str, Enum):
    LOADING = 'loading'
    REDIRECT_LOGIN = 'redirect_login'
    REDIRECT_FALLBACK = 'redirect_fallback'
    RENDER = 'render'


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    location: str | None = None


class SessionState(Protocol):
    user: AuthorizedUser | None
    is_loading: bool

    def is_authorized(self, allowed_roles: Collection[Role]) -> bool: ...


def evaluate_access(
    state: SessionState,
    policy: AccessPolicy,
    *,
    fallback: str = DEFAULT_FALLBACK_PATH,
    login_path: str = LOGIN_PATH,
) -> GuardDecision:
    if state.is_loading:
        return GuardDecision(GuardOutcome.LOADING)
    if state.user is None:
        return GuardDecision(GuardOutcome.REDIRECT_LOGIN, login_path)
    if policy.restricted and not state.is_authorized(policy.allowed_roles):
        return GuardDecision(GuardOutcome.REDIRECT_FALLBACK, fallback)
    return GuardDecision(GuardOutcome.RENDER)


class GuardInterrupt(Exception):
    """Raised by the guard dependency when the page must not render."""

    def __init__(self, decision: GuardDecision) -> None:
        super().__init__(decision.outcome.value)
        self.decision = decision


def get_session_store(request: Request):
    store = getattr(request.state, 'session_store', None)
    if store is None:
        raise RuntimeError('Auth session middleware is not installed')
    return store


def guard(path: str):
    """Dependency that authorizes a request against the navigation entry for ``path``."""
    from app.navigation import lookup

    route = lookup(path)
    if route is None:
        raise KeyError(f'No navigation entry for {path}')

    def _dep(store=Depends(get_session_store)) -> AuthorizedUser:
        decision = evaluate_access(store, route.policy, fallback=route.fallback)
        if decision.outcome != GuardOutcome.RENDER:
            raise GuardInterrupt(decision)
        return store.user

    return _dep
