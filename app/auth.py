from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = 'admin'
    PHARMACIST = 'pharmacist'
    CASHIER = 'cashier'


# Least-privileged role, used whenever a profile role is missing or unknown.
DEFAULT_ROLE = Role.CASHIER


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class Principal:
    """Identity issued by the auth service, independent of profile data."""

    id: uuid.UUID
    email: str | None
    metadata: dict = field(default_factory=dict)

    @property
    def avatar_url(self) -> str | None:
        return self.metadata.get('avatar_url')


@dataclass(frozen=True)
class AuthSession:
    principal: Principal
    access_token: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthorizedUser:
    id: uuid.UUID
    name: str
    email: str
    role: Role
    avatar_url: str | None = None

    @property
    def initials(self) -> str:
        parts = [part for part in self.name.split() if part]
        return ''.join(part[0] for part in parts[:2]).upper() or '?'


@dataclass(frozen=True)
class DemoAccount:
    email: str
    password: str
    full_name: str
    role: Role


# Seeded by app.seed_example and offered on the login page when demo accounts are enabled.
DEMO_ACCOUNTS = (
    DemoAccount('admin@pharmsync.com', 'admin123', 'Admin User', Role.ADMIN),
    DemoAccount('pharmacist@pharmsync.com', 'pharm123', 'Pharmacist User', Role.PHARMACIST),
    DemoAccount('cashier@pharmsync.com', 'cash123', 'Cashier User', Role.CASHIER),
)
