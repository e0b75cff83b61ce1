from __future__ import annotations

import unittest
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock

from app.auth import Principal, Role
from app.errors import ProfileLookupFailure
from app.services.profile_resolver import FALLBACK_NAME, ProfileResolver, build_authorized_user


def _principal(email: str | None = 'jane.doe@pharmsync.com', **metadata) -> Principal:
    return Principal(id=uuid.uuid4(), email=email, metadata=metadata)


class BuildAuthorizedUserTests(unittest.TestCase):
    def test_profile_values_win(self) -> None:
        principal = _principal(avatar_url='https://cdn.example/jane.png')
        user = build_authorized_user(principal, SimpleNamespace(full_name='Jane Doe', role='pharmacist'))
        self.assertEqual(user.id, principal.id)
        self.assertEqual(user.name, 'Jane Doe')
        self.assertEqual(user.role, Role.PHARMACIST)
        self.assertEqual(user.email, 'jane.doe@pharmsync.com')
        self.assertEqual(user.avatar_url, 'https://cdn.example/jane.png')

    def test_unknown_role_falls_back_to_cashier(self) -> None:
        user = build_authorized_user(_principal(), SimpleNamespace(full_name='Jane', role='superuser'))
        self.assertEqual(user.role, Role.CASHIER)

    def test_blank_name_uses_email_local_part(self) -> None:
        user = build_authorized_user(_principal(), SimpleNamespace(full_name='   ', role='admin'))
        self.assertEqual(user.name, 'jane.doe')
        self.assertEqual(user.role, Role.ADMIN)

    def test_no_profile_and_no_email(self) -> None:
        user = build_authorized_user(_principal(email=None), None)
        self.assertEqual(user.name, FALLBACK_NAME)
        self.assertEqual(user.email, '')
        self.assertEqual(user.role, Role.CASHIER)
        self.assertIsNone(user.avatar_url)


class ProfileResolverTests(unittest.IsolatedAsyncioTestCase):
    async def test_resolves_existing_profile_with_one_read(self) -> None:
        principal = _principal()
        fetch = AsyncMock(return_value=SimpleNamespace(full_name='Jane Doe', role='admin'))
        user = await ProfileResolver(fetch).resolve(principal)
        fetch.assert_awaited_once_with(principal.id)
        self.assertEqual(user.name, 'Jane Doe')
        self.assertEqual(user.role, Role.ADMIN)

    async def test_missing_profile_uses_defaults(self) -> None:
        user = await ProfileResolver(AsyncMock(return_value=None)).resolve(_principal())
        self.assertEqual(user.name, 'jane.doe')
        self.assertEqual(user.role, Role.CASHIER)

    async def test_lookup_error_yields_degraded_user(self) -> None:
        fetch = AsyncMock(side_effect=RuntimeError('connection reset'))
        with self.assertLogs('app.services.profile_resolver', level='ERROR') as logs:
            user = await ProfileResolver(fetch).resolve(_principal())
        self.assertEqual(user.role, Role.CASHIER)
        self.assertEqual(user.name, 'jane.doe')

        record = logs.records[0]
        self.assertEqual(record.levelname, 'ERROR')
        failure = record.exc_info[1]
        self.assertIsInstance(failure, ProfileLookupFailure)
        self.assertIn('connection reset', str(failure))
        self.assertIsInstance(failure.__cause__, RuntimeError)


if __name__ == '__main__':
    unittest.main()
