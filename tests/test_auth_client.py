from __future__ import annotations

import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import Role
from app.errors import AuthFailure
from app.models import AuditLog, AuthEvent, Base, Profile, WebSession
from app.security.sessions import AuthEventType, SqlAuthClient


def _memory_session_factory() -> sessionmaker:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class SqlAuthClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.session_factory = _memory_session_factory()
        self.events = []
        registrar = SqlAuthClient(self.session_factory, token=None, ip='127.0.0.1')
        await registrar.sign_up('Pharm@PharmSync.com', 'pharm123', full_name='Pat Pharmacist', role=Role.PHARMACIST)

    def _client(self, token=None) -> SqlAuthClient:
        client = SqlAuthClient(self.session_factory, token=token, ip='127.0.0.1', user_agent='tests')

        async def _record(event, session):
            self.events.append((event, session.principal.email if session else None))

        client.subscribe_to_auth_events(_record)
        return client

    async def test_sign_up_creates_profile_with_role(self) -> None:
        with self.session_factory() as db:
            profile = db.execute(select(Profile)).scalar_one()
        self.assertEqual(profile.full_name, 'Pat Pharmacist')
        self.assertEqual(profile.role, 'pharmacist')

    async def test_duplicate_sign_up_is_rejected(self) -> None:
        with self.assertRaises(AuthFailure):
            await self._client().sign_up('pharm@pharmsync.com', 'other123', full_name='Dup', role=Role.CASHIER)

    async def test_sign_in_issues_token_and_emits_event(self) -> None:
        client = self._client()
        session = await client.sign_in(' PHARM@pharmsync.com ', 'pharm123')

        self.assertEqual(client.token, session.access_token)
        self.assertEqual(session.principal.email, 'pharm@pharmsync.com')
        self.assertEqual(self.events, [(AuthEventType.SIGNED_IN, 'pharm@pharmsync.com')])

        current = await self._client(session.access_token).get_current_session()
        self.assertEqual(current.principal.id, session.principal.id)

    async def test_bad_password_is_logged_and_rejected(self) -> None:
        with self.assertRaises(AuthFailure):
            await self._client().sign_in('pharm@pharmsync.com', 'wrong-password')
        self.assertEqual(self.events, [])
        with self.session_factory() as db:
            event = db.execute(select(AuthEvent).where(AuthEvent.success.is_(False))).scalar_one()
        self.assertEqual(event.failure_reason, 'BAD_PASSWORD')

    async def test_unknown_token_has_no_session(self) -> None:
        self.assertIsNone(await self._client('does-not-exist').get_current_session())
        self.assertIsNone(await self._client(None).get_current_session())

    async def test_sign_out_revokes_session(self) -> None:
        session = await self._client().sign_in('pharm@pharmsync.com', 'pharm123')
        self.events.clear()

        client = self._client(session.access_token)
        await client.sign_out()

        self.assertIsNone(client.token)
        self.assertEqual(self.events, [(AuthEventType.SIGNED_OUT, None)])
        self.assertIsNone(await self._client(session.access_token).get_current_session())
        with self.session_factory() as db:
            web_session = db.execute(select(WebSession).where(WebSession.session_token == session.access_token)).scalar_one()
            actions = db.execute(select(AuditLog.action)).scalars().all()
        self.assertIsNotNone(web_session.revoked_at)
        self.assertIn('AUTH_LOGOUT', actions)


if __name__ == '__main__':
    unittest.main()
