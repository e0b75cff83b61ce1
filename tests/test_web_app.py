from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.auth import Role
from app.config import settings
from app.db import SessionLocal, build_engine, engine
from app.dependencies import business_today
from app.main import app
from app.models import (
    AuthUser,
    Base,
    Customer,
    InventoryTransaction,
    Medicine,
    Prescription,
    PrescriptionItem,
    Profile,
)
from app.security.csrf import CSRF_COOKIE_NAME
from app.security.passwords import hash_password
from app.security.sessions import SqlAuthClient

PASSWORD = 'secret123'

ACCOUNTS = {
    Role.ADMIN: 'admin@pharmsync.test',
    Role.PHARMACIST: 'pharmacist@pharmsync.test',
    Role.CASHIER: 'cashier@pharmsync.test',
}


class WebAppTestCase(unittest.TestCase):
    """Drives the real app, middleware included, against an in-memory database."""

    password_hash: str

    @classmethod
    def setUpClass(cls) -> None:
        cls.password_hash = hash_password(PASSWORD)

    def setUp(self) -> None:
        self.engine = build_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        SessionLocal.configure(bind=self.engine)
        self.addCleanup(self.engine.dispose)
        self.addCleanup(SessionLocal.configure, bind=engine)

        with SessionLocal() as db:
            for role, email in ACCOUNTS.items():
                user = AuthUser(email=email, password_hash=self.password_hash, active=True)
                db.add(user)
                db.flush()
                db.add(Profile(id=user.id, full_name=f'{role.value.title()} Tester', role=role.value))
            db.commit()

        self.client = TestClient(app, follow_redirects=False)

    def _csrf(self) -> str:
        token = self.client.cookies.get(CSRF_COOKIE_NAME)
        if token is None:
            self.client.get('/login')
            token = self.client.cookies.get(CSRF_COOKIE_NAME)
        return token

    def _post(self, path: str, data: dict | list):
        fields: dict[str, list[str]] = {}
        for key, value in data.items() if isinstance(data, dict) else data:
            fields.setdefault(key, []).append(value)
        fields['csrf_token'] = [self._csrf()]
        return self.client.post(path, data=fields)

    def _sign_in(self, role: Role):
        response = self._post('/login', {'email': ACCOUNTS[role], 'password': PASSWORD})
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/')
        return response

    def _add(self, row):
        with SessionLocal() as db:
            db.add(row)
            db.commit()
            return row

    def _medicine(self, name: str = 'Amoxicillin', stock: int = 5, **values) -> Medicine:
        return self._add(Medicine(name=name, stock_quantity=stock, reorder_level=2, unit_price=Decimal('8.75'), **values))


class SignInTests(WebAppTestCase):
    def test_anonymous_visit_is_sent_to_login(self) -> None:
        response = self.client.get('/dashboard')
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/login')

        response = self.client.get('/')
        self.assertEqual(response.headers['location'], '/login')

    def test_login_page_offers_demo_accounts(self) -> None:
        response = self.client.get('/login')
        self.assertEqual(response.status_code, 200)
        self.assertIn('name="csrf_token"', response.text)
        self.assertIn('cashier@pharmsync.com', response.text)

        with mock.patch.object(settings, 'demo_accounts_enabled', False):
            response = self.client.get('/login')
        self.assertNotIn('cashier@pharmsync.com', response.text)

    def test_wrong_password_is_rejected(self) -> None:
        response = self._post('/login', {'email': ACCOUNTS[Role.ADMIN], 'password': 'not-the-one'})
        self.assertEqual(response.status_code, 401)
        self.assertIn('Invalid email or password', response.text)
        self.assertIsNone(self.client.cookies.get(settings.session_cookie_name))

    def test_post_without_csrf_token_is_forbidden(self) -> None:
        self._csrf()
        response = self.client.post('/login', data={'email': ACCOUNTS[Role.ADMIN], 'password': PASSWORD})
        self.assertEqual(response.status_code, 403)

    def test_admin_lands_on_dashboard(self) -> None:
        self._sign_in(Role.ADMIN)
        self.assertIsNotNone(self.client.cookies.get(settings.session_cookie_name))

        response = self.client.get('/')
        self.assertEqual(response.headers['location'], '/dashboard')
        self.assertEqual(self.client.get('/dashboard').status_code, 200)
        self.assertEqual(self.client.get('/settings').status_code, 200)

    def test_cashier_is_kept_to_allowed_screens(self) -> None:
        self._sign_in(Role.CASHIER)

        response = self.client.get('/')
        self.assertEqual(response.headers['location'], '/sales')

        response = self.client.get('/medicines')
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/')

        self.assertEqual(self.client.get('/sales').status_code, 200)
        self.assertEqual(self.client.get('/customers').status_code, 200)

    def test_signed_in_user_skips_login_page(self) -> None:
        self._sign_in(Role.PHARMACIST)
        response = self.client.get('/login')
        self.assertEqual(response.headers['location'], '/')

    def test_logout_ends_the_session(self) -> None:
        self._sign_in(Role.PHARMACIST)
        response = self._post('/logout', {})
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/login')

        response = self.client.get('/dashboard')
        self.assertEqual(response.headers['location'], '/login')

    def test_signup_creates_account_with_allowed_role(self) -> None:
        form = {'full_name': 'New Pharmacist', 'email': 'new@pharmsync.test', 'password': PASSWORD}
        response = self._post('/signup', {**form, 'role': 'admin'})
        self.assertEqual(response.status_code, 400)

        response = self._post('/signup', {**form, 'role': 'pharmacist'})
        self.assertEqual(response.status_code, 303)
        self.assertEqual(self.client.get('/').headers['location'], '/dashboard')

        with SessionLocal() as db:
            user = db.execute(select(AuthUser).where(AuthUser.email == 'new@pharmsync.test')).scalar_one()
            self.assertEqual(db.get(Profile, user.id).role, 'pharmacist')

    def test_database_outage_renders_retry_page(self) -> None:
        outage = OperationalError('SELECT 1', {}, Exception('connection refused'))
        with mock.patch.object(SqlAuthClient, '_load_current_session', side_effect=outage):
            with self.assertLogs('app.security.sessions', level='ERROR'):
                response = self.client.get('/dashboard')
        self.assertEqual(response.status_code, 503)
        self.assertIn('Try again', response.text)


class PageErrorTests(WebAppTestCase):
    def test_unknown_page_renders_not_found(self) -> None:
        self._sign_in(Role.ADMIN)
        response = self.client.get('/no-such-page')
        self.assertEqual(response.status_code, 404)
        self.assertIn('does not exist', response.text)

    def test_live_stream_checks_screen_and_role(self) -> None:
        self._sign_in(Role.CASHIER)
        self.assertEqual(self.client.get('/live/no-such-screen').status_code, 404)
        self.assertEqual(self.client.get('/live/medicines').status_code, 403)


class InventoryPageTests(WebAppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._sign_in(Role.PHARMACIST)
        self.medicine = self._medicine()

    def _record(self, transaction_type: str, quantity: int, unit_price: str):
        return self._post(
            '/inventory/transactions',
            {
                'medicine_id': str(self.medicine.id),
                'transaction_type': transaction_type,
                'quantity': str(quantity),
                'unit_price': unit_price,
            },
        )

    def _state(self) -> tuple[int, list[InventoryTransaction]]:
        with SessionLocal() as db:
            stock = db.get(Medicine, self.medicine.id).stock_quantity
            transactions = list(db.execute(select(InventoryTransaction)).scalars())
        return stock, transactions

    def test_stock_out_beyond_stock_is_rejected(self) -> None:
        response = self._record('out', 10, '8.75')
        self.assertEqual(response.status_code, 409)
        self.assertIn('Insufficient stock', response.text)
        self.assertEqual(self._state(), (5, []))

    def test_stock_in_updates_stock_and_total(self) -> None:
        response = self._record('in', 3, '2.00')
        self.assertEqual(response.status_code, 303)

        stock, transactions = self._state()
        self.assertEqual(stock, 8)
        self.assertEqual(len(transactions), 1)
        self.assertEqual(transactions[0].total_amount, Decimal('6.00'))

    def test_expiring_filter_uses_utc_today(self) -> None:
        today = date(2026, 3, 1)
        self._medicine('Soon Expiring', expiry_date=today + timedelta(days=10))
        self._medicine('Long Dated', expiry_date=today + timedelta(days=400))

        with mock.patch('app.routers.inventory.business_today', return_value=today):
            response = self.client.get('/inventory?filter=expiring')

        self.assertEqual(response.status_code, 200)
        self.assertIn('<td>Soon Expiring</td>', response.text)
        self.assertNotIn('<td>Long Dated</td>', response.text)

    def test_business_today_reads_the_utc_clock(self) -> None:
        with mock.patch('app.dependencies.datetime') as clock:
            clock.now.return_value = datetime(2026, 3, 2, 1, 30, tzinfo=timezone.utc)
            self.assertEqual(business_today(), date(2026, 3, 2))
        clock.now.assert_called_once_with(timezone.utc)


class PrescriptionPageTests(WebAppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._sign_in(Role.PHARMACIST)
        self.paracetamol = self._medicine('Paracetamol', 100)
        self.ibuprofen = self._medicine('Ibuprofen', 100)

    def _header(self) -> list[tuple[str, str]]:
        return [('doctor_name', 'Dr. Grey'), ('prescription_date', '2026-03-01'), ('status', 'active')]

    def _item(self, medicine: Medicine, quantity: int, unit_price: str = '') -> list[tuple[str, str]]:
        return [
            ('item_medicine_id', str(medicine.id)),
            ('item_quantity', str(quantity)),
            ('item_unit_price', unit_price),
            ('item_dosage', ''),
            ('item_instructions', ''),
        ]

    def _items(self) -> list[PrescriptionItem]:
        with SessionLocal() as db:
            return list(db.execute(select(PrescriptionItem).order_by(PrescriptionItem.position)).scalars())

    def test_empty_prescription_is_rejected_without_writing(self) -> None:
        response = self._post('/prescriptions/new', self._header())
        self.assertEqual(response.status_code, 400)
        self.assertIn('at least one medicine', response.text)
        with SessionLocal() as db:
            self.assertEqual(db.execute(select(Prescription)).scalars().all(), [])

    def test_create_then_edit_replaces_items(self) -> None:
        response = self._post('/prescriptions/new', self._header() + self._item(self.paracetamol, 2, '2.50'))
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            prescription = db.execute(select(Prescription)).scalar_one()
        self.assertEqual([(item.medicine_id, item.unit_price) for item in self._items()], [(self.paracetamol.id, Decimal('2.50'))])

        response = self._post(
            f'/prescriptions/{prescription.id}/edit',
            self._header() + self._item(self.ibuprofen, 1) + self._item(self.paracetamol, 4, '2.50'),
        )
        self.assertEqual(response.status_code, 303)

        items = self._items()
        self.assertEqual([(item.medicine_id, item.quantity) for item in items], [(self.ibuprofen.id, 1), (self.paracetamol.id, 4)])
        self.assertEqual(items[0].unit_price, Decimal('8.75'))

    def test_status_change(self) -> None:
        self._post('/prescriptions/new', self._header() + self._item(self.paracetamol, 1))
        with SessionLocal() as db:
            prescription = db.execute(select(Prescription)).scalar_one()

        response = self._post(f'/prescriptions/{prescription.id}/status', {'status': 'completed'})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            self.assertEqual(db.get(Prescription, prescription.id).status, 'completed')


class CatalogPageTests(WebAppTestCase):
    def test_medicine_create_edit_delete(self) -> None:
        self._sign_in(Role.ADMIN)
        form = {'name': 'Cetirizine', 'category': 'Antihistamines', 'stock_quantity': '12', 'reorder_level': '5', 'unit_price': '4.10'}
        response = self._post('/medicines/new', form)
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            medicine = db.execute(select(Medicine)).scalar_one()
        self.assertEqual(medicine.unit_price, Decimal('4.10'))
        self.assertIn('Cetirizine', self.client.get('/medicines?q=ceti').text)

        response = self._post(f'/medicines/{medicine.id}/edit', {**form, 'unit_price': '4.50'})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            self.assertEqual(db.get(Medicine, medicine.id).unit_price, Decimal('4.50'))

        response = self._post(f'/medicines/{medicine.id}/delete', {})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            self.assertIsNone(db.get(Medicine, medicine.id))

    def test_invalid_medicine_form_is_shown_again(self) -> None:
        self._sign_in(Role.PHARMACIST)
        response = self._post('/medicines/new', {'name': 'Broken', 'unit_price': '-1'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('Unit price', response.text)

    def test_customer_create_edit_delete(self) -> None:
        self._sign_in(Role.CASHIER)
        response = self._post('/customers/new', {'full_name': 'Jane Doe', 'email': 'jane@example.com'})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            customer = db.execute(select(Customer)).scalar_one()

        response = self._post(f'/customers/{customer.id}/edit', {'full_name': 'Jane Roe', 'email': 'jane@example.com'})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            self.assertEqual(db.get(Customer, customer.id).full_name, 'Jane Roe')

        response = self._post(f'/customers/{customer.id}/delete', {})
        self.assertEqual(response.status_code, 303)
        with SessionLocal() as db:
            self.assertIsNone(db.get(Customer, customer.id))

    def test_supplier_with_bad_email_is_rejected(self) -> None:
        self._sign_in(Role.ADMIN)
        response = self._post('/suppliers/new', {'company_name': 'MediCorp', 'email': 'not-an-email'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('Invalid email address', response.text)


if __name__ == '__main__':
    unittest.main()
