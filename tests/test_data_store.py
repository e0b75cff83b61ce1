from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base, Customer, Medicine
from app.services.change_feed import ChangeFeed, ChangeKind
from app.services.data_store import SqlDataStore


def _memory_session_factory() -> sessionmaker:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class ChangeFeedTests(unittest.TestCase):
    def test_subscribe_publish_unsubscribe(self) -> None:
        feed = ChangeFeed()
        seen = []
        unsubscribe = feed.subscribe('medicines', seen.append)
        self.assertEqual(feed.subscriber_count('medicines'), 1)

        store = SqlDataStore(_memory_session_factory()(), feed)
        store.insert(Customer, {'full_name': 'Not watched'})
        store.insert(Medicine, {'name': 'Paracetamol', 'unit_price': Decimal('2.50')})
        self.assertEqual([(event.table, event.kind) for event in seen], [('medicines', ChangeKind.INSERT)])

        unsubscribe()
        unsubscribe()
        self.assertEqual(feed.subscriber_count('medicines'), 0)

    def test_failing_handler_does_not_block_others(self) -> None:
        feed = ChangeFeed()
        seen = []

        def _broken(event):
            raise RuntimeError('boom')

        feed.subscribe('customers', _broken)
        feed.subscribe('customers', seen.append)
        with self.assertLogs('app.services.change_feed', level='ERROR'):
            SqlDataStore(_memory_session_factory()(), feed).insert(Customer, {'full_name': 'Ana'})
        self.assertEqual(len(seen), 1)


class SqlDataStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = _memory_session_factory()
        self.db = self.session_factory()
        self.feed = ChangeFeed()
        self.events = []
        for table in ('medicines', 'customers'):
            self.feed.subscribe(table, self.events.append)
        self.store = SqlDataStore(self.db, self.feed)

    def tearDown(self) -> None:
        self.db.close()

    def test_crud_round(self) -> None:
        medicine = self.store.insert(Medicine, {'name': 'Ibuprofen', 'stock_quantity': 5, 'unit_price': Decimal('3.20')})
        self.assertEqual(self.store.count(Medicine), 1)

        updated = self.store.update(Medicine, [Medicine.id == medicine.id], {'stock_quantity': 9})
        self.assertEqual(updated, 1)
        with self.session_factory() as other:
            self.assertEqual(other.get(Medicine, medicine.id).stock_quantity, 9)

        self.assertEqual(self.store.delete(Medicine, Medicine.id == medicine.id), 1)
        self.assertEqual(self.store.select(Medicine), [])
        self.assertEqual([event.kind for event in self.events], [ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE])

    def test_update_of_missing_row_reports_zero(self) -> None:
        medicine = self.store.insert(Medicine, {'name': 'Ghost'})
        self.store.delete(Medicine, Medicine.id == medicine.id)
        self.assertEqual(self.store.update(Medicine, [Medicine.id == medicine.id], {'stock_quantity': 1}), 0)

    def test_transaction_publishes_only_after_commit(self) -> None:
        with self.store.transaction():
            self.store.insert(Customer, {'full_name': 'Ana'})
            self.store.insert(Medicine, {'name': 'Cetirizine'})
            self.assertEqual(self.events, [])
        self.assertEqual({event.table for event in self.events}, {'customers', 'medicines'})

    def test_transaction_rollback_discards_writes_and_events(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.store.insert(Customer, {'full_name': 'Ana'})
                raise RuntimeError('second write failed')
        self.assertEqual(self.store.count(Customer), 0)
        self.assertEqual(self.events, [])

    def test_transaction_unavailable_without_support(self) -> None:
        store = SqlDataStore(self.db, self.feed, supports_transactions=False)
        with self.assertRaises(RuntimeError):
            with store.transaction():
                pass

    def test_failed_write_is_rolled_back(self) -> None:
        with self.assertRaises(Exception):
            self.store.insert(Medicine, {'name': 'Broken', 'stock_quantity': -1})
        self.assertEqual(self.store.count(Medicine), 0)
        self.assertEqual(self.events, [])


if __name__ == '__main__':
    unittest.main()
