from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base, Customer, Medicine
from app.navigation import lookup
from app.services.change_feed import ChangeFeed
from app.services.data_store import SqlDataStore
from app.services.screen_queries import SCREENS, get_screen, open_screen


def _memory_session_factory() -> sessionmaker:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class ScreenRegistryTests(unittest.TestCase):
    def test_every_screen_maps_to_a_navigation_entry(self) -> None:
        for screen in SCREENS.values():
            self.assertIsNotNone(lookup(screen.nav_path), screen.name)
            self.assertTrue(screen.tables)
            self.assertTrue(screen.search_fields)

    def test_unknown_screen(self) -> None:
        self.assertIsNone(get_screen('payroll'))
        self.assertEqual(get_screen('inventory').tables, ('medicines', 'inventory_transactions'))


class OpenScreenTests(unittest.IsolatedAsyncioTestCase):
    async def test_cache_follows_writes(self) -> None:
        session_factory = _memory_session_factory()
        feed = ChangeFeed()
        cache = open_screen(get_screen('medicines'), session_factory=session_factory, feed=feed)
        cache.subscribe()
        await cache.fetch()
        self.assertEqual(cache.rows, [])

        listener = cache.listen()
        with session_factory() as db:
            store = SqlDataStore(db, feed)
            store.insert(Customer, {'full_name': 'Unrelated'})
            store.insert(Medicine, {'name': 'Cetirizine', 'unit_price': Decimal('4.10')})

        rows = await listener.__anext__()
        self.assertEqual([medicine.name for medicine in rows], ['Cetirizine'])
        self.assertEqual(len(cache.local_filter('ceti')), 1)
        cache.teardown()
        await listener.aclose()
        self.assertEqual(feed.subscriber_count('medicines'), 0)


if __name__ == '__main__':
    unittest.main()
