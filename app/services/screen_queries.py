from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.services.catalog_service import MEDICINE_SEARCH_FIELDS, load_medicines
from app.services.change_feed import ChangeFeed
from app.services.directory_service import (
    CUSTOMER_SEARCH_FIELDS,
    SUPPLIER_SEARCH_FIELDS,
    load_customers,
    load_suppliers,
)
from app.services.live_query import LiveQueryCache
from app.services.prescription_service import PRESCRIPTION_SEARCH_FIELDS, load_prescriptions
from app.services.sales_service import INVOICE_SEARCH_FIELDS, SALE_SEARCH_FIELDS, load_invoices, load_sales


@dataclass(frozen=True)
class ScreenQuery:
    name: str
    nav_path: str
    tables: tuple[str, ...]
    load: Callable[[Session], Sequence[Any]]
    search_fields: tuple[str, ...]
    row_template: str


SCREENS: dict[str, ScreenQuery] = {
    screen.name: screen
    for screen in (
        ScreenQuery(
            name='medicines',
            nav_path='/medicines',
            tables=('medicines',),
            load=load_medicines,
            search_fields=MEDICINE_SEARCH_FIELDS,
            row_template='partials/medicine_rows.html',
        ),
        ScreenQuery(
            name='inventory',
            nav_path='/inventory',
            tables=('medicines', 'inventory_transactions'),
            load=load_medicines,
            search_fields=MEDICINE_SEARCH_FIELDS,
            row_template='partials/inventory_rows.html',
        ),
        ScreenQuery(
            name='prescriptions',
            nav_path='/prescriptions',
            tables=('prescriptions', 'prescription_items'),
            load=load_prescriptions,
            search_fields=PRESCRIPTION_SEARCH_FIELDS,
            row_template='partials/prescription_rows.html',
        ),
        ScreenQuery(
            name='sales',
            nav_path='/sales',
            tables=('sales',),
            load=load_sales,
            search_fields=SALE_SEARCH_FIELDS,
            row_template='partials/sale_rows.html',
        ),
        ScreenQuery(
            name='customers',
            nav_path='/customers',
            tables=('customers',),
            load=load_customers,
            search_fields=CUSTOMER_SEARCH_FIELDS,
            row_template='partials/customer_rows.html',
        ),
        ScreenQuery(
            name='suppliers',
            nav_path='/suppliers',
            tables=('suppliers',),
            load=load_suppliers,
            search_fields=SUPPLIER_SEARCH_FIELDS,
            row_template='partials/supplier_rows.html',
        ),
        ScreenQuery(
            name='invoices',
            nav_path='/invoices',
            tables=('invoices',),
            load=load_invoices,
            search_fields=INVOICE_SEARCH_FIELDS,
            row_template='partials/invoice_rows.html',
        ),
    )
}


def get_screen(name: str) -> ScreenQuery | None:
    return SCREENS.get(name)


def _session_loader(screen: ScreenQuery, session_factory: sessionmaker) -> Callable[[], Sequence[Any]]:
    def _load() -> Sequence[Any]:
        with session_factory() as db:
            return screen.load(db)

    return _load


def open_screen(screen: ScreenQuery, *, session_factory: sessionmaker, feed: ChangeFeed) -> LiveQueryCache:
    """Build a cache for one screen. The caller owns subscribe(), fetch() and teardown()."""
    return LiveQueryCache(
        tables=screen.tables,
        loader=_session_loader(screen, session_factory),
        feed=feed,
        search_fields=screen.search_fields,
    )
