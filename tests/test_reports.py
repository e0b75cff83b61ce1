from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from app.services.dashboard_service import ActivityItem, compute_stats, merge_activity
from app.services.report_service import (
    DEFAULT_RANGE,
    inventory_value_by_category,
    low_stock_report,
    normalize_range,
    sales_per_day,
)
from app.services.sales_service import payment_status_label, sales_totals

TODAY = date(2026, 3, 10)


def _at(days_ago: int, hour: int = 12) -> datetime:
    return datetime.combine(TODAY - timedelta(days=days_ago), datetime.min.time(), tzinfo=timezone.utc) + timedelta(hours=hour)


def _medicine(name, stock, price, category=None, reorder=10, expiry=None):
    return SimpleNamespace(
        name=name,
        stock_quantity=stock,
        reorder_level=reorder,
        unit_price=Decimal(price),
        category=category,
        expiry_date=expiry,
    )


class ReportServiceTests(unittest.TestCase):
    def test_sales_per_day_is_zero_filled(self) -> None:
        sales = [
            SimpleNamespace(created_at=_at(0), total_amount=Decimal('10.00')),
            SimpleNamespace(created_at=_at(0, 15), total_amount=Decimal('5.50')),
            SimpleNamespace(created_at=_at(2), total_amount=Decimal('7.25')),
            SimpleNamespace(created_at=_at(30), total_amount=Decimal('99.00')),
        ]
        rows = sales_per_day(sales, today=TODAY, days=7)

        self.assertEqual(len(rows), 7)
        self.assertEqual(rows[0].day, TODAY - timedelta(days=6))
        self.assertEqual(rows[-1].day, TODAY)
        self.assertEqual((rows[-1].count, rows[-1].total), (2, Decimal('15.50')))
        self.assertEqual(rows[-3].total, Decimal('7.25'))
        self.assertEqual(sum(row.count for row in rows), 3)

    def test_range_is_normalized(self) -> None:
        self.assertEqual(normalize_range(90), 90)
        self.assertEqual(normalize_range(12), DEFAULT_RANGE)
        self.assertEqual(normalize_range(None), DEFAULT_RANGE)

    def test_inventory_value_by_category(self) -> None:
        rows = inventory_value_by_category(
            [
                _medicine('A', 10, '2.00', 'Analgesics'),
                _medicine('B', 5, '1.00', 'Analgesics'),
                _medicine('C', 100, '1.00'),
            ]
        )
        self.assertEqual([(row.category, row.items, row.value) for row in rows], [('Uncategorized', 1, Decimal('100.00')), ('Analgesics', 2, Decimal('25.00'))])

    def test_low_stock_report_orders_by_shortfall(self) -> None:
        rows = low_stock_report([_medicine('A', 9, '1'), _medicine('B', 0, '1'), _medicine('C', 50, '1')])
        self.assertEqual([row.name for row in rows], ['B', 'A'])


class DashboardServiceTests(unittest.TestCase):
    def test_compute_stats(self) -> None:
        medicines = [
            _medicine('A', 2, '1'),
            _medicine('B', 50, '1', expiry=TODAY + timedelta(days=3)),
            _medicine('C', 50, '1', expiry=TODAY + timedelta(days=60)),
        ]
        stats = compute_stats(medicines, Decimal('42.00'), today=TODAY, within_days=7)
        self.assertEqual(stats.total_medicines, 3)
        self.assertEqual(stats.low_stock, 1)
        self.assertEqual(stats.expiring_soon, 1)
        self.assertEqual(stats.today_sales, Decimal('42.00'))

    def test_merge_activity_newest_first(self) -> None:
        sales = [ActivityItem('sale', 'Sale 1', _at(1)), ActivityItem('sale', 'Sale 2', _at(3))]
        stock = [ActivityItem('inventory', 'Stock 1', _at(0).replace(tzinfo=None))]
        prescriptions = [ActivityItem('prescription', 'Rx 1', _at(2))]
        merged = merge_activity(sales, stock, prescriptions)
        self.assertEqual([item.description for item in merged], ['Stock 1', 'Sale 1', 'Rx 1', 'Sale 2'])


class SalesServiceTests(unittest.TestCase):
    def test_totals(self) -> None:
        sales = [
            {'total_amount': Decimal('10.00'), 'created_at': _at(0)},
            {'total_amount': Decimal('4.00'), 'created_at': _at(1)},
        ]
        totals = sales_totals(sales, today=TODAY)
        self.assertEqual(totals.total, Decimal('14.00'))
        self.assertEqual(totals.today, Decimal('10.00'))
        self.assertEqual(totals.count, 2)

    def test_payment_status_label(self) -> None:
        self.assertEqual(payment_status_label('PAID'), 'Paid')
        self.assertEqual(payment_status_label(None), 'Unknown')
        self.assertEqual(payment_status_label('refunded'), 'Unknown')


if __name__ == '__main__':
    unittest.main()
