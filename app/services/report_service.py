from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Medicine, Sale
from app.services.inventory_service import CENTS, is_low_stock

REPORT_RANGES = (7, 30, 90)
DEFAULT_RANGE = 30
UNCATEGORIZED = 'Uncategorized'


@dataclass(frozen=True)
class DailySales:
    day: date
    count: int
    total: Decimal


@dataclass(frozen=True)
class CategoryValue:
    category: str
    items: int
    value: Decimal


def normalize_range(days: int | None) -> int:
    return days if days in REPORT_RANGES else DEFAULT_RANGE


def sales_per_day(sales: Sequence[Sale], *, today: date, days: int) -> list[DailySales]:
    """One entry per calendar day (UTC) in the window, oldest first, zero-filled."""
    start = today - timedelta(days=days - 1)
    buckets: dict[date, list[Decimal]] = {start + timedelta(days=offset): [] for offset in range(days)}
    for sale in sales:
        created_at = sale.created_at
        if created_at.tzinfo is not None:
            created_at = created_at.astimezone(timezone.utc)
        bucket = buckets.get(created_at.date())
        if bucket is not None:
            bucket.append(Decimal(sale.total_amount))
    return [
        DailySales(day=day, count=len(amounts), total=sum(amounts, Decimal('0')).quantize(CENTS))
        for day, amounts in buckets.items()
    ]


def inventory_value_by_category(medicines: Sequence[Medicine]) -> list[CategoryValue]:
    totals: dict[str, tuple[int, Decimal]] = {}
    for medicine in medicines:
        category = medicine.category or UNCATEGORIZED
        items, value = totals.get(category, (0, Decimal('0')))
        totals[category] = (items + 1, value + Decimal(medicine.stock_quantity) * Decimal(medicine.unit_price))
    return sorted(
        (CategoryValue(category=category, items=items, value=value.quantize(CENTS)) for category, (items, value) in totals.items()),
        key=lambda row: row.value,
        reverse=True,
    )


def low_stock_report(medicines: Sequence[Medicine]) -> list[Medicine]:
    return sorted(
        (medicine for medicine in medicines if is_low_stock(medicine)),
        key=lambda medicine: medicine.stock_quantity - medicine.reorder_level,
    )


def load_report(db: Session, *, today: date, days: int) -> dict:
    days = normalize_range(days)
    window_start = datetime.combine(today - timedelta(days=days - 1), time.min, tzinfo=timezone.utc)
    sales = db.execute(select(Sale).where(Sale.created_at >= window_start)).scalars().all()
    medicines = db.execute(select(Medicine).order_by(Medicine.name.asc())).scalars().all()
    daily = sales_per_day(sales, today=today, days=days)
    return {
        'days': days,
        'daily_sales': daily,
        'sales_total': sum((row.total for row in daily), Decimal('0')),
        'sales_count': sum(row.count for row in daily),
        'category_values': inventory_value_by_category(medicines),
        'low_stock': low_stock_report(medicines),
    }
