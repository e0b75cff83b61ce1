from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import Customer, InventoryTransaction, Medicine, Prescription, Sale
from app.services.inventory_service import is_expiring, is_low_stock

RECENT_SALES = 3
RECENT_TRANSACTIONS = 3
RECENT_PRESCRIPTIONS = 2


@dataclass(frozen=True)
class DashboardStats:
    total_medicines: int
    low_stock: int
    expiring_soon: int
    today_sales: Decimal


@dataclass(frozen=True)
class ActivityItem:
    kind: str
    description: str
    created_at: datetime
    amount: Decimal | None = None


def compute_stats(
    medicines: Sequence[Medicine],
    today_sales: Decimal,
    *,
    today: date,
    within_days: int,
) -> DashboardStats:
    return DashboardStats(
        total_medicines=len(medicines),
        low_stock=sum(1 for medicine in medicines if is_low_stock(medicine)),
        expiring_soon=sum(1 for medicine in medicines if is_expiring(medicine, today=today, within_days=within_days)),
        today_sales=today_sales,
    )


def _sort_key(item: ActivityItem) -> datetime:
    created_at = item.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


def merge_activity(*groups: Sequence[ActivityItem]) -> list[ActivityItem]:
    merged = [item for group in groups for item in group]
    merged.sort(key=_sort_key, reverse=True)
    return merged


def _today_sales_total(db: Session, today: date) -> Decimal:
    start = datetime.combine(today, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)
    total = db.execute(
        select(func.coalesce(func.sum(Sale.total_amount), 0)).where(Sale.created_at >= start, Sale.created_at < end)
    ).scalar_one()
    return Decimal(total)


def _recent_sales(db: Session) -> list[ActivityItem]:
    rows = db.execute(
        select(Sale, Customer.full_name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .order_by(Sale.created_at.desc())
        .limit(RECENT_SALES)
    ).all()
    return [
        ActivityItem(
            kind='sale',
            description=f'Sale to {customer_name or "walk-in customer"}',
            created_at=sale.created_at,
            amount=sale.total_amount,
        )
        for sale, customer_name in rows
    ]


def _recent_transactions(db: Session) -> list[ActivityItem]:
    rows = db.execute(
        select(InventoryTransaction, Medicine.name)
        .join(Medicine, Medicine.id == InventoryTransaction.medicine_id)
        .order_by(InventoryTransaction.created_at.desc())
        .limit(RECENT_TRANSACTIONS)
    ).all()
    return [
        ActivityItem(
            kind='inventory',
            description=f'Stock {"received" if transaction.transaction_type == "in" else "issued"}: '
            f'{transaction.quantity} x {medicine_name}',
            created_at=transaction.created_at,
            amount=transaction.total_amount,
        )
        for transaction, medicine_name in rows
    ]


def _recent_prescriptions(db: Session) -> list[ActivityItem]:
    prescriptions = db.execute(
        select(Prescription).order_by(Prescription.created_at.desc()).limit(RECENT_PRESCRIPTIONS)
    ).scalars()
    return [
        ActivityItem(
            kind='prescription',
            description=f'Prescription from Dr. {prescription.doctor_name}',
            created_at=prescription.created_at,
        )
        for prescription in prescriptions
    ]


def load_dashboard(db: Session, *, today: date, within_days: int) -> tuple[DashboardStats, list[ActivityItem]]:
    medicines = list(db.execute(select(Medicine)).scalars().all())
    stats = compute_stats(medicines, _today_sales_total(db, today), today=today, within_days=within_days)
    activity = merge_activity(_recent_sales(db), _recent_transactions(db), _recent_prescriptions(db))
    return stats, activity
