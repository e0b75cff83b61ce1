from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Customer, Invoice, PaymentStatus, Sale

SALE_SEARCH_FIELDS = ('customer_name', 'payment_method')
INVOICE_SEARCH_FIELDS = ('invoice_number', 'customer_name', 'status')

PAYMENT_STATUS_LABELS = {
    PaymentStatus.PAID.value: 'Paid',
    PaymentStatus.PENDING.value: 'Pending',
    PaymentStatus.FAILED.value: 'Failed',
}


@dataclass(frozen=True)
class SalesTotals:
    total: Decimal
    today: Decimal
    count: int


def payment_status_label(status: str | None) -> str:
    return PAYMENT_STATUS_LABELS.get((status or '').lower(), 'Unknown')


def load_sales(db: Session) -> list[dict]:
    rows = db.execute(
        select(Sale, Customer.full_name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .order_by(Sale.created_at.desc())
    ).all()
    return [
        {
            'id': sale.id,
            'customer_name': customer_name,
            'total_amount': sale.total_amount,
            'payment_method': sale.payment_method,
            'payment_status': sale.payment_status,
            'payment_status_label': payment_status_label(sale.payment_status),
            'created_at': sale.created_at,
        }
        for sale, customer_name in rows
    ]


def _as_date(value: datetime) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def sales_totals(sales: Sequence[dict], *, today: date) -> SalesTotals:
    total = sum((Decimal(sale['total_amount']) for sale in sales), Decimal('0'))
    today_total = sum(
        (Decimal(sale['total_amount']) for sale in sales if _as_date(sale['created_at']) == today),
        Decimal('0'),
    )
    return SalesTotals(total=total, today=today_total, count=len(sales))


def load_invoices(db: Session) -> list[dict]:
    rows = db.execute(
        select(Invoice, Customer.full_name)
        .outerjoin(Customer, Customer.id == Invoice.customer_id)
        .order_by(Invoice.created_at.desc())
    ).all()
    return [
        {
            'id': invoice.id,
            'invoice_number': invoice.invoice_number,
            'customer_name': customer_name,
            'total_amount': invoice.total_amount,
            'status': invoice.status,
            'due_date': invoice.due_date,
            'created_at': invoice.created_at,
        }
        for invoice, customer_name in rows
    ]
