from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import InsufficientStock, ReferenceNotFound
from app.models import InventoryTransaction, Medicine, TransactionType
from app.services.data_store import DataStore
from app.services.mutation_coordinator import run_two_step

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')

FILTER_ALL = 'all'
FILTER_LOW_STOCK = 'low_stock'
FILTER_EXPIRING = 'expiring'
INVENTORY_FILTERS = (FILTER_ALL, FILTER_LOW_STOCK, FILTER_EXPIRING)


@dataclass(frozen=True)
class TransactionRequest:
    medicine_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    transaction_type: TransactionType
    reference_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InventorySummary:
    low_stock_count: int
    expiring_count: int
    total_value: Decimal


def compute_total_amount(quantity: int, unit_price: Decimal) -> Decimal:
    return (Decimal(quantity) * unit_price).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_new_stock(current: int, quantity: int, transaction_type: TransactionType) -> int:
    if transaction_type == TransactionType.IN:
        return current + quantity
    return current - quantity


def find_medicine(medicines: Sequence[Medicine], medicine_id: uuid.UUID) -> Medicine:
    for medicine in medicines:
        if medicine.id == medicine_id:
            return medicine
    raise ReferenceNotFound(f'Medicine {medicine_id} no longer exists')


def _validate_request(request: TransactionRequest) -> None:
    if request.quantity <= 0:
        raise ValueError('Quantity must be greater than zero')
    if request.unit_price < 0:
        raise ValueError('Unit price cannot be negative')
    if not isinstance(request.transaction_type, TransactionType):
        raise ValueError('Transaction type must be "in" or "out"')


def record_inventory_transaction(
    store: DataStore,
    medicines: Sequence[Medicine],
    request: TransactionRequest,
    *,
    actor_id: uuid.UUID | None = None,
) -> InventoryTransaction:
    """Log a stock movement and apply it to the medicine's stock.

    ``medicines`` is the caller's in-memory list; the stock check runs against
    it before anything is written, so a rejected "out" leaves no trace. The
    stock update itself is relative and an "out" only applies while the row
    still holds enough, so a stale list can never drive stock below zero.
    """
    _validate_request(request)
    medicine = find_medicine(medicines, request.medicine_id)
    total_amount = compute_total_amount(request.quantity, request.unit_price)
    new_stock = compute_new_stock(medicine.stock_quantity, request.quantity, request.transaction_type)
    if new_stock < 0:
        raise InsufficientStock(
            medicine_name=medicine.name,
            available=medicine.stock_quantity,
            requested=request.quantity,
        )

    def _insert_transaction() -> InventoryTransaction:
        return store.insert(
            InventoryTransaction,
            {
                'medicine_id': medicine.id,
                'quantity': request.quantity,
                'unit_price': request.unit_price,
                'total_amount': total_amount,
                'transaction_type': request.transaction_type.value,
                'reference_number': request.reference_number,
                'notes': request.notes,
                'created_by': actor_id,
            },
        )

    def _apply_stock(_: InventoryTransaction) -> None:
        if request.transaction_type == TransactionType.IN:
            where = [Medicine.id == medicine.id]
            patch = {'stock_quantity': Medicine.stock_quantity + request.quantity}
        else:
            where = [Medicine.id == medicine.id, Medicine.stock_quantity >= request.quantity]
            patch = {'stock_quantity': Medicine.stock_quantity - request.quantity}
        if store.update(Medicine, where, patch):
            return
        current = store.value(Medicine.stock_quantity, Medicine.id == medicine.id)
        if current is None:
            raise ReferenceNotFound(f'Medicine {medicine.id} disappeared before its stock was updated')
        raise InsufficientStock(medicine_name=medicine.name, available=current, requested=request.quantity)

    def _remove_transaction(transaction: InventoryTransaction) -> None:
        store.delete(InventoryTransaction, InventoryTransaction.id == transaction.id)

    transaction = run_two_step(
        store,
        'inventory transaction',
        first=_insert_transaction,
        second=_apply_stock,
        compensate=_remove_transaction,
    )
    logger.info('Recorded %s of %s x %s', request.transaction_type.value, request.quantity, medicine.name)
    return transaction


def stock_status(medicine: Medicine) -> str:
    if medicine.stock_quantity <= 0:
        return 'Out of Stock'
    if medicine.stock_quantity <= medicine.reorder_level:
        return 'Low Stock'
    return 'In Stock'


def is_low_stock(medicine: Medicine) -> bool:
    return medicine.stock_quantity <= medicine.reorder_level


def is_expiring(medicine: Medicine, *, today: date, within_days: int) -> bool:
    if medicine.expiry_date is None:
        return False
    return medicine.expiry_date <= today + timedelta(days=within_days)


def filter_inventory(medicines: Sequence[Medicine], mode: str, *, today: date, within_days: int) -> list[Medicine]:
    if mode == FILTER_LOW_STOCK:
        return [medicine for medicine in medicines if is_low_stock(medicine)]
    if mode == FILTER_EXPIRING:
        return [medicine for medicine in medicines if is_expiring(medicine, today=today, within_days=within_days)]
    return list(medicines)


def summarize_inventory(medicines: Sequence[Medicine], *, today: date, within_days: int) -> InventorySummary:
    total_value = sum(
        (Decimal(medicine.stock_quantity) * Decimal(medicine.unit_price) for medicine in medicines),
        Decimal('0'),
    )
    return InventorySummary(
        low_stock_count=sum(1 for medicine in medicines if is_low_stock(medicine)),
        expiring_count=sum(1 for medicine in medicines if is_expiring(medicine, today=today, within_days=within_days)),
        total_value=total_value.quantize(CENTS),
    )


def load_recent_transactions(db: Session, *, limit: int) -> list[dict]:
    rows = db.execute(
        select(InventoryTransaction, Medicine.name)
        .join(Medicine, Medicine.id == InventoryTransaction.medicine_id)
        .order_by(InventoryTransaction.created_at.desc())
        .limit(limit)
    ).all()
    return [
        {
            'id': transaction.id,
            'medicine_name': medicine_name,
            'quantity': transaction.quantity,
            'unit_price': transaction.unit_price,
            'total_amount': transaction.total_amount,
            'transaction_type': transaction.transaction_type,
            'reference_number': transaction.reference_number,
            'created_at': transaction.created_at,
        }
        for transaction, medicine_name in rows
    ]
