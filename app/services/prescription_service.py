from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import EmptyPrescription, ReferenceNotFound
from app.models import Customer, Medicine, Prescription, PrescriptionItem, PrescriptionStatus
from app.services.data_store import DataStore
from app.services.inventory_service import find_medicine
from app.services.mutation_coordinator import run_two_step

logger = logging.getLogger(__name__)

PRESCRIPTION_SEARCH_FIELDS = ('doctor_name', 'customer_name')


@dataclass(frozen=True)
class PrescriptionHeader:
    doctor_name: str
    prescription_date: date
    customer_id: uuid.UUID | None = None
    status: PrescriptionStatus = PrescriptionStatus.ACTIVE
    notes: str | None = None


@dataclass(frozen=True)
class PrescriptionItemInput:
    medicine_id: uuid.UUID
    quantity: int
    # Price captured when the medicine was picked, not when the form is saved.
    unit_price: Decimal
    dosage: str | None = None
    instructions: str | None = None


def select_item(
    medicines: Sequence[Medicine],
    medicine_id: uuid.UUID,
    *,
    quantity: int,
    dosage: str | None = None,
    instructions: str | None = None,
) -> PrescriptionItemInput:
    medicine = find_medicine(medicines, medicine_id)
    return PrescriptionItemInput(
        medicine_id=medicine.id,
        quantity=quantity,
        unit_price=Decimal(medicine.unit_price),
        dosage=dosage,
        instructions=instructions,
    )


def _validate(header: PrescriptionHeader, items: Sequence[PrescriptionItemInput]) -> None:
    if not items:
        raise EmptyPrescription()
    if not header.doctor_name or not header.doctor_name.strip():
        raise ValueError('Doctor name is required')
    if header.prescription_date is None:
        raise ValueError('Prescription date is required')
    for position, item in enumerate(items, start=1):
        if item.quantity <= 0:
            raise ValueError(f'Item {position}: quantity must be greater than zero')
        if item.unit_price < 0:
            raise ValueError(f'Item {position}: unit price cannot be negative')


def _header_values(header: PrescriptionHeader) -> dict:
    return {
        'customer_id': header.customer_id,
        'doctor_name': header.doctor_name.strip(),
        'prescription_date': header.prescription_date,
        'status': header.status.value,
        'notes': header.notes,
    }


def _item_rows(prescription_id: uuid.UUID, items: Sequence[PrescriptionItemInput]) -> list[dict]:
    return [
        {
            'prescription_id': prescription_id,
            'medicine_id': item.medicine_id,
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'dosage': item.dosage,
            'instructions': item.instructions,
            'position': position,
        }
        for position, item in enumerate(items)
    ]


def create_prescription(
    store: DataStore,
    header: PrescriptionHeader,
    items: Sequence[PrescriptionItemInput],
    *,
    actor_id: uuid.UUID | None = None,
) -> Prescription:
    _validate(header, items)

    def _insert_header() -> Prescription:
        return store.insert(Prescription, {**_header_values(header), 'created_by': actor_id})

    def _insert_items(prescription: Prescription) -> None:
        store.insert_many(PrescriptionItem, _item_rows(prescription.id, items))

    def _remove_header(prescription: Prescription) -> None:
        store.delete(PrescriptionItem, PrescriptionItem.prescription_id == prescription.id)
        store.delete(Prescription, Prescription.id == prescription.id)

    prescription = run_two_step(
        store,
        'prescription create',
        first=_insert_header,
        second=_insert_items,
        compensate=_remove_header,
    )
    logger.info('Created prescription %s with %s item(s)', prescription.id, len(items))
    return prescription


def update_prescription(
    store: DataStore,
    prescription_id: uuid.UUID,
    header: PrescriptionHeader,
    items: Sequence[PrescriptionItemInput],
) -> Prescription:
    """Update the header in place and replace the whole item list."""
    _validate(header, items)
    existing = store.get(Prescription, prescription_id)
    if existing is None:
        raise ReferenceNotFound(f'Prescription {prescription_id} no longer exists')

    previous_header = {
        'customer_id': existing.customer_id,
        'doctor_name': existing.doctor_name,
        'prescription_date': existing.prescription_date,
        'status': existing.status,
        'notes': existing.notes,
    }
    previous_items = [
        {
            'prescription_id': prescription_id,
            'medicine_id': item.medicine_id,
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'dosage': item.dosage,
            'instructions': item.instructions,
            'position': item.position,
        }
        for item in store.select(
            PrescriptionItem,
            PrescriptionItem.prescription_id == prescription_id,
            order_by=(PrescriptionItem.position.asc(),),
        )
    ]

    def _update_header() -> Prescription:
        updated = store.update(Prescription, [Prescription.id == prescription_id], _header_values(header))
        if updated == 0:
            raise ReferenceNotFound(f'Prescription {prescription_id} no longer exists')
        return existing

    def _replace_items(_: Prescription) -> None:
        store.delete(PrescriptionItem, PrescriptionItem.prescription_id == prescription_id)
        store.insert_many(PrescriptionItem, _item_rows(prescription_id, items))

    def _restore(_: Prescription) -> None:
        store.update(Prescription, [Prescription.id == prescription_id], previous_header)
        store.delete(PrescriptionItem, PrescriptionItem.prescription_id == prescription_id)
        store.insert_many(PrescriptionItem, previous_items)

    prescription = run_two_step(
        store,
        'prescription update',
        first=_update_header,
        second=_replace_items,
        compensate=_restore,
    )
    logger.info('Updated prescription %s; items replaced with %s', prescription_id, len(items))
    return prescription


def save_prescription(
    store: DataStore,
    header: PrescriptionHeader,
    items: Sequence[PrescriptionItemInput],
    *,
    prescription_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> Prescription:
    if prescription_id is None:
        return create_prescription(store, header, items, actor_id=actor_id)
    return update_prescription(store, prescription_id, header, items)


def set_status(store: DataStore, prescription_id: uuid.UUID, status: PrescriptionStatus) -> None:
    updated = store.update(Prescription, [Prescription.id == prescription_id], {'status': status.value})
    if updated == 0:
        raise ReferenceNotFound(f'Prescription {prescription_id} no longer exists')


def load_prescriptions(db: Session) -> list[dict]:
    rows = db.execute(
        select(Prescription, Customer.full_name)
        .outerjoin(Customer, Customer.id == Prescription.customer_id)
        .order_by(Prescription.created_at.desc())
    ).all()
    items_by_prescription: dict[uuid.UUID, list[dict]] = {}
    item_rows = db.execute(
        select(PrescriptionItem, Medicine.name)
        .join(Medicine, Medicine.id == PrescriptionItem.medicine_id)
        .order_by(PrescriptionItem.position.asc())
    ).all()
    for item, medicine_name in item_rows:
        items_by_prescription.setdefault(item.prescription_id, []).append(
            {
                'medicine_id': item.medicine_id,
                'medicine_name': medicine_name,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'dosage': item.dosage,
                'instructions': item.instructions,
            }
        )
    return [
        {
            'id': prescription.id,
            'customer_id': prescription.customer_id,
            'customer_name': customer_name,
            'doctor_name': prescription.doctor_name,
            'prescription_date': prescription.prescription_date,
            'status': prescription.status,
            'notes': prescription.notes,
            'created_at': prescription.created_at,
            'items': items_by_prescription.get(prescription.id, []),
        }
        for prescription, customer_name in rows
    ]


def filter_by_status(prescriptions: Sequence[dict], status: str | None) -> list[dict]:
    if not status or status == 'all':
        return list(prescriptions)
    return [prescription for prescription in prescriptions if prescription['status'] == status]
