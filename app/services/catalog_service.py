from __future__ import annotations

import uuid
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ReferenceNotFound
from app.models import InventoryTransaction, Medicine, PrescriptionItem, SaleItem
from app.schemas import MedicineForm
from app.services.data_store import DataStore

MEDICINE_SEARCH_FIELDS = ('name', 'generic_name', 'category', 'manufacturer')
SORT_FIELDS = {'name', 'category', 'manufacturer', 'unit_price', 'stock_quantity', 'expiry_date'}


def load_medicines(db: Session) -> list[Medicine]:
    return list(db.execute(select(Medicine).order_by(Medicine.name.asc())).scalars().all())


def list_categories(medicines: Sequence[Medicine]) -> list[str]:
    return sorted({medicine.category for medicine in medicines if medicine.category})


def sort_medicines(medicines: Sequence[Medicine], field: str, direction: str) -> list[Medicine]:
    if field not in SORT_FIELDS:
        field = 'name'

    def _key(medicine: Medicine):
        value = getattr(medicine, field)
        return value.lower() if isinstance(value, str) else value

    present = [medicine for medicine in medicines if getattr(medicine, field) is not None]
    missing = [medicine for medicine in medicines if getattr(medicine, field) is None]
    present.sort(key=_key, reverse=direction == 'desc')
    # Missing values sort last in either direction.
    return present + missing


def filter_by_category(medicines: Sequence[Medicine], category: str | None) -> list[Medicine]:
    if not category or category == 'all':
        return list(medicines)
    return [medicine for medicine in medicines if medicine.category == category]


def _medicine_values(form: MedicineForm) -> dict:
    return {
        'name': form.name,
        'generic_name': form.generic_name,
        'category': form.category,
        'manufacturer': form.manufacturer,
        'description': form.description,
        'stock_quantity': form.stock_quantity,
        'reorder_level': form.reorder_level,
        'unit_price': Decimal(form.unit_price),
        'expiry_date': form.expiry_date,
    }


def create_medicine(store: DataStore, form: MedicineForm) -> Medicine:
    return store.insert(Medicine, _medicine_values(form))


def update_medicine(store: DataStore, medicine_id: uuid.UUID, form: MedicineForm) -> None:
    updated = store.update(Medicine, [Medicine.id == medicine_id], _medicine_values(form))
    if updated == 0:
        raise ReferenceNotFound(f'Medicine {medicine_id} no longer exists')


def delete_medicine(store: DataStore, medicine_id: uuid.UUID) -> None:
    for model in (InventoryTransaction, PrescriptionItem, SaleItem):
        if store.select(model, model.medicine_id == medicine_id, limit=1):
            raise ValueError('Medicine has stock, prescription or sale history and cannot be deleted')
    deleted = store.delete(Medicine, Medicine.id == medicine_id)
    if deleted == 0:
        raise ReferenceNotFound(f'Medicine {medicine_id} no longer exists')
