from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ReferenceNotFound
from app.models import Customer, Supplier
from app.schemas import CustomerForm, SupplierForm
from app.services.data_store import DataStore

CUSTOMER_SEARCH_FIELDS = ('full_name', 'email', 'phone', 'address')
SUPPLIER_SEARCH_FIELDS = ('company_name', 'contact_person', 'email', 'phone')


def load_customers(db: Session) -> list[Customer]:
    return list(db.execute(select(Customer).order_by(Customer.full_name.asc())).scalars().all())


def load_suppliers(db: Session) -> list[Supplier]:
    return list(db.execute(select(Supplier).order_by(Supplier.company_name.asc())).scalars().all())


def create_customer(store: DataStore, form: CustomerForm) -> Customer:
    return store.insert(Customer, form.model_dump())


def update_customer(store: DataStore, customer_id: uuid.UUID, form: CustomerForm) -> None:
    if store.update(Customer, [Customer.id == customer_id], form.model_dump()) == 0:
        raise ReferenceNotFound(f'Customer {customer_id} no longer exists')


def delete_customer(store: DataStore, customer_id: uuid.UUID) -> None:
    if store.delete(Customer, Customer.id == customer_id) == 0:
        raise ReferenceNotFound(f'Customer {customer_id} no longer exists')


def create_supplier(store: DataStore, form: SupplierForm) -> Supplier:
    return store.insert(Supplier, form.model_dump())


def update_supplier(store: DataStore, supplier_id: uuid.UUID, form: SupplierForm) -> None:
    if store.update(Supplier, [Supplier.id == supplier_id], form.model_dump()) == 0:
        raise ReferenceNotFound(f'Supplier {supplier_id} no longer exists')


def delete_supplier(store: DataStore, supplier_id: uuid.UUID) -> None:
    if store.delete(Supplier, Supplier.id == supplier_id) == 0:
        raise ReferenceNotFound(f'Supplier {supplier_id} no longer exists')
