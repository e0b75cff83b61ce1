from __future__ import annotations

import uuid
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import AuthorizedUser
from app.db import get_db
from app.dependencies import get_data_store, record_audit, render
from app.errors import PharmacyError
from app.models import Customer, Supplier
from app.schemas import CustomerForm, SupplierForm, parse_form
from app.security.csrf import verify_csrf
from app.security.route_guard import guard
from app.services.data_store import SqlDataStore
from app.services.directory_service import (
    CUSTOMER_SEARCH_FIELDS,
    SUPPLIER_SEARCH_FIELDS,
    create_customer,
    create_supplier,
    delete_customer,
    delete_supplier,
    load_customers,
    load_suppliers,
    update_customer,
    update_supplier,
)
from app.services.live_query import matches_query

router = APIRouter(tags=['directory'])
customers_access = guard('/customers')
suppliers_access = guard('/suppliers')

CUSTOMER_FIELDS = ('full_name', 'email', 'phone', 'address')
SUPPLIER_FIELDS = ('company_name', 'contact_person', 'email', 'phone', 'address', 'tax_number')


def _values(row, fields) -> dict:
    return {field: getattr(row, field) or '' for field in fields}


def _error_status(exc: Exception) -> int:
    return getattr(exc, 'status_code', 400)


# Customers


@router.get('/customers')
def customers_page(
    request: Request,
    _: AuthorizedUser = Depends(customers_access),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    rows = [row for row in load_customers(db) if matches_query(row, CUSTOMER_SEARCH_FIELDS, query)]
    return render(
        request,
        'customers.html',
        {'rows': rows, 'query': query, 'error': request.query_params.get('error'), 'live_screen': 'customers'},
    )


def _customer_form(request: Request, customer: Customer | None, values: dict, error: str | None, status_code: int = 200):
    return render(request, 'customer_form.html', {'customer': customer, 'values': values, 'error': error}, status_code=status_code)


def _get_customer(db: Session, customer_id: uuid.UUID) -> Customer:
    customer = db.get(Customer, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail='Customer not found')
    return customer


@router.get('/customers/new')
def new_customer_page(request: Request, _: AuthorizedUser = Depends(customers_access)):
    return _customer_form(request, None, {}, None)


@router.post('/customers/new')
async def new_customer_submit(
    request: Request,
    user: AuthorizedUser = Depends(customers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        customer = create_customer(store, parse_form(CustomerForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _customer_form(request, None, dict(form), str(exc), status_code=_error_status(exc))

    record_audit(request, store.db, user.id, 'CUSTOMER_CREATED', {'customer_id': customer.id})
    return RedirectResponse('/customers', status_code=303)


@router.get('/customers/{customer_id}/edit')
def edit_customer_page(
    customer_id: uuid.UUID,
    request: Request,
    _: AuthorizedUser = Depends(customers_access),
    db: Session = Depends(get_db),
):
    customer = _get_customer(db, customer_id)
    return _customer_form(request, customer, _values(customer, CUSTOMER_FIELDS), None)


@router.post('/customers/{customer_id}/edit')
async def edit_customer_submit(
    customer_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(customers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    customer = _get_customer(store.db, customer_id)
    form = await request.form()
    try:
        update_customer(store, customer_id, parse_form(CustomerForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _customer_form(request, customer, dict(form), str(exc), status_code=_error_status(exc))

    record_audit(request, store.db, user.id, 'CUSTOMER_UPDATED', {'customer_id': customer_id})
    return RedirectResponse('/customers', status_code=303)


@router.post('/customers/{customer_id}/delete')
def delete_customer_submit(
    customer_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(customers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    try:
        delete_customer(store, customer_id)
    except PharmacyError as exc:
        store.db.rollback()
        return RedirectResponse(f'/customers?{urlencode({"error": exc.user_message})}', status_code=303)

    record_audit(request, store.db, user.id, 'CUSTOMER_DELETED', {'customer_id': customer_id})
    return RedirectResponse('/customers', status_code=303)


# Suppliers


@router.get('/suppliers')
def suppliers_page(
    request: Request,
    _: AuthorizedUser = Depends(suppliers_access),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    rows = [row for row in load_suppliers(db) if matches_query(row, SUPPLIER_SEARCH_FIELDS, query)]
    return render(
        request,
        'suppliers.html',
        {'rows': rows, 'query': query, 'error': request.query_params.get('error'), 'live_screen': 'suppliers'},
    )


def _supplier_form(request: Request, supplier: Supplier | None, values: dict, error: str | None, status_code: int = 200):
    return render(request, 'supplier_form.html', {'supplier': supplier, 'values': values, 'error': error}, status_code=status_code)


def _get_supplier(db: Session, supplier_id: uuid.UUID) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if supplier is None:
        raise HTTPException(status_code=404, detail='Supplier not found')
    return supplier


@router.get('/suppliers/new')
def new_supplier_page(request: Request, _: AuthorizedUser = Depends(suppliers_access)):
    return _supplier_form(request, None, {}, None)


@router.post('/suppliers/new')
async def new_supplier_submit(
    request: Request,
    user: AuthorizedUser = Depends(suppliers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        supplier = create_supplier(store, parse_form(SupplierForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _supplier_form(request, None, dict(form), str(exc), status_code=_error_status(exc))

    record_audit(request, store.db, user.id, 'SUPPLIER_CREATED', {'supplier_id': supplier.id})
    return RedirectResponse('/suppliers', status_code=303)


@router.get('/suppliers/{supplier_id}/edit')
def edit_supplier_page(
    supplier_id: uuid.UUID,
    request: Request,
    _: AuthorizedUser = Depends(suppliers_access),
    db: Session = Depends(get_db),
):
    supplier = _get_supplier(db, supplier_id)
    return _supplier_form(request, supplier, _values(supplier, SUPPLIER_FIELDS), None)


@router.post('/suppliers/{supplier_id}/edit')
async def edit_supplier_submit(
    supplier_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(suppliers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    supplier = _get_supplier(store.db, supplier_id)
    form = await request.form()
    try:
        update_supplier(store, supplier_id, parse_form(SupplierForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _supplier_form(request, supplier, dict(form), str(exc), status_code=_error_status(exc))

    record_audit(request, store.db, user.id, 'SUPPLIER_UPDATED', {'supplier_id': supplier_id})
    return RedirectResponse('/suppliers', status_code=303)


@router.post('/suppliers/{supplier_id}/delete')
def delete_supplier_submit(
    supplier_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(suppliers_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    try:
        delete_supplier(store, supplier_id)
    except PharmacyError as exc:
        store.db.rollback()
        return RedirectResponse(f'/suppliers?{urlencode({"error": exc.user_message})}', status_code=303)

    record_audit(request, store.db, user.id, 'SUPPLIER_DELETED', {'supplier_id': supplier_id})
    return RedirectResponse('/suppliers', status_code=303)
