from __future__ import annotations

import uuid
from collections.abc import Sequence
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.datastructures import FormData

from app.auth import AuthorizedUser
from app.db import get_db
from app.dependencies import get_data_store, record_audit, render
from app.errors import PharmacyError
from app.models import Medicine, Prescription, PrescriptionItem, PrescriptionStatus
from app.schemas import PrescriptionForm, PrescriptionItemForm, parse_form
from app.security.csrf import verify_csrf
from app.security.route_guard import guard
from app.services.catalog_service import load_medicines
from app.services.data_store import SqlDataStore
from app.services.directory_service import load_customers
from app.services.live_query import matches_query
from app.services.prescription_service import (
    PRESCRIPTION_SEARCH_FIELDS,
    PrescriptionHeader,
    PrescriptionItemInput,
    filter_by_status,
    load_prescriptions,
    save_prescription,
    select_item,
    set_status,
)

router = APIRouter(prefix='/prescriptions', tags=['prescriptions'])
prescriptions_access = guard('/prescriptions')

ITEM_FIELDS = ('medicine_id', 'quantity', 'unit_price', 'dosage', 'instructions')


@router.get('')
def prescriptions_page(
    request: Request,
    _: AuthorizedUser = Depends(prescriptions_access),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    status = request.query_params.get('status', 'all')
    prescriptions = filter_by_status(load_prescriptions(db), status)
    return render(
        request,
        'prescriptions.html',
        {
            'rows': [row for row in prescriptions if matches_query(row, PRESCRIPTION_SEARCH_FIELDS, query)],
            'statuses': list(PrescriptionStatus),
            'status': status,
            'query': query,
            'error': request.query_params.get('error'),
            'live_screen': 'prescriptions',
        },
    )


def _item_rows_from_form(form: FormData) -> list[dict]:
    columns = {field: form.getlist(f'item_{field}') for field in ITEM_FIELDS}
    rows = []
    for index in range(len(columns['medicine_id'])):
        row = {field: values[index] if index < len(values) else '' for field, values in columns.items()}
        if str(row['medicine_id']).strip():
            rows.append(row)
    return rows


def _parse_items(medicines: Sequence[Medicine], rows: Sequence[dict]) -> list[PrescriptionItemInput]:
    items = []
    for position, row in enumerate(rows, start=1):
        try:
            data = parse_form(PrescriptionItemForm, row)
        except ValueError as exc:
            raise ValueError(f'Item {position}: {exc}') from exc
        picked = select_item(
            medicines,
            data.medicine_id,
            quantity=data.quantity,
            dosage=data.dosage,
            instructions=data.instructions,
        )
        if data.unit_price is not None:
            # Keep the price shown when the medicine was picked on the form.
            picked = PrescriptionItemInput(
                medicine_id=picked.medicine_id,
                quantity=picked.quantity,
                unit_price=data.unit_price,
                dosage=picked.dosage,
                instructions=picked.instructions,
            )
        items.append(picked)
    return items


def _form_page(
    request: Request,
    db: Session,
    *,
    prescription: Prescription | None,
    values: dict,
    items: list[dict],
    error: str | None = None,
    status_code: int = 200,
):
    return render(
        request,
        'prescription_form.html',
        {
            'prescription': prescription,
            'values': values,
            'items': items,
            'medicines': load_medicines(db),
            'customers': load_customers(db),
            'statuses': list(PrescriptionStatus),
            'error': error,
        },
        status_code=status_code,
    )


def _get_prescription(db: Session, prescription_id: uuid.UUID) -> Prescription:
    prescription = db.get(Prescription, prescription_id)
    if prescription is None:
        raise HTTPException(status_code=404, detail='Prescription not found')
    return prescription


async def _save(
    request: Request,
    user: AuthorizedUser,
    store: SqlDataStore,
    prescription: Prescription | None,
):
    form = await request.form()
    rows = _item_rows_from_form(form)
    try:
        data = parse_form(PrescriptionForm, form)
        header = PrescriptionHeader(
            doctor_name=data.doctor_name,
            prescription_date=data.prescription_date,
            customer_id=data.customer_id,
            status=data.status,
            notes=data.notes,
        )
        saved = save_prescription(
            store,
            header,
            _parse_items(load_medicines(store.db), rows),
            prescription_id=prescription.id if prescription else None,
            actor_id=user.id,
        )
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _form_page(
            request,
            store.db,
            prescription=prescription,
            values=dict(form),
            items=rows,
            error=str(exc),
            status_code=getattr(exc, 'status_code', 400),
        )

    record_audit(
        request,
        store.db,
        user.id,
        'PRESCRIPTION_UPDATED' if prescription else 'PRESCRIPTION_CREATED',
        {'prescription_id': saved.id, 'items': len(rows)},
    )
    return RedirectResponse('/prescriptions', status_code=303)


@router.get('/new')
def new_prescription_page(
    request: Request,
    _: AuthorizedUser = Depends(prescriptions_access),
    db: Session = Depends(get_db),
):
    return _form_page(request, db, prescription=None, values={'status': PrescriptionStatus.ACTIVE.value}, items=[])


@router.post('/new')
async def new_prescription_submit(
    request: Request,
    user: AuthorizedUser = Depends(prescriptions_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    return await _save(request, user, store, None)


@router.get('/{prescription_id}/edit')
def edit_prescription_page(
    prescription_id: uuid.UUID,
    request: Request,
    _: AuthorizedUser = Depends(prescriptions_access),
    store: SqlDataStore = Depends(get_data_store),
):
    prescription = _get_prescription(store.db, prescription_id)
    items = store.select(
        PrescriptionItem,
        PrescriptionItem.prescription_id == prescription_id,
        order_by=(PrescriptionItem.position.asc(),),
    )
    values = {
        'customer_id': str(prescription.customer_id) if prescription.customer_id else '',
        'doctor_name': prescription.doctor_name,
        'prescription_date': prescription.prescription_date.isoformat(),
        'status': prescription.status,
        'notes': prescription.notes or '',
    }
    item_rows = [
        {
            'medicine_id': str(item.medicine_id),
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'dosage': item.dosage or '',
            'instructions': item.instructions or '',
        }
        for item in items
    ]
    return _form_page(request, store.db, prescription=prescription, values=values, items=item_rows)


@router.post('/{prescription_id}/edit')
async def edit_prescription_submit(
    prescription_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(prescriptions_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    prescription = _get_prescription(store.db, prescription_id)
    return await _save(request, user, store, prescription)


@router.post('/{prescription_id}/status')
async def prescription_status_submit(
    prescription_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(prescriptions_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        status = PrescriptionStatus(str(form.get('status', '')).strip())
        set_status(store, prescription_id, status)
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return RedirectResponse(f'/prescriptions?{urlencode({"error": str(exc)})}', status_code=303)

    record_audit(request, store.db, user.id, 'PRESCRIPTION_STATUS_CHANGED', {'prescription_id': prescription_id, 'status': status.value})
    return RedirectResponse('/prescriptions', status_code=303)
