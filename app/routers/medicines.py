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
from app.models import Medicine
from app.schemas import MedicineForm, parse_form
from app.security.csrf import verify_csrf
from app.security.route_guard import guard
from app.services.catalog_service import (
    MEDICINE_SEARCH_FIELDS,
    create_medicine,
    delete_medicine,
    filter_by_category,
    list_categories,
    load_medicines,
    sort_medicines,
    update_medicine,
)
from app.services.data_store import SqlDataStore
from app.services.live_query import matches_query

router = APIRouter(prefix='/medicines', tags=['medicines'])
medicines_access = guard('/medicines')


@router.get('')
def medicines_page(
    request: Request,
    _: AuthorizedUser = Depends(medicines_access),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    category = request.query_params.get('category', 'all').strip() or 'all'
    sort_field = request.query_params.get('sort', 'name')
    direction = 'desc' if request.query_params.get('dir') == 'desc' else 'asc'

    medicines = load_medicines(db)
    rows = [medicine for medicine in filter_by_category(medicines, category) if matches_query(medicine, MEDICINE_SEARCH_FIELDS, query)]
    return render(
        request,
        'medicines.html',
        {
            'rows': sort_medicines(rows, sort_field, direction),
            'categories': list_categories(medicines),
            'query': query,
            'category': category,
            'sort': sort_field,
            'direction': direction,
            'error': request.query_params.get('error'),
            'live_screen': 'medicines',
        },
    )


def _form_page(request: Request, medicine: Medicine | None, values: dict, error: str | None, status_code: int = 200):
    return render(
        request,
        'medicine_form.html',
        {'medicine': medicine, 'values': values, 'error': error},
        status_code=status_code,
    )


def _medicine_values(medicine: Medicine) -> dict:
    return {
        'name': medicine.name,
        'generic_name': medicine.generic_name or '',
        'category': medicine.category or '',
        'manufacturer': medicine.manufacturer or '',
        'description': medicine.description or '',
        'stock_quantity': medicine.stock_quantity,
        'reorder_level': medicine.reorder_level,
        'unit_price': medicine.unit_price,
        'expiry_date': medicine.expiry_date.isoformat() if medicine.expiry_date else '',
    }


def _get_medicine(db: Session, medicine_id: uuid.UUID) -> Medicine:
    medicine = db.get(Medicine, medicine_id)
    if medicine is None:
        raise HTTPException(status_code=404, detail='Medicine not found')
    return medicine


@router.get('/new')
def new_medicine_page(request: Request, _: AuthorizedUser = Depends(medicines_access)):
    return _form_page(request, None, {'reorder_level': 10, 'stock_quantity': 0}, None)


@router.post('/new')
async def new_medicine_submit(
    request: Request,
    user: AuthorizedUser = Depends(medicines_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        medicine = create_medicine(store, parse_form(MedicineForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _form_page(request, None, dict(form), str(exc), status_code=getattr(exc, 'status_code', 400))

    record_audit(request, store.db, user.id, 'MEDICINE_CREATED', {'medicine_id': medicine.id, 'name': medicine.name})
    return RedirectResponse('/medicines', status_code=303)


@router.get('/{medicine_id}/edit')
def edit_medicine_page(
    medicine_id: uuid.UUID,
    request: Request,
    _: AuthorizedUser = Depends(medicines_access),
    db: Session = Depends(get_db),
):
    medicine = _get_medicine(db, medicine_id)
    return _form_page(request, medicine, _medicine_values(medicine), None)


@router.post('/{medicine_id}/edit')
async def edit_medicine_submit(
    medicine_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(medicines_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    medicine = _get_medicine(store.db, medicine_id)
    form = await request.form()
    try:
        update_medicine(store, medicine_id, parse_form(MedicineForm, form))
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _form_page(request, medicine, dict(form), str(exc), status_code=getattr(exc, 'status_code', 400))

    record_audit(request, store.db, user.id, 'MEDICINE_UPDATED', {'medicine_id': medicine_id})
    return RedirectResponse('/medicines', status_code=303)


@router.post('/{medicine_id}/delete')
def delete_medicine_submit(
    medicine_id: uuid.UUID,
    request: Request,
    user: AuthorizedUser = Depends(medicines_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    try:
        delete_medicine(store, medicine_id)
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return RedirectResponse(f'/medicines?{urlencode({"error": str(exc)})}', status_code=303)

    record_audit(request, store.db, user.id, 'MEDICINE_DELETED', {'medicine_id': medicine_id})
    return RedirectResponse('/medicines', status_code=303)
