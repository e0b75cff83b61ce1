from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import AuthorizedUser
from app.config import settings
from app.db import get_db
from app.dependencies import business_today, get_data_store, record_audit, render
from app.errors import PharmacyError
from app.models import TransactionType
from app.schemas import InventoryTransactionForm, parse_form
from app.security.csrf import verify_csrf
from app.security.route_guard import guard
from app.services.catalog_service import MEDICINE_SEARCH_FIELDS, load_medicines
from app.services.data_store import SqlDataStore
from app.services.inventory_service import (
    FILTER_ALL,
    INVENTORY_FILTERS,
    TransactionRequest,
    filter_inventory,
    load_recent_transactions,
    record_inventory_transaction,
    summarize_inventory,
)
from app.services.live_query import matches_query

router = APIRouter(prefix='/inventory', tags=['inventory'])
inventory_access = guard('/inventory')


def _inventory_page(
    request: Request,
    db: Session,
    *,
    mode: str = FILTER_ALL,
    query: str = '',
    error: str | None = None,
    values: dict | None = None,
    status_code: int = 200,
):
    today = business_today()
    medicines = load_medicines(db)
    rows = filter_inventory(medicines, mode, today=today, within_days=settings.inventory_expiry_days)
    return render(
        request,
        'inventory.html',
        {
            'rows': [medicine for medicine in rows if matches_query(medicine, MEDICINE_SEARCH_FIELDS, query)],
            'medicines': medicines,
            'summary': summarize_inventory(medicines, today=today, within_days=settings.inventory_expiry_days),
            'transactions': load_recent_transactions(db, limit=settings.recent_transactions_limit),
            'filters': INVENTORY_FILTERS,
            'mode': mode,
            'query': query,
            'transaction_types': list(TransactionType),
            'error': error,
            'values': values or {},
            'notice': request.query_params.get('notice'),
            'live_screen': 'inventory',
        },
        status_code=status_code,
    )


@router.get('')
def inventory_page(
    request: Request,
    _: AuthorizedUser = Depends(inventory_access),
    db: Session = Depends(get_db),
):
    mode = request.query_params.get('filter', FILTER_ALL)
    if mode not in INVENTORY_FILTERS:
        mode = FILTER_ALL
    return _inventory_page(request, db, mode=mode, query=request.query_params.get('q', '').strip())


@router.post('/transactions')
async def record_transaction_submit(
    request: Request,
    user: AuthorizedUser = Depends(inventory_access),
    store: SqlDataStore = Depends(get_data_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        data = parse_form(InventoryTransactionForm, form)
        transaction = record_inventory_transaction(
            store,
            load_medicines(store.db),
            TransactionRequest(
                medicine_id=data.medicine_id,
                quantity=data.quantity,
                unit_price=data.unit_price,
                transaction_type=data.transaction_type,
                reference_number=data.reference_number,
                notes=data.notes,
            ),
            actor_id=user.id,
        )
    except (ValueError, PharmacyError) as exc:
        store.db.rollback()
        return _inventory_page(
            request,
            store.db,
            error=str(exc),
            values=dict(form),
            status_code=getattr(exc, 'status_code', 400),
        )

    record_audit(
        request,
        store.db,
        user.id,
        'INVENTORY_TRANSACTION_RECORDED',
        {
            'transaction_id': transaction.id,
            'medicine_id': transaction.medicine_id,
            'transaction_type': transaction.transaction_type,
            'quantity': transaction.quantity,
        },
    )
    return RedirectResponse('/inventory?notice=Transaction+recorded', status_code=303)
