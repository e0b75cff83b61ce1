from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import AuthorizedUser
from app.db import get_db
from app.dependencies import business_today, render
from app.security.route_guard import guard
from app.services.live_query import matches_query
from app.services.sales_service import (
    INVOICE_SEARCH_FIELDS,
    SALE_SEARCH_FIELDS,
    load_invoices,
    load_sales,
    sales_totals,
)

router = APIRouter(tags=['sales'])


@router.get('/sales')
def sales_page(
    request: Request,
    _: AuthorizedUser = Depends(guard('/sales')),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    sales = load_sales(db)
    return render(
        request,
        'sales.html',
        {
            'rows': [sale for sale in sales if matches_query(sale, SALE_SEARCH_FIELDS, query)],
            'totals': sales_totals(sales, today=business_today()),
            'query': query,
            'live_screen': 'sales',
        },
    )


@router.get('/invoices')
def invoices_page(
    request: Request,
    _: AuthorizedUser = Depends(guard('/invoices')),
    db: Session = Depends(get_db),
):
    query = request.query_params.get('q', '').strip()
    invoices = load_invoices(db)
    return render(
        request,
        'invoices.html',
        {
            'rows': [invoice for invoice in invoices if matches_query(invoice, INVOICE_SEARCH_FIELDS, query)],
            'query': query,
            'live_screen': 'invoices',
        },
    )
