from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import AuthorizedUser, parse_role
from app.config import settings
from app.db import get_db
from app.dependencies import business_today, render
from app.models import AuthUser, Profile
from app.security.route_guard import guard
from app.services.dashboard_service import load_dashboard
from app.services.report_service import REPORT_RANGES, load_report

router = APIRouter(tags=['overview'])


@router.get('/dashboard')
def dashboard_page(
    request: Request,
    _: AuthorizedUser = Depends(guard('/dashboard')),
    db: Session = Depends(get_db),
):
    stats, activity = load_dashboard(
        db,
        today=business_today(),
        within_days=settings.dashboard_expiry_days,
    )
    return render(request, 'dashboard.html', {'stats': stats, 'activity': activity})


@router.get('/reports')
def reports_page(
    request: Request,
    _: AuthorizedUser = Depends(guard('/reports')),
    db: Session = Depends(get_db),
):
    days_raw = request.query_params.get('days', '').strip()
    days = int(days_raw) if days_raw.isdigit() else None
    report = load_report(db, today=business_today(), days=days)
    return render(request, 'reports.html', {'report': report, 'ranges': REPORT_RANGES})


@router.get('/settings')
def settings_page(
    request: Request,
    _: AuthorizedUser = Depends(guard('/settings')),
    db: Session = Depends(get_db),
):
    rows = db.execute(
        select(AuthUser.email, AuthUser.active, Profile.full_name, Profile.role)
        .outerjoin(Profile, Profile.id == AuthUser.id)
        .order_by(AuthUser.email.asc())
    ).all()
    accounts = [
        {
            'email': row.email,
            'active': row.active,
            'full_name': row.full_name,
            'role': parse_role(row.role),
            'raw_role': row.role,
        }
        for row in rows
    ]
    return render(
        request,
        'settings.html',
        {
            'accounts': accounts,
            'signup_enabled': settings.signup_enabled,
            'signup_roles': settings.signup_roles,
            'atomic_writes': settings.atomic_writes,
            'session_ttl_minutes': settings.session_ttl_minutes,
        },
    )
