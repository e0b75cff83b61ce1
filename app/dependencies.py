from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.navigation import sidebar_links
from app.services.audit_service import log_audit
from app.services.change_feed import get_change_feed
from app.services.data_store import SqlDataStore


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def business_today() -> date:
    """The calendar day used for "today" figures and expiry windows, in UTC."""
    return datetime.now(timezone.utc).date()


def get_data_store(db: Session = Depends(get_db)) -> SqlDataStore:
    return SqlDataStore(db, get_change_feed(), supports_transactions=settings.atomic_writes)


def render(request: Request, template: str, context: dict | None = None, *, status_code: int = 200):
    """Render a page inside the signed-in layout."""
    store = getattr(request.state, 'session_store', None)
    user = store.user if store is not None else None
    page = {
        'user': user,
        'sidebar': sidebar_links(user, request.url.path),
        **(context or {}),
    }
    return request.app.state.templates.TemplateResponse(request, template, page, status_code=status_code)


def record_audit(request: Request, db: Session, actor_id, action: str, metadata: dict | None = None) -> None:
    log_audit(db, actor_id=actor_id, action=action, ip=get_client_ip(request), metadata=metadata)
    db.commit()
