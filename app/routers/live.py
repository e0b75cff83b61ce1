from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.db import SessionLocal
from app.navigation import lookup
from app.security.route_guard import GuardOutcome, evaluate_access, get_session_store
from app.services.change_feed import get_change_feed
from app.services.screen_queries import get_screen, open_screen

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/live', tags=['live'])


def sse_message(event: str, payload: str) -> str:
    lines = payload.splitlines() or ['']
    return f'event: {event}\n' + ''.join(f'data: {line}\n' for line in lines) + '\n'


@router.get('/{screen_name}')
async def live_rows(
    screen_name: str,
    request: Request,
    store=Depends(get_session_store),
):
    """Stream re-rendered table rows for a screen whenever its tables change."""
    screen = get_screen(screen_name)
    if screen is None:
        raise HTTPException(status_code=404, detail='Unknown screen')
    decision = evaluate_access(store, lookup(screen.nav_path).policy)
    if decision.outcome != GuardOutcome.RENDER:
        raise HTTPException(status_code=403, detail='Not allowed')

    query = request.query_params.get('q', '')
    template = request.app.state.templates.get_template(screen.row_template)
    cache = open_screen(screen, session_factory=SessionLocal, feed=get_change_feed())
    cache.subscribe()

    async def _events():
        try:
            async for _ in cache.listen():
                html = template.render(request=request, rows=cache.local_filter(query))
                yield sse_message('rows', html)
        finally:
            cache.teardown()
            logger.debug('Live stream for %s closed', screen.name)

    return StreamingResponse(
        _events(),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
