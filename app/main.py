import logging
from decimal import Decimal
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.dependencies import render
from app.navigation import home_path_for
from app.routers import auth, directory, inventory, live, medicines, overview, prescriptions, sales
from app.security.csrf import install_csrf_cookie_middleware
from app.security.headers import install_security_headers
from app.security.route_guard import GuardInterrupt, GuardOutcome, get_session_store
from app.security.sessions import install_auth_session_middleware
from app.services.inventory_service import stock_status
from app.services.sales_service import payment_status_label

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(title='PharmSync')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


def _money(value) -> str:
    return f'${Decimal(value or 0):,.2f}'


app.state.templates.env.globals['csrf_token'] = _csrf_token
app.state.templates.env.globals['stock_status'] = stock_status
app.state.templates.env.globals['payment_status_label'] = payment_status_label
app.state.templates.env.filters['money'] = _money

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(overview.router)
app.include_router(medicines.router)
app.include_router(inventory.router)
app.include_router(prescriptions.router)
app.include_router(directory.router)
app.include_router(sales.router)
app.include_router(live.router)


@app.exception_handler(GuardInterrupt)
async def guard_interrupt_handler(request: Request, exc: GuardInterrupt):
    if exc.decision.outcome == GuardOutcome.LOADING:
        return render(request, 'loading.html', status_code=503)
    logger.debug('Guard sent %s to %s', request.url.path, exc.decision.location)
    return RedirectResponse(exc.decision.location, status_code=303)


@app.exception_handler(StarletteHTTPException)
async def not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and request.method == 'GET':
        return render(request, 'not_found.html', {'detail': exc.detail}, status_code=404)
    return await http_exception_handler(request, exc)


@app.get('/')
def root(request: Request):
    store = get_session_store(request)
    if store.user is None:
        return RedirectResponse('/login', status_code=303)
    return RedirectResponse(home_path_for(store.user, settings.home_path), status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
