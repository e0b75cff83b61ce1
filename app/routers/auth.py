from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from app.auth import DEMO_ACCOUNTS
from app.config import settings
from app.dependencies import render
from app.errors import AuthFailure
from app.schemas import LoginForm, SignupForm, parse_form
from app.security.csrf import verify_csrf
from app.security.route_guard import get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])


def _signed_in_response(request: Request) -> RedirectResponse:
    response = RedirectResponse('/', status_code=303)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=request.state.auth_client.token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


def _login_context(email: str = '', error: str | None = None) -> dict:
    return {
        'email': email,
        'error': error,
        'signup_enabled': settings.signup_enabled,
        'demo_accounts': DEMO_ACCOUNTS if settings.demo_accounts_enabled else (),
    }


def _require_signup_enabled() -> None:
    if not settings.signup_enabled:
        raise HTTPException(status_code=404, detail='Not found')


@router.get('/login')
def login_page(request: Request, store=Depends(get_session_store)):
    if store.user is not None:
        return RedirectResponse('/', status_code=303)
    return render(request, 'login.html', _login_context())


@router.post('/login')
async def login_submit(
    request: Request,
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    email = str(form.get('email', '')).strip()
    try:
        data = parse_form(LoginForm, form)
    except ValueError as exc:
        return render(request, 'login.html', _login_context(email, str(exc)), status_code=400)

    try:
        await request.state.auth_client.sign_in(data.email, data.password)
    except AuthFailure as exc:
        return render(request, 'login.html', _login_context(email, exc.user_message), status_code=exc.status_code)
    return _signed_in_response(request)


@router.get('/signup')
def signup_page(
    request: Request,
    store=Depends(get_session_store),
    __: None = Depends(_require_signup_enabled),
):
    if store.user is not None:
        return RedirectResponse('/', status_code=303)
    return render(request, 'signup.html', {'error': None, 'form': {}, 'roles': settings.signup_roles})


@router.post('/signup')
async def signup_submit(
    request: Request,
    _: None = Depends(verify_csrf),
    __: None = Depends(_require_signup_enabled),
):
    form = await request.form()
    context = {
        'form': {'full_name': form.get('full_name', ''), 'email': form.get('email', ''), 'role': form.get('role', '')},
        'roles': settings.signup_roles,
    }
    try:
        data = parse_form(SignupForm, form)
        if data.role.value not in settings.signup_roles:
            raise ValueError('This role cannot be chosen at sign-up')
    except ValueError as exc:
        return render(request, 'signup.html', {**context, 'error': str(exc)}, status_code=400)

    try:
        await request.state.auth_client.sign_up(data.email, data.password, full_name=data.full_name, role=data.role)
    except AuthFailure as exc:
        return render(request, 'signup.html', {**context, 'error': exc.user_message}, status_code=exc.status_code)
    logger.info('New %s account registered', data.role.value)
    return _signed_in_response(request)


@router.post('/logout')
async def logout(
    store=Depends(get_session_store),
    _: None = Depends(verify_csrf),
):
    await store.logout()
    response = RedirectResponse('/login', status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response
