"""
api/routes/auth.py -- Catch-all auth endpoints.

Routes (all under GET/POST /api/auth/{path}):
  POST sign-up/email  -- create user + credential account, start a session
  POST sign-in/email  -- password sign-in, start a session
  POST sign-out       -- end the session, clear cookies
  GET  get-session    -- current session or null; refreshes the cache cookie
  GET  ok             -- liveness of the auth handler

Bodies may be JSON or form-encoded. A form post (the /sign-in page) is
answered with a 303 redirect: to callbackURL on success, back to the sign-in
page with ?error=<code> on failure. JSON callers get JSON.

Security:
  Every auth endpoint shares one rate limit (RATE_LIMIT_MAX per
  RATE_LIMIT_WINDOW seconds per client address).
  Sign-in uses timing-equalized password checks (StoreSessionProvider.sign_in).
  Cache-Control: no-store on every response that sets or clears cookies.
  callbackURL is accepted only as a server-local path (open-redirect guard).
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import SessionResponse, SignInRequest, SignUpRequest
from auth.provider import AuthError, StoreSessionProvider
from auth.tokens import clear_session_cookies, set_session_cache_cookie, set_session_cookies
from core.config import get_settings

logger = logging.getLogger("authgate.api.auth")

_settings = get_settings()

router = APIRouter()

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_callback(callback_url: Optional[str]) -> str:
    """Only accept relative, server-local paths as post-auth destinations."""
    if callback_url and callback_url.startswith("/") and not callback_url.startswith("//"):
        return callback_url
    return "/"


def _is_form(request: Request) -> bool:
    return request.headers.get("content-type", "").startswith(_FORM_TYPES)


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel:
    """Validate a JSON or form body against model. Raises HTTP 422 on bad input."""
    try:
        if _is_form(request):
            raw = dict(await request.form())
        else:
            raw = await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "validation_error", "message": "Request body must be JSON or a form."},
        ) from exc
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "validation_error",
                "message": "Request validation failed.",
                "detail": str(exc.errors(include_url=False)),
            },
        ) from exc


def _provider(request: Request) -> StoreSessionProvider:
    return request.app.state.session_provider


def _client_info(request: Request) -> tuple[Optional[str], Optional[str]]:
    host = request.client.host if request.client else None
    return host, request.headers.get("user-agent")


def _no_store(response: Response) -> Response:
    response.headers["Cache-Control"] = "no-store"
    return response


def _auth_failure(request: Request, exc: AuthError) -> Response:
    if _is_form(request):
        query = urlencode({"error": exc.code})
        return _no_store(RedirectResponse(f"{_settings.sign_in_path}?{query}", status_code=303))
    return _no_store(
        JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )
    )


# ---------------------------------------------------------------------------
# Endpoint implementations
# ---------------------------------------------------------------------------


async def _sign_up(request: Request) -> Response:
    body: SignUpRequest = await _parse_body(request, SignUpRequest)
    ip, agent = _client_info(request)
    try:
        data, token = await run_in_threadpool(
            _provider(request).sign_up, body.name, body.email, body.password, ip, agent
        )
    except AuthError as exc:
        logger.info("Sign-up rejected (%s)", exc.code)
        return _auth_failure(request, exc)

    if _is_form(request):
        resp: Response = RedirectResponse(_safe_callback(body.callback_url), status_code=303)
    else:
        resp = JSONResponse(status_code=200, content=SessionResponse.from_data(data).model_dump())
    set_session_cookies(resp, token, data, _settings)
    return _no_store(resp)


async def _sign_in(request: Request) -> Response:
    body: SignInRequest = await _parse_body(request, SignInRequest)
    ip, agent = _client_info(request)
    try:
        data, token = await run_in_threadpool(_provider(request).sign_in, body.email, body.password, ip, agent)
    except AuthError as exc:
        logger.info("Sign-in rejected (%s)", exc.code)
        return _auth_failure(request, exc)

    if _is_form(request):
        resp: Response = RedirectResponse(_safe_callback(body.callback_url), status_code=303)
    else:
        resp = JSONResponse(status_code=200, content=SessionResponse.from_data(data).model_dump())
    set_session_cookies(resp, token, data, _settings)
    return _no_store(resp)


async def _sign_out(request: Request) -> Response:
    await run_in_threadpool(_provider(request).sign_out, request.headers)
    if _is_form(request):
        resp: Response = RedirectResponse(_settings.sign_in_path, status_code=303)
    else:
        resp = JSONResponse(content={"success": True})
    clear_session_cookies(resp, _settings)
    return _no_store(resp)


async def _get_session(request: Request) -> Response:
    provider = _provider(request)
    data = await provider.get_session(request.headers)
    if data is None:
        return _no_store(JSONResponse(content=None))
    data = await run_in_threadpool(provider.refresh, data)
    if data is None:
        resp = JSONResponse(content=None)
        clear_session_cookies(resp, _settings)
        return _no_store(resp)
    resp = JSONResponse(content=SessionResponse.from_data(data).model_dump())
    if _settings.cookie_cache_enabled:
        set_session_cache_cookie(resp, data, _settings)
    return _no_store(resp)


async def _ok(request: Request) -> Response:
    return JSONResponse(content={"ok": True})


_Endpoint = Callable[[Request], Awaitable[Response]]

_ENDPOINTS: dict[tuple[str, str], _Endpoint] = {
    ("POST", "sign-up/email"): _sign_up,
    ("POST", "sign-in/email"): _sign_in,
    ("POST", "sign-out"): _sign_out,
    ("GET", "get-session"): _get_session,
    ("GET", "ok"): _ok,
}


# ---------------------------------------------------------------------------
# Catch-all route
# ---------------------------------------------------------------------------


# slowapi only enforces limits through its own wrapper, so @limiter.limit must
# sit BELOW the route decorator: the router has to register the wrapped function.
@router.api_route("/auth/{path:path}", methods=["GET", "POST"], include_in_schema=False)
@limiter.limit(_settings.rate_limit)
async def auth_handler(request: Request, path: str) -> Response:
    """Dispatch GET/POST /api/auth/{path} to the matching endpoint."""
    endpoint = _ENDPOINTS.get((request.method, path.strip("/")))
    if endpoint is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Unknown auth endpoint: {path}"},
        )
    return await endpoint(request)
