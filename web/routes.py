"""
web/routes.py -- Jinja2 template routes for the authgate web pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same session provider) but return HTML instead of JSON.

Routes:
  GET /          -- home page (behind the session gate)
  GET /sign-in   -- sign-in / sign-up forms (public)

The session gate, not this module, keeps unauthenticated callers off "/".
The home handler still resolves the session itself to render the user name.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_session
from auth.gate import sign_in_url
from core.config import get_settings

logger = logging.getLogger("authgate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_settings = get_settings()

# Whitelist mapping for ?error= query params on /sign-in.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "invalid_email_or_password": "Invalid email or password.",
    "user_already_exists": "An account with that email already exists.",
}


@router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    data = await try_get_session(request)
    if data is None:
        # Reached only if "/" was removed from GATED_PATHS.
        return RedirectResponse(sign_in_url(request, _settings.sign_in_path), status_code=307)
    return templates.TemplateResponse(
        request,
        "home.html",
        {"user": data.user, "session": data.session, "app_name": _settings.app_name},
    )


@router.get("/sign-in", response_class=HTMLResponse)
async def sign_in_page(request: Request, error: Optional[str] = None):
    """Render the sign-in and sign-up forms. Signed-in users go straight home."""
    if await try_get_session(request) is not None:
        return RedirectResponse("/", status_code=303)
    return templates.TemplateResponse(
        request,
        "sign_in.html",
        {"error": _ERROR_MESSAGES.get(error or ""), "app_name": _settings.app_name},
    )
