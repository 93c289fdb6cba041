"""
auth/dependencies.py -- FastAPI Depends() helpers for session lookup.

try_get_session() goes through app.state.session_provider, the same provider
the session gate uses, so a page behind the gate and the route rendering it
agree on who is signed in.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import SessionData
from auth.provider import SessionProvider


def get_session_provider(request: Request) -> SessionProvider:
    return request.app.state.session_provider


async def try_get_session(request: Request) -> SessionData | None:
    """Resolve the caller's session, or None."""
    return await get_session_provider(request).get_session(request.headers)
