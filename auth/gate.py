"""
auth/gate.py -- Session gate: admit a request or redirect it to sign-in.

For every request whose path matches the static matcher list, the gate asks
the injected SessionProvider for a session:
  - session resolved  -> pass through, request untouched
  - no session        -> 307 redirect to the sign-in path on the request's
                         own scheme and host
Requests on unmatched paths never reach the provider.

The provider is either passed to the middleware directly or, when omitted,
read from app.state.session_provider at request time (set by the lifespan).

A provider that raises is not turned into a redirect. The exception
propagates to the app's catch-all handler and becomes a 500.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from urllib.parse import urljoin

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from auth.provider import SessionProvider

logger = logging.getLogger("authgate.gate")


def path_matches(path: str, patterns: Iterable[str]) -> bool:
    """True if path equals a pattern, or starts with a pattern's prefix ending in "*"."""
    for pattern in patterns:
        if pattern.endswith("*"):
            if path.startswith(pattern[:-1]):
                return True
        elif path == pattern:
            return True
    return False


def sign_in_url(request: Request, sign_in_path: str) -> str:
    """Resolve the sign-in path against the request URL (query dropped)."""
    return urljoin(str(request.url), sign_in_path)


class SessionGateMiddleware(BaseHTTPMiddleware):
    """Redirect requests on gated paths that carry no valid session.

    Usage:
        app.add_middleware(SessionGateMiddleware, matcher=["/"], sign_in_path="/sign-in")
    """

    def __init__(
        self,
        app: ASGIApp,
        matcher: Sequence[str] = ("/",),
        sign_in_path: str = "/sign-in",
        provider: SessionProvider | None = None,
    ) -> None:
        super().__init__(app)
        self.matcher = tuple(matcher)
        self.sign_in_path = sign_in_path
        self.provider = provider

    def _provider_for(self, request: Request) -> SessionProvider:
        if self.provider is not None:
            return self.provider
        return request.app.state.session_provider

    async def check(self, request: Request) -> RedirectResponse | None:
        """Return a redirect if the request must sign in first, None to admit it."""
        session = await self._provider_for(request).get_session(request.headers)
        if session is None:
            target = sign_in_url(request, self.sign_in_path)
            logger.debug("No session for %s, redirecting to %s", request.url.path, target)
            return RedirectResponse(target, status_code=307)
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not path_matches(request.url.path, self.matcher):
            return await call_next(request)
        if redirect := await self.check(request):
            return redirect
        return await call_next(request)
