"""
tests/fakes.py -- Injectable SessionProvider doubles for gate tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone

from starlette.requests import cookie_parser

from auth.models import Session, SessionData, User


def make_session_data(name: str = "Ada", email: str = "ada@example.com") -> SessionData:
    now = datetime.now(timezone.utc).isoformat()
    user = User(id=str(uuid.uuid4()), name=name, email=email, created_at=now, updated_at=now)
    session = Session(
        id=str(uuid.uuid4()),
        user_id=user.id,
        token_hash="0" * 64,
        expires_at="2999-01-01T00:00:00+00:00",
        created_at=now,
        updated_at=now,
    )
    return SessionData(session=session, user=user)


class StaticSessionProvider:
    """Resolves the `session` cookie against a fixed token table. Counts calls."""

    def __init__(self, tokens: dict[str, SessionData] | None = None) -> None:
        self.tokens = tokens or {}
        self.calls = 0

    async def get_session(self, headers: Mapping[str, str]) -> SessionData | None:
        self.calls += 1
        token = cookie_parser(headers.get("cookie", "")).get("session")
        return self.tokens.get(token) if token else None


class FailingProvider:
    """Provider whose backend is down."""

    async def get_session(self, headers: Mapping[str, str]) -> SessionData | None:
        raise ConnectionError("session backend unreachable")
