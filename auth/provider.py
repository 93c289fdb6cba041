"""
auth/provider.py -- Session Provider capability and its store-backed implementation.

SessionProvider is the only thing the session gate knows about: given the
request headers, resolve a SessionData or None. Anything that satisfies the
protocol can be injected (tests use a static token table).

StoreSessionProvider resolves sessions from the session token cookie:
  1. No token cookie                       -> None
  2. Valid cache cookie bound to the token -> SessionData, no DB round-trip
  3. Token hash found and not expired      -> SessionData from the store
  4. Otherwise                             -> None

Lookups never mutate anything. Expired rows are left for the purge task;
cache refresh and expiry extension happen in refresh(), which only the
get-session endpoint calls.

It also carries the account operations the auth handler exposes: sign_up,
sign_in and sign_out.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool
from starlette.requests import cookie_parser

from auth.models import Account, Session, SessionData, User
from auth.store import UserStore
from auth.tokens import (
    DUMMY_HASH,
    decode_session_cache,
    generate_session_token,
    hash_password,
    hash_session_token,
    is_expired,
    password_too_long,
    session_expiry,
    verify_password,
)
from core.config import Settings

logger = logging.getLogger("authgate.auth")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for expected sign-up / sign-in failures.

    code is a stable machine-readable identifier; the handler turns it into
    the error envelope.
    """

    code = "auth_error"
    status_code = 400
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class UserAlreadyExists(AuthError):
    code = "user_already_exists"
    status_code = 422
    message = "A user with that email already exists."


class InvalidCredentials(AuthError):
    code = "invalid_email_or_password"
    status_code = 401
    message = "Invalid email or password."


class PasswordTooLong(AuthError):
    code = "password_too_long"
    status_code = 422
    message = "Password must be at most 72 bytes."


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------


@runtime_checkable
class SessionProvider(Protocol):
    async def get_session(self, headers: Mapping[str, str]) -> SessionData | None: ...


# ---------------------------------------------------------------------------
# Store-backed provider
# ---------------------------------------------------------------------------


class StoreSessionProvider:
    """Session provider backed by UserStore.

    Usage:
        provider = StoreSessionProvider(UserStore(url), get_settings())
        data, token = provider.sign_up("Ada", "ada@example.com", "correct horse")
        session = await provider.get_session(request.headers)
    """

    def __init__(self, store: UserStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def session_token(self, headers: Mapping[str, str]) -> str | None:
        cookies = cookie_parser(headers.get("cookie", ""))
        return cookies.get(self.settings.session_cookie_name) or None

    def resolve_session(self, headers: Mapping[str, str]) -> SessionData | None:
        """Blocking lookup. Safe to call from sync route handlers."""
        cookies = cookie_parser(headers.get("cookie", ""))
        raw_token = cookies.get(self.settings.session_cookie_name)
        if not raw_token:
            return None
        token_hash = hash_session_token(raw_token, self.settings.secret_key)

        if self.settings.cookie_cache_enabled:
            cached = cookies.get(self.settings.session_data_cookie_name)
            if cached:
                data = decode_session_cache(cached, token_hash, self.settings)
                if data is not None:
                    return data

        session = self.store.get_session_by_token_hash(token_hash)
        if session is None or is_expired(session.expires_at):
            return None
        user = self.store.get_by_id(session.user_id)
        if user is None:
            logger.warning("Session %s references missing user %s", session.id, session.user_id)
            return None
        return SessionData(session=session, user=user)

    async def get_session(self, headers: Mapping[str, str]) -> SessionData | None:
        """SessionProvider entry point. The DB lookup runs on the threadpool."""
        return await run_in_threadpool(self.resolve_session, headers)

    # ------------------------------------------------------------------
    # Account operations
    # ------------------------------------------------------------------

    def sign_up(
        self,
        name: str,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[SessionData, str]:
        """Create a user with a credential account and sign them in.

        Returns (session data, raw session token). Raises PasswordTooLong
        before anything is written, and UserAlreadyExists when the store
        reports a uniqueness violation on email. The user and its credential
        account are written together or not at all.
        """
        if password_too_long(password):
            raise PasswordTooLong()
        password_hash = hash_password(password)
        email = email.strip().lower()
        try:
            user_id = self.store.create_user_with_account(
                User(name=name, email=email),
                Account(user_id="", provider_id="credential", account_id="", password_hash=password_hash),
            )
        except IntegrityError as exc:
            raise UserAlreadyExists() from exc
        logger.info("User %s signed up", user_id)
        return self._start_session(user_id, ip_address, user_agent)

    def sign_in(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[SessionData, str]:
        """Verify email + password and start a session.

        Always runs bcrypt whether or not the email exists, so an unknown email
        costs the same as a wrong password. Raises InvalidCredentials for both.
        """
        user = self.store.get_by_email(email.strip().lower())
        account = self.store.get_credential_account(user.id) if user is not None else None
        if account is None or account.password_hash is None:
            verify_password(password, DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, account.password_hash):
            raise InvalidCredentials()
        return self._start_session(user.id, ip_address, user_agent)

    def sign_out(self, headers: Mapping[str, str]) -> bool:
        """Delete the caller's session. Returns False if there was none."""
        raw_token = self.session_token(headers)
        if raw_token is None:
            return False
        return self.store.delete_session(hash_session_token(raw_token, self.settings.secret_key))

    def refresh(self, data: SessionData) -> SessionData | None:
        """Push the expiry forward once the session is older than the update age.

        Returns the (possibly updated) session data, or None when the session
        row no longer exists (signed out elsewhere, or purged).
        """
        now = datetime.now(timezone.utc)
        last_update = _parse_iso(data.session.updated_at) or _parse_iso(data.session.created_at)
        if last_update is None:
            return data
        if now - last_update < timedelta(seconds=self.settings.session_update_age_seconds):
            return data
        expires_at = session_expiry(self.settings, now)
        if not self.store.extend_session(data.session.id, expires_at):
            logger.info("Session %s is gone; not refreshing", data.session.id)
            return None
        data.session.expires_at = expires_at
        data.session.updated_at = now.isoformat()
        return data

    def purge_expired(self) -> int:
        removed = self.store.delete_expired_sessions()
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed

    def _start_session(
        self, user_id: str, ip_address: str | None, user_agent: str | None
    ) -> tuple[SessionData, str]:
        raw_token = generate_session_token()
        token_hash = hash_session_token(raw_token, self.settings.secret_key)
        self.store.create_session(
            Session(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=session_expiry(self.settings),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        session = self.store.get_session_by_token_hash(token_hash)
        user = self.store.get_by_id(user_id)
        return SessionData(session=session, user=user), raw_token


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
