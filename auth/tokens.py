"""
auth/tokens.py -- Password hashing, session tokens and the signed session cache.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in StoreSessionProvider.sign_in() so
       response time does not reveal whether an email is registered.

  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The
       store keeps HMAC-SHA256(SECRET_KEY, token) so lookup is O(1) and a DB
       leak does not leak usable cookies.

  Session cache cookie: a short-lived HS256 JWT (python-jose) carrying the
       session and user payload plus the token hash it belongs to. While it is
       valid, session lookups skip the database. Verification returns None on
       any failure -- the caller falls back to the store.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Session, SessionData, User
from core.config import Settings

logger = logging.getLogger("authgate.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------


# bcrypt only reads the first 72 bytes of its input; bcrypt>=5 raises on
# longer input instead of truncating.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords over MAX_PASSWORD_BYTES UTF-8 bytes. The
    API models reject those before they get here.
    """
    if password_too_long(plain):
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB, or input bcrypt refuses.
        return False


# Computed once at module load so the first failed sign-in is not measurably
# slower than later ones.
DUMMY_HASH: str = hash_password("authgate_timing_dummy")


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(raw_token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def session_expiry(settings: Settings, now: datetime | None = None) -> str:
    """ISO timestamp at which a session issued now expires."""
    start = now or datetime.now(timezone.utc)
    return (start + timedelta(seconds=settings.session_expire_seconds)).isoformat()


def is_expired(expires_at: str, now: datetime | None = None) -> bool:
    """True if expires_at is at or before now. Unparseable values count as expired."""
    try:
        expiry = datetime.fromisoformat(expires_at)
    except ValueError:
        return True
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry <= (now or datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Session cache cookie (signed JWT)
# ---------------------------------------------------------------------------


def encode_session_cache(data: SessionData, settings: Settings) -> str:
    """Encode the session + user as a signed JWT valid for the cookie cache max age."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=settings.cookie_cache_max_age_seconds)
    payload = {
        "sub": data.user.id,
        "th": data.session.token_hash,
        "session": data.session.to_public_dict(),
        "user": data.user.to_dict(),
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_session_cache(token: str, token_hash: str, settings: Settings) -> SessionData | None:
    """Decode a session cache cookie. Returns None unless it is valid and bound to token_hash.

    The binding check stops a cache cookie from outliving a sign-out followed
    by a new sign-in, where the session token changes.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not hmac.compare_digest(str(payload.get("th", "")), token_hash):
        return None
    try:
        session_fields = payload["session"]
        user = User(**payload["user"])
        session = Session(token_hash=token_hash, **session_fields)
    except (KeyError, TypeError):
        logger.warning("Discarding malformed session cache cookie")
        return None
    if is_expired(session.expires_at):
        return None
    return SessionData(session=session, user=user)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(response, raw_token: str, data: SessionData, settings: Settings) -> None:
    """Write the session token cookie (and the cache cookie when enabled).

    httponly=True: JS cannot read the cookies.
    samesite="lax": sent on same-site navigations and top-level GETs, not on
        cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        settings.session_cookie_name,
        value=raw_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_expire_seconds,
        path="/",
    )
    if settings.cookie_cache_enabled:
        set_session_cache_cookie(response, data, settings)


def set_session_cache_cookie(response, data: SessionData, settings: Settings) -> None:
    response.set_cookie(
        settings.session_data_cookie_name,
        value=encode_session_cache(data, settings),
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.cookie_cache_max_age_seconds,
        path="/",
    )


def clear_session_cookies(response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.session_data_cookie_name, path="/")
