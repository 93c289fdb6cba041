"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the session provider do the work.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class User:
    """The identity record.

    id is a time-ordered UUIDv7 string assigned by the store on insert, so it
    is None until the record has been persisted. email is unique across all
    users. updated_at is NOT refreshed automatically on mutation -- callers
    that need it pass updated_at explicitly to UserStore.update_user().
    """

    name: str
    email: str
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Account:
    """Credential record linking a user to a sign-in method.

    provider_id is "credential" for email/password accounts; account_id is
    then the user id. password_hash is a bcrypt hash and None for any
    provider that does not use a local password.
    """

    user_id: str
    provider_id: str
    account_id: str
    password_hash: str | None = None
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """A server-side session row.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token lives only
    in the client's cookie.
    """

    user_id: str
    token_hash: str
    expires_at: str
    id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_public_dict(self) -> dict:
        """Session fields safe to hand to clients (no token hash)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "expires_at": self.expires_at,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class SessionData:
    """What a session lookup resolves to: the session and its owner."""

    session: Session
    user: User
