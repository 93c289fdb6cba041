"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_account / _row_to_session
are the mappers. Route, gate and provider code never touches SQL directly.

Storage-boundary rules:
  id          -- time-ordered UUIDv7 generated by a column default, so ids sort
                 in insertion order without a central sequence.
  email       -- UNIQUE constraint. A duplicate insert raises
                 sqlalchemy.exc.IntegrityError.
  created_at,
  updated_at  -- column defaults of "now" (ISO 8601 UTC). There is no onupdate
                 hook: updated_at only changes when a caller passes it.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Sessions are stored by HMAC hash of the token, never the raw token.

Schema creation uses metadata.create_all(); there is no migration tooling.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from uuid6 import uuid7

from auth.models import Account, Session, User

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid7())


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "_user",
    _metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False, default=_now_iso),
    Column("updated_at", String(32), nullable=False, default=_now_iso),
)

_accounts = Table(
    "_account",
    _metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("user_id", String(36), nullable=False, index=True),
    Column("provider_id", String(50), nullable=False),  # "credential"
    Column("account_id", String(255), nullable=False),
    Column("password_hash", Text),  # bcrypt; NULL for non-password providers
    Column("created_at", String(32), nullable=False, default=_now_iso),
    Column("updated_at", String(32), nullable=False, default=_now_iso),
    UniqueConstraint("provider_id", "account_id", name="uq_account_provider"),
)

_sessions = Table(
    "_session",
    _metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False, default=_now_iso),
    Column("updated_at", String(32), nullable=False, default=_now_iso),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Account and Session records.

    Usage:
        store = UserStore("sqlite:///authgate.db")
        user_id = store.create_user(User(name="Ada", email="ada@example.com"))
        user = store.get_by_email("ada@example.com")
        store.close()
    """

    # Fields update_user() accepts. id and created_at are immutable.
    _MUTABLE_USER_FIELDS: set = {"name", "email", "updated_at"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        id comes from the column default; created_at and updated_at share one
        insertion timestamp. Values set on the dataclass for these are ignored.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(name=user.name, email=user.email, created_at=now, updated_at=now)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def create_user_with_account(self, user: User, account: Account) -> str:
        """Insert a user and its first account in one transaction; return the user id.

        account.user_id is replaced with the new user's id, and an empty
        account.account_id defaults to it. If either insert fails (duplicate
        email, duplicate provider account) neither row is written and the
        IntegrityError propagates.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            user_id = conn.execute(
                _users.insert().values(name=user.name, email=user.email, created_at=now, updated_at=now)
            ).inserted_primary_key[0]
            conn.execute(
                _accounts.insert().values(
                    user_id=user_id,
                    provider_id=account.provider_id,
                    account_id=account.account_id or user_id,
                    password_hash=account.password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users in creation order (UUIDv7 ids sort by time)."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, updated_at. updated_at is written only
        when passed. Unknown or immutable fields raise ValueError. Raises
        IntegrityError if the new email collides with another user.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> str:
        """Insert a credential account and return its id.

        Raises IntegrityError if (provider_id, account_id) already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    user_id=account.user_id,
                    provider_id=account.provider_id,
                    account_id=account.account_id,
                    password_hash=account.password_hash,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_credential_account(self, user_id: str) -> Account | None:
        """Return the email/password account for a user, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.user_id == user_id) & (_accounts.c.provider_id == "credential"))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        """Insert a session row and return its id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    expires_at=session.expires_at,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session_by_token_hash(self, token_hash: str) -> Session | None:
        """Look up a session by token hash. O(1) via UNIQUE index.

        Expired rows are returned as-is; the caller decides what expiry means.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def extend_session(self, session_id: str, expires_at: str) -> bool:
        """Move a session's expiry forward and stamp updated_at."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(expires_at=expires_at, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_session(self, token_hash: str) -> bool:
        """Delete a session by token hash. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_sessions(self, now: str | None = None) -> int:
        """Delete every session whose expires_at is at or before now.

        ISO 8601 UTC strings of the same format compare lexicographically in
        time order, so the comparison runs in SQL.
        """
        cutoff = now or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        provider_id=row.provider_id,
        account_id=row.account_id,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
