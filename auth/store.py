"""
auth/store.py -- Users and session tokens, persisted with SQLAlchemy Core.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_token are the mappers. Services and routes never touch SQL directly.

Security:
  Every statement is built with SQLAlchemy expressions or text() with bound
  parameters; no SQL is assembled from strings.

  session_tokens.secret_hash holds HMAC-SHA256(SECRET_KEY, secret). The
  plaintext secret is never written. The UNIQUE index on secret_hash is what
  get_token_by_hash() uses, so lookups are exact-match through the index.

One session per user:
  session_tokens.user_id is UNIQUE. save_token() overwrites the user's row in
  place (same id, new secret and timestamps) or inserts it if the user has
  never logged in. The UPDATE-then-INSERT runs in one transaction; if a
  concurrent writer inserts the row first, the losing INSERT raises
  IntegrityError and is retried as an UPDATE. Either way the table never holds
  two rows for one user, so at most one secret per user is ever valid.

  SQLite has a single writer. Writes from this process are additionally
  serialised with a lock so concurrent rotations queue instead of failing
  with "database is locked".

DB path: wotapi_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading
from contextlib import nullcontext
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import IssuedToken, SessionToken, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_tokens = Table(
    "session_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, unique=True),
    Column("secret_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),  # ISO 8601, UTC
    Column("expires_at", String(32), nullable=False),  # ISO 8601, UTC
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Switch each new SQLite connection to WAL so token lookups are not
    blocked while a login is writing. The pragma is per connection, hence the
    connect listener.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    # Naive values are treated as UTC.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and SessionToken entities.

    Usage:
        store = UserStore("sqlite:///wotapi_auth.db")
        store.create_user(User(username="egwene", hashed_password=hasher.hash("secret")))
        user = store.get_by_username("egwene")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        self._write_lock = threading.Lock() if is_sqlite else None
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health endpoint."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self._writing(), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Session token queries
    # ------------------------------------------------------------------

    def save_token(self, user_id: int, issued: IssuedToken, secret_hash: str) -> SessionToken:
        """Bind a freshly issued token to user_id, overwriting any previous one.

        Returns the stored SessionToken carrying the plaintext secret from
        `issued` (the caller is about to hand it to the client).
        """
        values = {
            "secret_hash": secret_hash,
            "issued_at": issued.issued_at.isoformat(),
            "expires_at": issued.expires_at.isoformat(),
        }
        with self._writing():
            try:
                with self.engine.begin() as conn:
                    token_id = self._upsert_token(conn, user_id, values)
            except IntegrityError:
                # A concurrent writer inserted this user's row between our
                # UPDATE and INSERT. The row exists now, so overwrite it.
                with self.engine.begin() as conn:
                    token_id = self._overwrite_token(conn, user_id, values)
                    if token_id is None:
                        raise
        return SessionToken(
            id=token_id,
            user_id=user_id,
            secret=issued.secret,
            issued_at=issued.issued_at,
            expires_at=issued.expires_at,
        )

    def get_token_by_hash(self, secret_hash: str) -> SessionToken | None:
        """Look up a token by the HMAC of its secret. O(1) via UNIQUE index.

        The returned SessionToken has an empty secret; only the caller knows
        the plaintext it hashed.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.secret_hash == secret_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def get_token_for_user(self, user_id: int) -> SessionToken | None:
        """Return the user's current token row (secret empty), or None if they never logged in."""
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.user_id == user_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def count_tokens_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM session_tokens WHERE user_id = :uid"), {"uid": user_id}
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _writing(self):
        return self._write_lock if self._write_lock is not None else nullcontext()

    def _upsert_token(self, conn: Connection, user_id: int, values: dict) -> int:
        token_id = self._overwrite_token(conn, user_id, values)
        if token_id is not None:
            return token_id
        result = conn.execute(_tokens.insert().values(user_id=user_id, **values))
        return result.inserted_primary_key[0]

    @staticmethod
    def _overwrite_token(conn: Connection, user_id: int, values: dict) -> int | None:
        result = conn.execute(_tokens.update().where(_tokens.c.user_id == user_id).values(**values))
        if result.rowcount == 0:
            return None
        return conn.execute(select(_tokens.c.id).where(_tokens.c.user_id == user_id)).scalar()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
    )


def _row_to_token(row) -> SessionToken:
    return SessionToken(
        id=row.id,
        user_id=row.user_id,
        secret="",
        issued_at=_parse_ts(row.issued_at),
        expires_at=_parse_ts(row.expires_at),
    )
