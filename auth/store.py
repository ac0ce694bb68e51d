"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; _row_to_identity is the mapper.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failure contract:
  Every method converts SQLAlchemy errors into core.errors types so callers
  depend on one taxonomy:
    duplicate email on insert -> IdentityExistsError
    anything else             -> PersistenceError

  get_by_email() returning None is the directory's "not found" answer.

DB path: auth/identitygate.db by default (DATABASE_URL overrides).

Layer rule: no imports from api/, challenges/, or notify/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Identity
from core.config import get_settings
from core.errors import IdentityExistsError, PersistenceError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("verified_at", String(32)),
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
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore()
        store.create_identity(Identity(email="alice@example.com", password_hash=hash_password("secret")))
        identity = store.get_by_email("alice@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not initialise the identity schema.") from exc

    def create_identity(self, identity: Identity) -> int:
        """Insert a new identity (unverified) and return its assigned database ID.

        Raises IdentityExistsError if the email is already registered. The
        UNIQUE index decides, so two concurrent registrations of one email
        cannot both succeed.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _identities.insert().values(
                        email=identity.email,
                        password_hash=identity.password_hash,
                        is_verified=0,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise IdentityExistsError("An identity with that email already exists.") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not create identity.") from exc

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact email (case-sensitive). Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_identities.select().where(_identities.c.email == email)).fetchone()
        except SQLAlchemyError as exc:
            raise PersistenceError("Identity lookup failed.") from exc
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: int) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        except SQLAlchemyError as exc:
            raise PersistenceError("Identity lookup failed.") from exc
        return _row_to_identity(row) if row is not None else None

    def mark_verified(self, email: str) -> bool:
        """Flip is_verified from 0 to 1 and stamp verified_at.

        The WHERE clause includes is_verified = 0 so the flag flips exactly
        once; repeated calls are no-ops. Returns True if a row changed.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _identities.update()
                    .where((_identities.c.email == email) & (_identities.c.is_verified == 0))
                    .values(is_verified=1, verified_at=_now_iso())
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not mark identity verified.") from exc
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
    )
