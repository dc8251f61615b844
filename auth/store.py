"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_record is the mapper.
Service and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  Usernames and emails are unique under case-insensitive comparison. This is
  enforced natively by two unique expression indexes on lower(username) and
  lower(email), not only by the service's pre-insert check. Two concurrent
  registrations for "Bob" and "bob" can both pass the service's check, but
  only one insert commits; the other raises IntegrityError, which insert()
  turns into DuplicateCredentialError naming the colliding field. Any store
  used in place of this one must provide the same guarantee.

  Comparisons apply lower() on both sides in SQL, so the column value and the
  probe are folded by the same function.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, case, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import CredentialRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("email", String(320), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

Index("ux_credentials_username_ci", func.lower(_credentials.c.username), unique=True)
Index("ux_credentials_email_ci", func.lower(_credentials.c.email), unique=True)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CredentialStoreError(Exception):
    """Unexpected storage failure. Not a client error."""


class DuplicateCredentialError(CredentialStoreError):
    """An insert collided with an existing username or email (case-insensitive)."""

    def __init__(self, field: str) -> None:
        super().__init__(f"A credential with that {field} already exists.")
        self.field = field


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ci_equals(column, value: str):
    return func.lower(column) == func.lower(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRecord entities.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        record = store.insert("bob", "bob@example.com", hasher.hash("s3cretpass"))
        store.find_by_username_or_email("BOB")  # same record
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_username_or_email(self, value: str, exclude_id: Optional[int] = None) -> Optional[CredentialRecord]:
        """Return the first record whose username or email equals value, ignoring case.

        exclude_id skips one record (e.g. the caller's own). Ties are broken by
        lowest id so repeated lookups are stable.
        """
        query = _credentials.select().where(
            or_(_ci_equals(_credentials.c.username, value), _ci_equals(_credentials.c.email, value))
        )
        if exclude_id is not None:
            query = query.where(_credentials.c.id != exclude_id)
        return self._fetch_one(query.order_by(_credentials.c.id))

    def find_conflict(self, username: str, email: str, exclude_id: Optional[int] = None) -> Optional[CredentialRecord]:
        """Return a record whose username matches username or whose email matches email.

        Records matching on username sort first, so a caller inspecting the
        result sees the username collision whenever one exists.
        """
        username_match = _ci_equals(_credentials.c.username, username)
        query = _credentials.select().where(or_(username_match, _ci_equals(_credentials.c.email, email)))
        if exclude_id is not None:
            query = query.where(_credentials.c.id != exclude_id)
        query = query.order_by(case((username_match, 0), else_=1), _credentials.c.id)
        return self._fetch_one(query)

    def find_by_id(self, record_id: int) -> Optional[CredentialRecord]:
        """Look up a record by primary key. Returns None if not found."""
        return self._fetch_one(_credentials.select().where(_credentials.c.id == record_id))

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_credentials)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, username: str, email: str, password_hash: str) -> CredentialRecord:
        """Insert a new record and return it with its assigned id.

        Raises DuplicateCredentialError("username" | "email") if the unique
        indexes reject the row.
        """
        created_at = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _credentials.insert().values(
                        username=username,
                        email=email,
                        password_hash=password_hash,
                        created_at=created_at,
                    )
                )
                record_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateCredentialError(self._colliding_field(username, exc)) from exc
        except SQLAlchemyError as exc:
            raise CredentialStoreError("Credential insert failed.") from exc
        return CredentialRecord(
            id=record_id,
            username=username,
            email=email,
            password_hash=password_hash,
            created_at=created_at,
        )

    def delete(self, record_id: int) -> bool:
        """Permanently delete a record. Returns True if deleted, False if not found.

        Outstanding tokens for the record stop working on their next use
        because the guard re-resolves the subject on every request.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_credentials.delete().where(_credentials.c.id == record_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_one(self, query) -> Optional[CredentialRecord]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
        except SQLAlchemyError as exc:
            raise CredentialStoreError("Credential lookup failed.") from exc
        return _row_to_record(row) if row is not None else None

    def _colliding_field(self, username: str, exc: IntegrityError) -> str:
        message = str(exc.orig)
        if "ux_credentials_username_ci" in message:
            return "username"
        if "ux_credentials_email_ci" in message:
            return "email"
        # Driver did not name the index; ask the table which value is taken.
        with self.engine.connect() as conn:
            taken = conn.execute(
                _credentials.select().where(_ci_equals(_credentials.c.username, username))
            ).first()
        return "username" if taken is not None else "email"


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )
