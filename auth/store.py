"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore (User Directory) and SessionStore (Session Store) are the
repositories; _row_to_user / _row_to_session are the mappers. Each store is
the only writer of its own table. Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  sessions.token is UNIQUE. Refresh tokens carry a random jti so a collision
  is not a practical concern, but the index still enforces the invariant.

Timestamps:
  Stored as ISO 8601 UTC strings with fixed microsecond precision
  (_to_iso). Fixed width makes lexicographic order equal chronological
  order, so expiry checks can be done in SQL with plain string comparison.

Concurrency:
  SessionStore.rotate() deletes the old row and inserts the new one inside a
  single transaction, and only inserts if the delete actually removed a live
  row. Two callers racing to rotate the same refresh token therefore cannot
  both win -- the loser's DELETE matches zero rows.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.exceptions import DuplicateEmail
from auth.models import Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("name", String(255)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Foreign keys are off by default in SQLite, so
    without this ON DELETE CASCADE on sessions.user_id would be ignored.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def create_auth_engine(db_url: str) -> Engine:
    """Create the engine shared by UserStore and SessionStore and ensure the schema.

    Usage:
        engine = create_auth_engine(settings.database_url)
        users, sessions = UserStore(engine), SessionStore(engine)
        ...
        engine.dispose()
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# User Directory
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Rows are never updated by the auth core; deletion happens only through
    external administration (sessions follow via ON DELETE CASCADE).
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, email: str, hashed_password: str, name: str | None = None) -> User:
        """Insert a new user and return it with id and created_at filled in.

        The email is looked up first so the common case gets a clean
        DuplicateEmail. The UNIQUE index still catches a concurrent insert
        that slips between the check and the write; that IntegrityError is
        reported as DuplicateEmail too.
        """
        if self.get_by_email(email) is not None:
            raise DuplicateEmail(email)
        created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=email,
                        hashed_password=hashed_password,
                        name=name,
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail(email) from exc
        return User(
            id=result.inserted_primary_key[0],
            email=email,
            hashed_password=hashed_password,
            name=name,
            created_at=created_at,
        )

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Session Store
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for refresh-token sessions.

    Expiry is lazy: is_valid() deletes an expired row when it sees one.
    purge_expired() exists for the optional periodic sweep, but correctness
    never depends on it having run.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user_id: int, token: str, expires_at: datetime) -> Session:
        """Insert a session row. Raises IntegrityError if the token already exists."""
        expires = _to_iso(expires_at)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.insert().values(user_id=user_id, token=token, expires_at=expires))
            conn.commit()
        return Session(id=result.inserted_primary_key[0], user_id=user_id, token=token, expires_at=expires)

    def get(self, token: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token == token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def is_valid(self, token: str) -> bool:
        """Return True if a live session exists for token.

        An expired row is deleted as a side effect and reported as invalid.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token == token)).fetchone()
            if row is None:
                return False
            if row.expires_at <= _now_iso():
                conn.execute(_sessions.delete().where(_sessions.c.id == row.id))
                conn.commit()
                return False
        return True

    def delete(self, token: str) -> int:
        """Remove any session with this token. Idempotent; returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
            conn.commit()
        return result.rowcount

    def rotate(self, old_token: str, user_id: int, new_token: str, expires_at: datetime) -> bool:
        """Atomically replace a live session with a new one.

        Deletes the old row only if it still exists and has not expired, then
        inserts the new row in the same transaction. Returns False (and writes
        nothing) if the old row was already gone -- the caller lost a race
        with another rotation or a logout.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.token == old_token) & (_sessions.c.expires_at > _now_iso()))
            )
            if result.rowcount != 1:
                return False
            conn.execute(_sessions.insert().values(user_id=user_id, token=new_token, expires_at=_to_iso(expires_at)))
        return True

    def purge_expired(self) -> int:
        """Delete every expired session. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _now_iso()))
            conn.commit()
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        """Return the number of live sessions owned by user_id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > _now_iso()))
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
    )
