"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_profile /
_row_to_refresh_token are the mappers. Service and route code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  Multi-row writes that belong to one flow (account creation, login,
  password change) run inside a single engine.begin() block. A failure in
  any statement rolls back the whole flow, so a user can never exist
  without its role profile or without the refresh token it was issued.

Role profiles:
  One table per role. _PROFILE_TABLES maps a role to its table; ADMIN has
  no profile. user_id is UNIQUE in each table, which enforces "at most one
  profile per user per role" at the DB level.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, or_, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Profile, RefreshToken, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(32), unique=True),  # NULLs are distinct in UNIQUE
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.STUDENT.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("referral_code", String(16), nullable=False, unique=True),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
)


def _profile_table(name: str) -> Table:
    return Table(
        name,
        _metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        Column("created_at", String(32), nullable=False),
    )


_student_profiles = _profile_table("student_profiles")
_teacher_profiles = _profile_table("teacher_profiles")
_parent_profiles = _profile_table("parent_profiles")

_PROFILE_TABLES: dict[str, Table] = {
    Role.STUDENT.value: _student_profiles,
    Role.TEACHER.value: _teacher_profiles,
    Role.PARENT.value: _parent_profiles,
}

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, unique=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite,
    and ON DELETE CASCADE does nothing without it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Profile and RefreshToken entities.

    Usage:
        store = UserStore("sqlite:///learnhub_auth.db")
        store.create_account(user, refresh_token)
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    def create_account(self, user: User, refresh_token: RefreshToken) -> None:
        """Insert the user, its role profile and its first refresh token atomically.

        Raises sqlalchemy.exc.IntegrityError if email, phone, or referral code
        is already taken (e.g. a concurrent registration won the race). Nothing
        is written in that case.
        """
        created_at = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    phone=user.phone,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    is_email_verified=1 if user.is_email_verified else 0,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    referral_code=user.referral_code,
                    created_at=created_at,
                )
            )
            self._insert_profile(conn, user.id, user.role)
            self._insert_refresh_token(conn, refresh_token)
        user.created_at = created_at

    def _insert_profile(self, conn: Connection, user_id: str, role: str) -> None:
        table = _PROFILE_TABLES.get(role)
        if table is None:
            return
        conn.execute(table.insert().values(user_id=user_id, created_at=_now_iso()))

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Callers normalize case before calling."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email_or_phone(self, email: str, phone: str | None = None) -> User | None:
        """Return any user holding this email, or this phone when one is given."""
        condition = _users.c.email == email
        if phone:
            condition = or_(condition, _users.c.phone == phone)
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_profile(self, user_id: str, role: str) -> Profile | None:
        """Return the role profile for user_id, or None (always None for ADMIN)."""
        table = _PROFILE_TABLES.get(role)
        if table is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.user_id == user_id)).fetchone()
        return _row_to_profile(row, role) if row is not None else None

    # ------------------------------------------------------------------
    # User mutations
    # ------------------------------------------------------------------

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Boolean flags (is_active, is_email_verified, two_factor_enabled) are
        converted to int for SQLite. Returns True if a row was updated.
        """
        for flag in ("is_active", "is_email_verified", "two_factor_enabled"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def mark_email_verified(self, user_id: str) -> bool:
        return self.update_user(user_id, is_email_verified=True)

    def record_login(self, user_id: str, refresh_token: RefreshToken) -> None:
        """Stamp last_login and persist the newly issued refresh token in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            self._insert_refresh_token(conn, refresh_token)

    def update_password(self, user_id: str, hashed_password: str, revoke_sessions: bool = False) -> int:
        """Replace the password hash; optionally delete every refresh token of the user.

        Both writes share one transaction. Returns the number of refresh
        tokens revoked (0 when revoke_sessions is False).
        """
        revoked = 0
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
            if revoke_sessions:
                result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
                revoked = result.rowcount
        return revoked

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def _insert_refresh_token(self, conn: Connection, refresh_token: RefreshToken) -> None:
        created_at = _now_iso()
        result = conn.execute(
            _refresh_tokens.insert().values(
                token=refresh_token.token,
                user_id=refresh_token.user_id,
                expires_at=refresh_token.expires_at,
                created_at=created_at,
            )
        )
        refresh_token.id = result.inserted_primary_key[0]
        refresh_token.created_at = created_at

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Look up a refresh token row by exact token string."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_tokens(self, user_id: str) -> int:
        """Delete every refresh token owned by user_id. Returns the number deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        two_factor_enabled=bool(row.two_factor_enabled),
        referral_code=row.referral_code,
        last_login=row.last_login,
        created_at=row.created_at,
    )


def _row_to_profile(row, role: str) -> Profile:
    return Profile(id=row.id, user_id=row.user_id, role=role, created_at=row.created_at)


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
