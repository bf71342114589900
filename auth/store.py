"""
auth/store.py -- SQLAlchemy Core persistence layer for identity and access data.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; the _row_to_* functions are the mappers.
Services and route code never touch SQL directly, and this module holds no
business rules (last-admin checks, built-in role protection and the like live
in auth/users.py and auth/roles.py).

Security:
  All queries use bound parameters. No f-strings in SQL.

  refresh_tokens.token_hash holds HMAC-SHA256(SECRET_KEY, raw_token). The raw
  token is never written here.

Referential integrity:
  users.role_id -> roles.id                    ON DELETE RESTRICT
  role_permissions.role_id -> roles.id         ON DELETE CASCADE
  role_permissions.permission_id -> permissions.id  ON DELETE CASCADE
  refresh_tokens.user_id -> users.id           ON DELETE CASCADE

  SQLite ignores foreign keys unless PRAGMA foreign_keys=ON is issued on every
  connection, so the connect listener sets it alongside WAL mode.

Timestamps are ISO 8601 UTC text with fixed microsecond precision. Lexical
order equals chronological order, so expiry comparisons can run in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Permission, RefreshToken, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("role_name", String(100), nullable=False, unique=True),
    Column("role_key", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_builtin", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("permission_key", String(100), nullable=False, unique=True),
    Column("resource", String(50), nullable=False),
    Column("action", String(20), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("password_hash", Text, nullable=False),
    Column("full_name", String(255), nullable=False),
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="ck_users_status"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
)

Index("idx_users_role_id", _users.c.role_id)
Index("idx_users_status", _users.c.status)
Index("idx_role_permissions_role_id", _role_permissions.c.role_id)
Index("idx_permissions_resource", _permissions.c.resource)
Index("idx_refresh_tokens_user_id", _refresh_tokens.c.user_id)
Index("idx_refresh_tokens_expires_at", _refresh_tokens.c.expires_at)

# Columns update_user() may touch. Validated before any SQL is built.
_USER_MUTABLE_FIELDS = {"full_name", "role_id", "status", "password_hash", "email"}
_ROLE_MUTABLE_FIELDS = {"name": "role_name", "key": "role_key", "description": "description"}


# ---------------------------------------------------------------------------
# Connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _new_id() -> str:
    return str(uuid.uuid4())


def _user_select():
    """SELECT users joined with their role's key and name."""
    return select(_users, _roles.c.role_key, _roles.c.role_name).select_from(
        _users.join(_roles, _users.c.role_id == _roles.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, roles, permissions and refresh tokens.

    One instance per process. The FastAPI lifespan constructs it and closes
    it on shutdown; services receive it explicitly.

    Usage:
        store = CredentialStore("sqlite:///orbitauth.db")
        role = store.get_role_by_key("admin")
        user = store.get_user_by_email("admin@example.com")
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

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> User:
        """Insert a new user and return it as stored (with role key/name).

        Raises sqlalchemy.exc.IntegrityError if the email already exists or
        role_id does not reference a role. Callers pre-check both; the
        constraint is the backstop for concurrent inserts.
        """
        now = _now_iso()
        user_id = user.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.strip().lower(),
                    password_hash=user.password_hash,
                    full_name=user.full_name,
                    role_id=user.role_id,
                    status=user.status,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return self.get_user_by_id(user_id)

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by email. Matching is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        search: str | None = None,
        status: str | None = None,
        role_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        search matches a substring of email or full name, case-insensitively.
        """
        conditions = []
        if search:
            term = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{term}%"
            conditions.append(
                or_(
                    func.lower(_users.c.email).like(pattern, escape="\\"),
                    func.lower(_users.c.full_name).like(pattern, escape="\\"),
                )
            )
        if status:
            conditions.append(_users.c.status == status)
        if role_id:
            conditions.append(_users.c.role_id == role_id)

        page_stmt = _user_select().where(*conditions).order_by(_users.c.created_at.desc()).limit(limit).offset(offset)
        count_stmt = select(func.count()).select_from(_users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(page_stmt).fetchall()
            total = conn.execute(count_stmt).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: full_name, role_id, status, password_hash, email.
        Unknown keys raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user. Refresh tokens cascade.

        Callers must check self-delete and last-admin rules first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login_at."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))
            conn.commit()

    def count_active_users_with_role_key(self, role_key: str) -> int:
        """Return the number of active users whose role has the given key."""
        stmt = (
            select(func.count())
            .select_from(_users.join(_roles, _users.c.role_id == _roles.c.id))
            .where((_roles.c.role_key == role_key) & (_users.c.status == "active"))
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt).scalar()
        return result or 0

    def count_users_by_status(self) -> dict[str, int]:
        """Return {status: count} across all users."""
        stmt = select(_users.c.status, func.count()).group_by(_users.c.status)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {status: count for status, count in rows}

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role, permission_ids: Iterable[str] = ()) -> Role:
        """Insert a role and its permission grants in one transaction.

        Raises sqlalchemy.exc.IntegrityError on duplicate name or key, or if a
        permission id does not exist.
        """
        now = _now_iso()
        role_id = role.id or _new_id()
        with self.engine.begin() as conn:
            conn.execute(
                _roles.insert().values(
                    id=role_id,
                    role_name=role.name,
                    role_key=role.key,
                    description=role.description,
                    is_builtin=1 if role.is_builtin else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            _insert_grants(conn, role_id, permission_ids, now)
        return self.get_role_by_id(role_id)

    def get_role_by_id(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_key(self, role_key: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.role_key == role_key)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        """Look up a role by display name. Matching is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _roles.select().where(func.lower(_roles.c.role_name) == name.strip().lower())
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        """Return all roles with permission_count and user_count populated.

        Built-in roles sort first, then by name.
        """
        permission_count = (
            select(func.count())
            .select_from(_role_permissions)
            .where(_role_permissions.c.role_id == _roles.c.id)
            .scalar_subquery()
        )
        user_count = select(func.count()).select_from(_users).where(_users.c.role_id == _roles.c.id).scalar_subquery()
        stmt = select(
            _roles,
            permission_count.label("permission_count"),
            user_count.label("user_count"),
        ).order_by(_roles.c.is_builtin.desc(), _roles.c.role_name)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: str, **fields) -> bool:
        """Update name, key and/or description on a role and stamp updated_at.

        Returns True if a row was updated, False if role_id was not found.
        """
        unknown = set(fields) - set(_ROLE_MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        values = {_ROLE_MUTABLE_FIELDS[name]: value for name, value in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(updated_at=_now_iso(), **values))
            conn.commit()
        return result.rowcount > 0

    def delete_role(self, role_id: str) -> bool:
        """Delete a role. Its grants cascade.

        Raises sqlalchemy.exc.IntegrityError while any user references it.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def count_users_with_role(self, role_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.role_id == role_id)).scalar()
        return result or 0

    def count_roles(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_roles)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> Permission:
        """Insert a permission. Raises IntegrityError on duplicate key."""
        permission_id = permission.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _permissions.insert().values(
                    id=permission_id,
                    permission_key=permission.key,
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return self.get_permission_by_key(permission.key)

    def get_permission_by_key(self, key: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.permission_key == key)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        """Return every permission ordered by resource, then action."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select().order_by(_permissions.c.resource, _permissions.c.action)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def find_missing_permission_ids(self, permission_ids: Iterable[str]) -> list[str]:
        """Return the ids from permission_ids that do not exist, in input order."""
        wanted = list(dict.fromkeys(permission_ids))
        if not wanted:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(select(_permissions.c.id).where(_permissions.c.id.in_(wanted))).fetchall()
        found = {r.id for r in rows}
        return [pid for pid in wanted if pid not in found]

    def get_role_permissions(self, role_id: str) -> list[Permission]:
        """Return the permissions granted to a role, ordered by resource, action."""
        stmt = (
            select(_permissions)
            .select_from(_permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.resource, _permissions.c.action)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_role_permission_keys(self, role_id: str) -> list[str]:
        """Return the sorted permission keys granted to a role."""
        stmt = (
            select(_permissions.c.permission_key)
            .select_from(_permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.permission_key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [r.permission_key for r in rows]

    def get_user_permission_keys(self, user_id: str) -> list[str]:
        """Return the sorted permission keys of the user's current role."""
        stmt = (
            select(_permissions.c.permission_key)
            .select_from(
                _users.join(_role_permissions, _role_permissions.c.role_id == _users.c.role_id).join(
                    _permissions, _permissions.c.id == _role_permissions.c.permission_id
                )
            )
            .where(_users.c.id == user_id)
            .order_by(_permissions.c.permission_key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [r.permission_key for r in rows]

    def replace_role_permissions(self, role_id: str, permission_ids: Iterable[str]) -> None:
        """Replace a role's grants with exactly permission_ids.

        Delete and insert run in one transaction, so readers never observe
        a partially rewritten set and a failed insert leaves the old set intact.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            _insert_grants(conn, role_id, permission_ids, now)
            conn.execute(_roles.update().where(_roles.c.id == role_id).values(updated_at=now))

    def update_permission_description(self, key: str, description: str | None) -> bool:
        """Change a permission's description. Key, resource and action never change."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.update().where(_permissions.c.permission_key == key).values(description=description)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        token_id = token.id or _new_id()
        created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token_id,
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=token.expires_at,
                    created_at=created_at,
                )
            )
            conn.commit()
        return RefreshToken(
            id=token_id,
            user_id=token.user_id,
            token_hash=token.token_hash,
            expires_at=token.expires_at,
            created_at=created_at,
        )

    def get_active_refresh_token(self, token_hash: str) -> RefreshToken | None:
        """Look up an unrevoked refresh token by hash.

        Expiry is not filtered here: the caller compares expires_at so that an
        expired token can be reported as such.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked_at.is_(None))
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_refresh_token(self, token_id: str) -> bool:
        """Revoke a token if it is still unrevoked.

        Returns True only for the call that flipped revoked_at. Two concurrent
        refreshes of the same token race on this UPDATE and exactly one wins.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_refresh_token_by_hash(self, token_hash: str, user_id: str | None = None) -> bool:
        """Revoke the unrevoked token with this hash, optionally scoped to an owner.

        Scoping by user_id stops one user from revoking another user's token.
        """
        condition = (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked_at.is_(None))
        if user_id is not None:
            condition = condition & (_refresh_tokens.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.update().where(condition).values(revoked_at=_now_iso()))
            conn.commit()
        return result.rowcount > 0

    def revoke_user_refresh_tokens(self, user_id: str) -> int:
        """Revoke every unrevoked token owned by user_id. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount

    def purge_refresh_tokens(self, before: str | None = None) -> int:
        """Delete tokens that are expired or revoked as of `before` (default now).

        Returns the number of rows removed.
        """
        cutoff = before or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.expires_at < cutoff) | (_refresh_tokens.c.revoked_at.is_not(None))
                )
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Round-trip a trivial query. Raises on connection failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


def _insert_grants(conn, role_id: str, permission_ids: Iterable[str], now: str) -> None:
    rows = [
        {"id": _new_id(), "role_id": role_id, "permission_id": pid, "created_at": now}
        for pid in dict.fromkeys(permission_ids)
    ]
    if rows:
        conn.execute(_role_permissions.insert(), rows)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name,
        role_id=row.role_id,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
        role_key=row.role_key,
        role_name=row.role_name,
    )


def _row_to_role(row) -> Role:
    # Counts are only present on rows from list_roles().
    mapping = row._mapping
    return Role(
        id=row.id,
        name=row.role_name,
        key=row.role_key,
        description=row.description,
        is_builtin=bool(row.is_builtin),
        created_at=row.created_at,
        updated_at=row.updated_at,
        permission_count=mapping.get("permission_count", 0) or 0,
        user_count=mapping.get("user_count", 0) or 0,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        key=row.permission_key,
        resource=row.resource,
        action=row.action,
        description=row.description,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
    )
