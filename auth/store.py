"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Identifier predicates are built only from the values the caller actually
  supplied. An equality test against None would compile to IS NULL and match
  every row that lacks an email or phone number.

  Only user_name carries a UNIQUE constraint. Email and phone collisions are
  checked in code by find_conflict() before insert; the constraint catches the
  race where two concurrent sign-ups pass that check with the same name.

Layer rule: no imports from api/, mail/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Group, LoginType, Permission, Role, User, Webpage

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("is_all_permissions", Integer, nullable=False, server_default="0"),
)

_groups = Table(
    "permission_groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(100), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("description", Text, nullable=False, server_default=""),
    Column("router", String(255), nullable=False, server_default=""),
)

_role_groups = Table(
    "role_groups",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("group_id", Integer, ForeignKey("permission_groups.id"), primary_key=True),
)

_group_permissions = Table(
    "group_permissions",
    _metadata,
    Column("group_id", Integer, ForeignKey("permission_groups.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_name", String(255), nullable=False, unique=True),
    Column("email", String(255)),
    Column("phone_number", String(32)),
    Column("hashed_password", Text),
    Column("login_type", String(20), nullable=False, server_default=LoginType.ACCOUNT.value),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("image_url", Text),
    Column("date_of_birth", String(10)),  # ISO 8601 date
    Column("role_id", Integer, ForeignKey("roles.id")),
    Column("created_at", String(32), nullable=False),
)

_webpages = Table(
    "webpages",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(100), nullable=False, unique=True),
    Column("url", Text, nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("description", Text, nullable=False, server_default=""),
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


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, the role/group/permission graph and webpages.

    Usage:
        store = UserStore("sqlite:///authgate.db")
        user = store.find_by_identifier("alice")
        role = store.get_role(user.role_id) if user and user.role_id else None
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
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_identifier(self, identifier: str, login_type: LoginType | None = None) -> User | None:
        """Find the first user whose user_name, email or phone_number equals identifier.

        login_type=None applies no login-type filter. Ties resolve to the
        oldest record.
        """
        condition = or_(
            _users.c.user_name == identifier,
            _users.c.email == identifier,
            _users.c.phone_number == identifier,
        )
        if login_type is not None:
            condition = and_(condition, _users.c.login_type == login_type.value)
        return self._first_user(condition)

    def find_conflict(
        self,
        user_name: str | None,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> User | None:
        """Return any user already holding one of the supplied identifiers.

        Sign-in accepts a user name, email or phone number in one field, so
        every supplied value is compared with all three columns. None values
        are skipped rather than matched against NULL.
        """
        values = [v for v in (user_name, email, phone_number) if v is not None]
        if not values:
            return None
        return self._first_user(
            or_(
                _users.c.user_name.in_(values),
                _users.c.email.in_(values),
                _users.c.phone_number.in_(values),
            )
        )

    def find_by_email_and_login_type(self, email: str, login_type: LoginType) -> User | None:
        """Exact match on (email, login_type). Used to find an OAuth-linked account."""
        return self._first_user(and_(_users.c.email == email, _users.c.login_type == login_type.value))

    def find_by_email_or_phone(self, email: str | None, phone_number: str | None) -> User | None:
        clauses = []
        if email:
            clauses.append(_users.c.email == email)
        if phone_number:
            clauses.append(_users.c.phone_number == phone_number)
        if not clauses:
            return None
        return self._first_user(or_(*clauses))

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if user_name already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    user_name=user.user_name,
                    email=user.email,
                    phone_number=user.phone_number,
                    hashed_password=user.hashed_password,
                    login_type=LoginType(user.login_type).value,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    image_url=user.image_url,
                    date_of_birth=user.date_of_birth,
                    role_id=user.role_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace a user's password hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def assign_role(self, user_id: int, role_id: int | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role_id=role_id))
            conn.commit()
        return result.rowcount > 0

    def _first_user(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition).order_by(_users.c.id).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Role / group / permission graph
    # ------------------------------------------------------------------

    def get_role(self, role_id: int) -> Role | None:
        """Load a role with its groups and each group's permissions.

        One outer-joined query over role_groups -> permission_groups ->
        group_permissions -> permissions. A group without permissions still
        appears, with an empty list.
        """
        with self.engine.connect() as conn:
            role_row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            if role_row is None:
                return None
            rows = conn.execute(
                select(
                    _groups.c.id.label("group_id"),
                    _groups.c.name.label("group_name"),
                    _permissions.c.id.label("permission_id"),
                    _permissions.c.key,
                    _permissions.c.name.label("permission_name"),
                    _permissions.c.description,
                    _permissions.c.router,
                )
                .select_from(
                    _role_groups.join(_groups, _groups.c.id == _role_groups.c.group_id)
                    .outerjoin(_group_permissions, _group_permissions.c.group_id == _groups.c.id)
                    .outerjoin(_permissions, _permissions.c.id == _group_permissions.c.permission_id)
                )
                .where(_role_groups.c.role_id == role_id)
                .order_by(_groups.c.id, _permissions.c.id)
            ).fetchall()

        groups: dict[int, Group] = {}
        for row in rows:
            group = groups.get(row.group_id)
            if group is None:
                group = groups[row.group_id] = Group(id=row.group_id, name=row.group_name)
            if row.permission_id is not None:
                group.permissions.append(
                    Permission(
                        id=row.permission_id,
                        key=row.key,
                        name=row.permission_name,
                        description=row.description,
                        router=row.router,
                    )
                )
        return Role(
            id=role_row.id,
            name=role_row.name,
            is_all_permissions=bool(role_row.is_all_permissions),
            groups=list(groups.values()),
        )

    def create_role(self, name: str, is_all_permissions: bool = False) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(name=name, is_all_permissions=1 if is_all_permissions else 0)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def create_group(self, name: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_groups.insert().values(name=name))
            conn.commit()
            return result.inserted_primary_key[0]

    def create_permission(self, permission: Permission) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(
                    key=permission.key,
                    name=permission.name,
                    description=permission.description,
                    router=permission.router,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def add_group_to_role(self, role_id: int, group_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_role_groups.insert().values(role_id=role_id, group_id=group_id))
            conn.commit()

    def add_permission_to_group(self, group_id: int, permission_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_group_permissions.insert().values(group_id=group_id, permission_id=permission_id))
            conn.commit()

    # ------------------------------------------------------------------
    # Webpages
    # ------------------------------------------------------------------

    def get_webpage(self, webpage_key: str) -> Webpage | None:
        with self.engine.connect() as conn:
            row = conn.execute(_webpages.select().where(_webpages.c.key == webpage_key)).fetchone()
        return _row_to_webpage(row) if row is not None else None

    def create_webpage(self, webpage: Webpage) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _webpages.insert().values(
                    key=webpage.key,
                    url=webpage.url,
                    name=webpage.name,
                    description=webpage.description,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        user_name=row.user_name,
        email=row.email,
        phone_number=row.phone_number,
        hashed_password=row.hashed_password,
        login_type=LoginType(row.login_type),
        first_name=row.first_name,
        last_name=row.last_name,
        image_url=row.image_url,
        date_of_birth=row.date_of_birth,
        role_id=row.role_id,
        created_at=row.created_at,
    )


def _row_to_webpage(row) -> Webpage:
    return Webpage(
        id=row.id,
        key=row.key,
        url=row.url,
        name=row.name,
        description=row.description,
    )
