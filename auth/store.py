"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials and link tokens.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_user / _row_to_supplier /
_row_to_link_token are the mappers. Route and service code never touches SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use tokens are consumed with one conditional UPDATE
  (used_at IS NULL AND expires_at > :now). The database serializes the
  writes, so for any token exactly one caller sees rowcount == 1. Reading
  used_at first and writing it later is never enough on its own.

  set_password_and_consume_token() claims the token and writes the password
  hash inside one transaction: either both happen or neither does.

Emails are stored normalized (trimmed, lower-cased) and every lookup
normalizes its argument, so the UNIQUE constraint is case-insensitive in
effect.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import TokenAlreadyUsed
from auth.models import LinkToken, Supplier, User
from auth.tokens import normalize_email
from core.clock import to_iso, utc_now
from core.config import get_settings
from core.db import build_engine

logger = logging.getLogger("supplierportal.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="procurement"),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("company_name", String(255)),
    Column("password_hash", Text),  # NULL for supplier accounts and pending staff
    Column("password_set_at", String(40)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(40), nullable=False),
    Column("last_login", String(40)),
)

_suppliers = Table(
    "suppliers",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("supplier_name", String(255), nullable=False),
    Column("contact_person", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(50)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(40), nullable=False),
)

_magic_links = Table(
    "magic_links",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("type", String(20), nullable=False, server_default="login"),
    Column("expires_at", String(40), nullable=False),
    Column("used_at", String(40)),
    Column("created_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_contact_name(contact_person: str | None) -> tuple[str, str]:
    """First word becomes the first name, the remainder the last name."""
    parts = (contact_person or "").split()
    if not parts:
        return "User", ""
    return parts[0], " ".join(parts[1:])


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Supplier and LinkToken entities.

    Usage:
        store = CredentialStore()
        user_id = store.create_user(User(email="buyer@example.com", role="procurement"))
        user = store.get_by_email("Buyer@Example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = build_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    role=user.role,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    company_name=user.company_name,
                    password_hash=user.password_hash,
                    password_set_at=user.password_set_at,
                    active=1 if user.active else 0,
                    created_at=to_iso(utc_now()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, active, first_name, last_name, company_name.
        active must be passed as bool; this method converts to int for SQLite.
        Password changes go through set_password() only.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"role", "active", "first_name", "last_name", "company_name"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "active" in fields:
            fields["active"] = 1 if fields["active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, password_hash: str) -> bool:
        """Store a new bcrypt hash and stamp password_set_at. False if the user is missing."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, password_set_at=to_iso(utc_now()))
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=to_iso(utc_now())))
            conn.commit()

    def find_or_create_supplier_user(self, email: str, supplier: Supplier) -> User:
        """Return the credential for email, provisioning a supplier-role one if absent.

        Two verifications racing for a brand-new supplier both miss the first
        lookup; the loser's INSERT hits the UNIQUE(email) constraint and
        re-reads the winner's row instead of failing.
        """
        existing = self.get_by_email(email)
        if existing is not None:
            return existing
        first_name, last_name = _split_contact_name(supplier.contact_person)
        try:
            user_id = self.create_user(
                User(
                    email=email,
                    role="supplier",
                    first_name=first_name,
                    last_name=last_name,
                    company_name=supplier.supplier_name,
                )
            )
        except IntegrityError:
            existing = self.get_by_email(email)
            if existing is None:
                raise
            return existing
        logger.info("Provisioned supplier credential user_id=%s supplier_id=%s", user_id, supplier.id)
        return self.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def create_supplier(self, supplier: Supplier) -> int:
        """Insert a supplier and return its ID. IntegrityError on duplicate email."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _suppliers.insert().values(
                    supplier_name=supplier.supplier_name,
                    contact_person=supplier.contact_person,
                    email=normalize_email(supplier.email),
                    phone=supplier.phone,
                    active=1 if supplier.active else 0,
                    created_at=to_iso(utc_now()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_supplier(self, supplier_id: int) -> Supplier | None:
        with self.engine.connect() as conn:
            row = conn.execute(_suppliers.select().where(_suppliers.c.id == supplier_id)).fetchone()
        return _row_to_supplier(row) if row is not None else None

    def get_supplier_by_email(self, email: str) -> Supplier | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _suppliers.select().where(_suppliers.c.email == normalize_email(email))
            ).fetchone()
        return _row_to_supplier(row) if row is not None else None

    def list_suppliers(self) -> list[Supplier]:
        with self.engine.connect() as conn:
            rows = conn.execute(_suppliers.select().order_by(_suppliers.c.supplier_name)).fetchall()
        return [_row_to_supplier(r) for r in rows]

    # ------------------------------------------------------------------
    # Link tokens
    # ------------------------------------------------------------------

    def create_link_token(self, token: LinkToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _magic_links.insert().values(
                    email=normalize_email(token.email),
                    token_hash=token.token_hash,
                    type=token.type,
                    expires_at=token.expires_at,
                    used_at=None,
                    created_at=to_iso(utc_now()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_link_token_by_hash(self, token_hash: str) -> LinkToken | None:
        """Look up a link token by its SHA-256 hash. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_magic_links.select().where(_magic_links.c.token_hash == token_hash)).fetchone()
        return _row_to_link_token(row) if row is not None else None

    def claim_link_token(self, token_id: int, now: datetime | None = None) -> bool:
        """Atomically mark a token used. True for exactly one caller per token.

        Fails (False) if the token was already used, has expired, or does not
        exist. This is the only place used_at is ever written.
        """
        stamp = to_iso(now or utc_now())
        with self.engine.connect() as conn:
            result = conn.execute(_claim_statement(token_id, stamp))
            conn.commit()
        return result.rowcount == 1

    def set_password_and_consume_token(
        self, user_id: int, password_hash: str, token_id: int, now: datetime | None = None
    ) -> None:
        """Claim a password-setup token and store the new hash in one transaction.

        Raises:
            TokenAlreadyUsed: the claim lost (used, expired, or missing token).
            LookupError:      no user row with user_id.
        Either way the transaction rolls back and nothing is written.
        """
        stamp = to_iso(now or utc_now())
        with self.engine.begin() as conn:
            claimed = conn.execute(_claim_statement(token_id, stamp))
            if claimed.rowcount != 1:
                raise TokenAlreadyUsed()
            updated = conn.execute(
                _users.update().where(_users.c.id == user_id).values(password_hash=password_hash, password_set_at=stamp)
            )
            if updated.rowcount != 1:
                raise LookupError(f"user {user_id} not found")

    def purge_expired_link_tokens(self, now: datetime | None = None) -> int:
        """Delete every token that is expired or already used. Returns the count."""
        stamp = to_iso(now or utc_now())
        with self.engine.connect() as conn:
            result = conn.execute(
                _magic_links.delete().where(
                    or_(_magic_links.c.expires_at <= stamp, _magic_links.c.used_at.is_not(None))
                )
            )
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired or used link tokens", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _claim_statement(token_id: int, stamp: str):
    return (
        _magic_links.update()
        .where(
            (_magic_links.c.id == token_id)
            & (_magic_links.c.used_at.is_(None))
            & (_magic_links.c.expires_at > stamp)
        )
        .values(used_at=stamp)
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=row.role,
        first_name=row.first_name,
        last_name=row.last_name,
        company_name=row.company_name,
        password_hash=row.password_hash,
        password_set_at=row.password_set_at,
        active=bool(row.active),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_supplier(row) -> Supplier:
    return Supplier(
        id=row.id,
        supplier_name=row.supplier_name,
        contact_person=row.contact_person,
        email=row.email,
        phone=row.phone,
        active=bool(row.active),
        created_at=row.created_at,
    )


def _row_to_link_token(row) -> LinkToken:
    return LinkToken(
        id=row.id,
        email=row.email,
        token_hash=row.token_hash,
        type=row.type,
        expires_at=row.expires_at,
        used_at=row.used_at,
        created_at=row.created_at,
    )
