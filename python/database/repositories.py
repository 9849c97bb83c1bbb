"""
Repository Pattern for Electricity Billing Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories flush but never commit; transaction boundaries belong to the
caller (UnitOfWork).
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    User,
    Bill,
    BillStatus,
    PaymentMethod,
    NATURAL_KEY_FIELDS,
)
from database.allocation import parse_suffix
from database.monitoring import timed_query

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when a write violates a unique constraint.

    Attributes:
        field: The violated field ('id', 'national_id', 'email'), or None
            when the driver message could not be attributed.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StoreUnavailableError(RepositoryError):
    """Raised when the database cannot be reached or a call timed out."""
    pass


class BillAlreadyPaidError(RepositoryError):
    """Raised when paying a bill that is already PAID."""
    pass


_CONSTRAINT_FIELDS = {
    "uq_users_national_id_live": "national_id",
    "uq_users_email_live": "email",
    "users_pkey": "id",
}

# Markers for drivers that only give a message. PostgreSQL names the
# constraint, SQLite reports table.column.
_CONSTRAINT_MARKERS = tuple(_CONSTRAINT_FIELDS.items()) + (
    ("users.national_id", "national_id"),
    ("users.email", "email"),
    ("users.id", "id"),
)


def violated_field(exc: IntegrityError) -> Optional[str]:
    """Map an IntegrityError on the users table to the offending field.

    psycopg2 exposes the constraint name on ``diag``. Otherwise only the
    first line of the message is searched, since later lines (PostgreSQL's
    DETAIL) echo the rejected values.
    """
    orig = getattr(exc, "orig", None)
    constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
    if constraint:
        return _CONSTRAINT_FIELDS.get(constraint)

    lines = str(orig or exc).splitlines()
    message = lines[0] if lines else ""
    for marker, field in _CONSTRAINT_MARKERS:
        if marker in message:
            return field
    return None


# IDs read per round trip while skipping malformed IDs
_SUFFIX_SCAN_BATCH = 50


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for users; also the identifier store behind ID allocation."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("users.max_suffix")
    def max_suffix(self, prefix: str) -> int:
        """
        Highest numeric suffix among stored IDs that start with prefix.

        Soft-deleted rows are included so that their IDs are never issued
        again. IDs whose remainder after the prefix is not all digits are
        skipped.

        IDs are examined one length at a time, longest first. Among digit
        suffixes of equal length the greatest string is the greatest
        number, so each length costs one row plus any malformed IDs that
        sort above it. Shorter lengths are only visited while they could
        still hold a larger number.

        Returns:
            The maximum suffix, or 0 when no ID matches
        """
        matching = User.id.like(f"{_escape_like(prefix)}%", escape="\\")
        id_length = func.length(User.id)
        lengths = self.session.execute(
            select(id_length).where(matching).distinct().order_by(id_length.desc())
        ).scalars().all()

        highest = 0
        for length in lengths:
            if 10 ** (length - len(prefix)) - 1 <= highest:
                break
            suffix = self._greatest_suffix(prefix, matching, length)
            if suffix is not None:
                highest = max(highest, suffix)
        return highest

    def _greatest_suffix(self, prefix: str, matching, length: int) -> Optional[int]:
        query = select(User.id).where(
            matching, func.length(User.id) == length
        ).order_by(User.id.desc())

        offset = 0
        while True:
            batch = self.session.execute(
                query.offset(offset).limit(_SUFFIX_SCAN_BATCH)
            ).scalars().all()
            for user_id in batch:
                # LIKE is case-insensitive on some backends; parse_suffix is not
                suffix = parse_suffix(user_id, prefix)
                if suffix is not None:
                    return suffix
                logger.debug("Ignoring malformed user id: %s", user_id)
            if len(batch) < _SUFFIX_SCAN_BATCH:
                return None
            offset += _SUFFIX_SCAN_BATCH

    def exists(self, user_id: str) -> bool:
        """True if the ID has ever been issued (deleted rows included)."""
        query = select(func.count()).select_from(User).where(User.id == user_id)
        return self.session.execute(query).scalar_one() > 0

    @timed_query("users.exists_by_natural_key")
    def exists_by_natural_key(
        self,
        field: str,
        value: str,
        exclude_id: Optional[str] = None
    ) -> bool:
        """
        Check whether a live user already holds a natural-key value.

        Args:
            field: One of NATURAL_KEY_FIELDS
            value: Normalized value to look for
            exclude_id: User ID to ignore (the record being updated)

        Raises:
            ValueError: If field is not a natural key
        """
        if field not in NATURAL_KEY_FIELDS:
            raise ValueError(f"Not a natural key field: {field}")

        column = getattr(User, field)
        query = select(func.count()).select_from(User).where(
            column == value,
            User.is_deleted == False  # noqa: E712
        )
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        return self.session.execute(query).scalar_one() > 0

    def insert(self, user: User) -> User:
        """
        Insert a new user.

        Raises:
            DuplicateEntityError: If the ID or a natural key is already taken
        """
        self.session.add(user)
        self._flush()
        logger.debug("Inserted user %s", user.id)
        return user

    def save(self, user: User) -> User:
        """
        Flush pending changes of an existing user.

        Raises:
            DuplicateEntityError: If a changed natural key is already taken
        """
        self._flush()
        return user

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            field = violated_field(e)
            raise DuplicateEntityError(
                f"Unique constraint violated on users.{field or 'unknown'}",
                field=field
            ) from e

    def get_by_id(self, user_id: str, include_deleted: bool = False) -> Optional[User]:
        """
        Get user by ID.

        Args:
            user_id: Formatted user ID
            include_deleted: If True, include soft-deleted users
        """
        query = select(User).where(User.id == user_id)
        if not include_deleted:
            query = query.where(User.is_deleted == False)  # noqa: E712
        return self.session.execute(query).scalar_one_or_none()

    def get_by_email(self, email: str) -> Optional[User]:
        """Get the live user holding an email (already normalized)."""
        query = select(User).where(
            User.email == email,
            User.is_deleted == False  # noqa: E712
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_all(self, offset: int = 0, limit: Optional[int] = None) -> List[User]:
        """List live users ordered by ID."""
        query = select(User).where(
            User.is_deleted == False  # noqa: E712
        ).order_by(User.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def soft_delete(self, user_id: str) -> bool:
        """
        Soft delete a user.

        Returns:
            True if deleted, False if not found (or already deleted)
        """
        user = self.get_by_id(user_id)
        if not user:
            return False

        user.is_deleted = True
        user.deleted_at = datetime.now(timezone.utc)
        self.session.flush()
        return True


# ============================================
# BILL REPOSITORY
# ============================================

class BillRepository:
    """Repository for bill operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, bill: Bill) -> Bill:
        """Insert a new bill and assign its ID."""
        self.session.add(bill)
        self.session.flush()
        logger.debug("Created bill %s for user %s", bill.id, bill.user_id)
        return bill

    def get_by_id(self, bill_id: int) -> Optional[Bill]:
        """Get bill by ID."""
        return self.session.get(Bill, bill_id)

    def list_bills(
        self,
        user_id: Optional[str] = None,
        status: Optional[BillStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[Bill]:
        """
        List bills, newest first.

        Args:
            user_id: Only bills of this user
            status: Only bills in this status
        """
        query = select(Bill)
        if user_id is not None:
            query = query.where(Bill.user_id == user_id)
        if status is not None:
            query = query.where(Bill.status == status)
        query = query.order_by(Bill.id.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    @timed_query("bills.mark_paid")
    def mark_paid(
        self,
        bill_id: int,
        payment_method: PaymentMethod,
        paid_at: Optional[datetime] = None
    ) -> bool:
        """
        Move a bill from PENDING to PAID in a single conditional update.

        Returns:
            True if this call performed the transition, False if the bill
            does not exist or is not PENDING
        """
        stmt = (
            update(Bill)
            .where(Bill.id == bill_id, Bill.status == BillStatus.PENDING)
            .values(
                status=BillStatus.PAID,
                payment_method=payment_method,
                paid_at=paid_at or datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1
