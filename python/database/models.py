"""
SQLAlchemy ORM Models for the Electricity Billing Service

Tables:
1. users - Registered customers, keyed by a formatted sequential ID (USER0001)
2. bills - Electricity bills owned by a user (many-to-one)

Users are never physically deleted. A soft-deleted row keeps its ID so the
ID is never issued again, while its natural keys (national ID, email) are
released through partial unique indexes that only cover live rows.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, Date, DateTime, Numeric,
    ForeignKey, Index, CheckConstraint, Enum, text
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# Natural keys of a user, in the order conflicts are reported
NATURAL_KEY_FIELDS = ("national_id", "email")

# Partial index predicate shared by both natural-key indexes
_LIVE_ROWS_PG = text("is_deleted = false")
_LIVE_ROWS_SQLITE = text("is_deleted = 0")


# ============================================
# ENUMS
# ============================================

class BillStatus(str, PyEnum):
    """Payment status of a bill"""
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentMethod(str, PyEnum):
    """How a bill was settled"""
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    UPI = "UPI"
    NET_BANKING = "NET_BANKING"
    CASH = "CASH"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin for soft delete support"""
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )


# ============================================
# CORE MODELS
# ============================================

class User(Base, TimestampMixin, SoftDeleteMixin):
    """
    A registered electricity customer.

    The primary key is a formatted string (prefix + zero-padded sequence)
    assigned by the registrar, never by the client.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # Natural keys (unique among live rows, see __table_args__)
    national_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)

    # Descriptive fields
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    bills: Mapped[List["Bill"]] = relationship(
        "Bill",
        back_populates="user",
        lazy="select",
        order_by="Bill.id"
    )

    __table_args__ = (
        Index(
            'uq_users_national_id_live', 'national_id',
            unique=True,
            postgresql_where=_LIVE_ROWS_PG,
            sqlite_where=_LIVE_ROWS_SQLITE
        ),
        Index(
            'uq_users_email_live', 'email',
            unique=True,
            postgresql_where=_LIVE_ROWS_PG,
            sqlite_where=_LIVE_ROWS_SQLITE
        ),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}', deleted={self.is_deleted})>"


class Bill(Base, TimestampMixin):
    """
    An electricity bill for one user.

    Amount is units consumed times the configured rate. Status moves
    PENDING -> PAID exactly once.
    """
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.id"),
        nullable=False,
        index=True
    )

    units: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[BillStatus] = mapped_column(
        Enum(BillStatus, name="bill_status"),
        nullable=False,
        default=BillStatus.PENDING,
        index=True
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        Enum(PaymentMethod, name="payment_method"),
        nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    user: Mapped["User"] = relationship("User", back_populates="bills")

    __table_args__ = (
        CheckConstraint('units >= 0', name='ck_bills_units_non_negative'),
        CheckConstraint('amount >= 0', name='ck_bills_amount_non_negative'),
        Index('ix_bills_user_status', 'user_id', 'status'),
    )

    def __repr__(self) -> str:
        return f"<Bill(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def normalize_email(email: Optional[str]) -> str:
    """
    Normalize an email address for storage and uniqueness checks.

    Args:
        email: The email to normalize (can be None)

    Returns:
        Trimmed, lower-cased email, or empty string if None/empty
    """
    if not email:
        return ""
    return email.strip().lower()


def normalize_national_id(national_id: Optional[str]) -> str:
    """
    Normalize a national ID number for storage and uniqueness checks.

    Removes spaces, dashes, dots, commas and slashes, and converts to uppercase.
    """
    if not national_id:
        return ""
    normalized = re.sub(r'[\s\-\.\,\/]', '', national_id)
    return normalized.upper()


NATURAL_KEY_NORMALIZERS = {
    "national_id": normalize_national_id,
    "email": normalize_email,
}
