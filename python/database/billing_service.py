"""
Bill generation, listing and payment.

Tariff is a flat rate per consumed unit (kWh), taken from configuration.

Usage:
    with db_provider.get_unit_of_work() as uow:
        service = BillingService(uow.session, config.billing)
        bill = service.generate_bill("USER0001", units=120)
        uow.commit()
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from database.models import Bill, BillStatus, PaymentMethod
from database.repositories import (
    BillRepository,
    UserRepository,
    EntityNotFoundError,
    BillAlreadyPaidError,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def calculate_amount(units: int, rate_per_unit: Decimal) -> Decimal:
    """units x rate, rounded half-up to cents."""
    if units < 0:
        raise ValueError("units must not be negative")
    return (Decimal(units) * rate_per_unit).quantize(CENTS, rounding=ROUND_HALF_UP)


class BillingService:
    """Billing operations bound to one session. The caller commits."""

    def __init__(self, session: Session, config):
        self.session = session
        self.rate_per_unit: Decimal = config.rate_per_unit
        self.due_days: int = config.due_days
        self.bills = BillRepository(session)
        self.users = UserRepository(session)

    def generate_bill(
        self,
        user_id: str,
        units: int,
        due_date: Optional[date] = None
    ) -> Bill:
        """
        Create a PENDING bill for a live user.

        Args:
            user_id: Owner of the bill
            units: Consumed units (kWh)
            due_date: Defaults to today + due_days

        Raises:
            EntityNotFoundError: If the user does not exist or was deleted
        """
        if self.users.get_by_id(user_id) is None:
            raise EntityNotFoundError(f"User not found: {user_id}")

        bill = Bill(
            user_id=user_id,
            units=units,
            amount=calculate_amount(units, self.rate_per_unit),
            due_date=due_date or (date.today() + timedelta(days=self.due_days)),
            status=BillStatus.PENDING
        )
        self.bills.create(bill)
        self.session.refresh(bill)

        logger.info("Generated bill %s for %s: %s units, amount %s", bill.id, user_id, units, bill.amount)
        return bill

    def get_bill(self, bill_id: int) -> Bill:
        """
        Raises:
            EntityNotFoundError: If the bill does not exist
        """
        bill = self.bills.get_by_id(bill_id)
        if bill is None:
            raise EntityNotFoundError(f"Bill not found: {bill_id}")
        return bill

    def list_bills(
        self,
        user_id: Optional[str] = None,
        status: Optional[BillStatus] = None
    ) -> List[Bill]:
        return self.bills.list_bills(user_id=user_id, status=status)

    def list_user_bills(self, user_id: str) -> List[Bill]:
        """
        Raises:
            EntityNotFoundError: If the user does not exist or was deleted
        """
        if self.users.get_by_id(user_id) is None:
            raise EntityNotFoundError(f"User not found: {user_id}")
        return self.bills.list_bills(user_id=user_id)

    def pay_bill(self, bill_id: int, payment_method: PaymentMethod) -> Bill:
        """
        Mark a PENDING bill as PAID.

        Raises:
            EntityNotFoundError: If the bill does not exist
            BillAlreadyPaidError: If the bill was already paid
        """
        if not self.bills.mark_paid(bill_id, payment_method, datetime.now(timezone.utc)):
            # Distinguish the two reasons the conditional update matched nothing
            self.get_bill(bill_id)
            raise BillAlreadyPaidError(f"Bill already paid: {bill_id}")

        bill = self.get_bill(bill_id)
        self.session.refresh(bill)
        logger.info("Bill %s paid via %s", bill_id, payment_method.value)
        return bill
