import logging
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Frequency, Subscription, Transaction, TransactionType


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def _add_months(base: date, months: int) -> date:
    # Days past the end of the target month spill into the next one:
    # Jan 31 + 1 month is Mar 2 in a leap year, Mar 3 otherwise.
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, 1) + timedelta(days=base.day - 1)


def advance_date(current: date, frequency: Union[Frequency, str]) -> date:
    try:
        freq = Frequency(frequency)
    except ValueError:
        raise ValueError(f"Unsupported frequency: {frequency}") from None

    try:
        if freq == Frequency.daily:
            return current + timedelta(days=1)
        if freq == Frequency.weekly:
            return current + timedelta(weeks=1)
        if freq == Frequency.monthly:
            return _add_months(current, 1)
        return _add_months(current, 12)
    except (OverflowError, ValueError):
        raise ValueError(
            f"Next payment date out of range: {current.isoformat()} ({freq.value})"
        ) from None


def calculate_next_payment_date(current: str, frequency: Union[Frequency, str]) -> str:
    """Return the next payment date for ``current`` (``YYYY-MM-DD``)."""
    return advance_date(date.fromisoformat(current), frequency).isoformat()


class SubscriptionEngine:
    """Posts transactions for subscriptions whose payment date has come."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def catch_up(self, subscription: Subscription, today: Optional[date] = None) -> int:
        today = today or local_today()
        posted = 0
        iterations = 0
        max_iterations = 365
        while subscription.next_payment_date <= today and iterations < max_iterations:
            occurrence_date = subscription.next_payment_date
            if self._post_occurrence(subscription, occurrence_date):
                posted += 1
            try:
                subscription.next_payment_date = advance_date(
                    occurrence_date, subscription.frequency
                )
            except ValueError as exc:
                logger.warning(
                    "subscription_advance_failed: subscription_id=%s error=%s",
                    subscription.id,
                    exc,
                )
                break
            iterations += 1
        if iterations >= max_iterations:
            logger.warning(
                "subscription_catch_up_limit: subscription_id=%s next_payment_date=%s",
                subscription.id,
                subscription.next_payment_date,
            )
        return posted

    def post_due(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(Subscription)
            .where(
                Subscription.is_active.is_(True),
                Subscription.auto_generate.is_(True),
                Subscription.next_payment_date <= today,
            )
            .order_by(Subscription.next_payment_date, Subscription.id)
        )
        subscriptions = self.session.scalars(stmt).all()
        count = 0
        for subscription in subscriptions:
            count += self.catch_up(subscription, today)
        self.session.flush()
        return count

    def _post_occurrence(self, subscription: Subscription, occurrence_date: date) -> bool:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.recurring_id == subscription.id,
                Transaction.transaction_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        category = subscription.category
        txn_type = category.type if category else TransactionType.expense
        txn = Transaction(
            amount=subscription.amount,
            type=txn_type,
            category_id=subscription.category_id,
            description=subscription.name,
            transaction_date=occurrence_date,
            is_recurring=True,
            recurring_id=subscription.id,
        )
        self.session.add(txn)
        self.session.flush()
        logger.info(
            "subscription_posted: subscription_id=%s date=%s amount=%s",
            subscription.id,
            occurrence_date,
            subscription.amount,
        )
        return True
