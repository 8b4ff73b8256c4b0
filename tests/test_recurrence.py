import logging
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from models import Category, Frequency, Subscription, Transaction, TransactionType
from recurrence import SubscriptionEngine, advance_date, calculate_next_payment_date


def test_monthly_keeps_day_of_month():
    assert calculate_next_payment_date("2024-01-15", "monthly") == "2024-02-15"


def test_monthly_overflow_rolls_into_following_month():
    assert calculate_next_payment_date("2024-01-31", "monthly") == "2024-03-02"
    assert calculate_next_payment_date("2023-01-31", "monthly") == "2023-03-03"


def test_monthly_crosses_year_boundary():
    assert calculate_next_payment_date("2024-12-15", "monthly") == "2025-01-15"


def test_yearly_from_leap_day():
    assert calculate_next_payment_date("2024-02-29", "yearly") == "2025-03-01"
    assert calculate_next_payment_date("2024-06-10", "yearly") == "2025-06-10"


def test_daily_and_weekly():
    assert calculate_next_payment_date("2024-02-28", "daily") == "2024-02-29"
    assert calculate_next_payment_date("2024-12-28", "weekly") == "2025-01-04"


def test_invalid_frequency_is_rejected():
    with pytest.raises(ValueError, match="Unsupported frequency: fortnightly"):
        calculate_next_payment_date("2024-01-15", "fortnightly")


def test_advance_past_last_representable_date_is_value_error():
    with pytest.raises(ValueError, match="out of range"):
        advance_date(date(9999, 12, 31), "daily")
    with pytest.raises(ValueError, match="out of range"):
        advance_date(date(9999, 6, 1), Frequency.yearly)


def test_result_is_always_after_input():
    start = date(2023, 1, 1)
    for offset in range(0, 800, 7):
        current = start + timedelta(days=offset)
        for frequency in Frequency:
            assert advance_date(current, frequency) > current


def _subscription(session, **overrides) -> Subscription:
    category = Category(name="娯楽費", type=TransactionType.expense, display_order=1)
    session.add(category)
    session.flush()
    values = dict(
        name="Netflix",
        amount=1490,
        category_id=category.id,
        frequency=Frequency.monthly,
        next_payment_date=date(2024, 1, 31),
    )
    values.update(overrides)
    subscription = Subscription(**values)
    session.add(subscription)
    session.commit()
    return subscription


def test_engine_posts_each_due_occurrence(session):
    subscription = _subscription(session)

    posted = SubscriptionEngine(session).post_due(date(2024, 3, 5))

    assert posted == 2
    txns = session.scalars(
        select(Transaction).order_by(Transaction.transaction_date)
    ).all()
    assert [t.transaction_date for t in txns] == [date(2024, 1, 31), date(2024, 3, 2)]
    assert all(t.is_recurring and t.recurring_id == subscription.id for t in txns)
    assert all(t.description == "Netflix" and t.amount == 1490 for t in txns)
    assert all(t.type == TransactionType.expense for t in txns)
    assert subscription.next_payment_date == date(2024, 4, 2)


def test_engine_is_idempotent_per_date(session):
    subscription = _subscription(session)
    engine = SubscriptionEngine(session)
    assert engine.post_due(date(2024, 2, 1)) == 1

    subscription.next_payment_date = date(2024, 1, 31)
    session.flush()
    assert engine.post_due(date(2024, 2, 1)) == 0

    count = session.scalars(select(Transaction)).all()
    assert len(count) == 1
    assert subscription.next_payment_date == date(2024, 3, 2)


def test_engine_skips_inactive_and_manual_subscriptions(session):
    _subscription(session, is_active=False)
    _subscription(session, name="Gym", auto_generate=False)

    assert SubscriptionEngine(session).post_due(date(2024, 6, 1)) == 0
    assert session.scalars(select(Transaction)).all() == []


def test_engine_posts_nothing_before_due_date(session):
    subscription = _subscription(session, next_payment_date=date(2024, 5, 1))

    assert SubscriptionEngine(session).post_due(date(2024, 4, 30)) == 0
    assert subscription.next_payment_date == date(2024, 5, 1)


def test_engine_stops_at_last_representable_date(session, caplog):
    subscription = _subscription(
        session, frequency=Frequency.daily, next_payment_date=date(9999, 12, 31)
    )

    with caplog.at_level(logging.WARNING, logger="recurrence"):
        posted = SubscriptionEngine(session).post_due(date(9999, 12, 31))

    assert posted == 1
    assert subscription.next_payment_date == date(9999, 12, 31)
    assert "subscription_advance_failed" in caplog.text
