from contextlib import contextmanager
from datetime import date

from sqlalchemy import select

import main
import scheduler
from config import get_settings
from models import Frequency, Subscription, Transaction
from scheduler import SchedulerManager


def test_run_job_posts_due_subscriptions(session_factory, monkeypatch):
    @contextmanager
    def scope():
        db = session_factory()
        try:
            yield db
            db.commit()
        finally:
            db.close()

    monkeypatch.setattr(scheduler, "session_scope", scope)
    with session_factory() as db:
        db.add(
            Subscription(
                name="Spotify",
                amount=980,
                frequency=Frequency.weekly,
                next_payment_date=date(2024, 4, 1),
            )
        )
        db.commit()

    manager = SchedulerManager()
    assert manager.run_job("test", today=date(2024, 4, 15)) == 3
    assert manager.run_job("test", today=date(2024, 4, 15)) == 0

    with session_factory() as db:
        dates = db.scalars(
            select(Transaction.transaction_date).order_by(Transaction.transaction_date)
        ).all()
        sub = db.scalars(select(Subscription)).one()
    assert dates == [date(2024, 4, 1), date(2024, 4, 8), date(2024, 4, 15)]
    assert sub.next_payment_date == date(2024, 4, 22)


def test_startup_starts_scheduler_only_when_enabled(monkeypatch):
    started = []
    monkeypatch.setattr(main.scheduler_manager, "start", lambda: started.append(True))
    monkeypatch.delenv("KAKEIBO_SCHEDULER_ENABLED", raising=False)

    main.startup_event()
    assert started == []

    monkeypatch.setenv("KAKEIBO_SCHEDULER_ENABLED", "true")
    get_settings.cache_clear()
    main.startup_event()
    assert started == [True]
