import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import SubscriptionEngine, local_today


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_job(self, source: str = "manual", today: Optional[date] = None) -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            engine = SubscriptionEngine(session)
            count = engine.post_due(today or local_today())
        logger.info(f"scheduler_run: source={source} transactions_posted={count}")
        return count

    def start(self) -> None:
        self.run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["daily_03:15"],
            id="subscriptions_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["hourly_safety_net"],
            id="subscriptions_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
