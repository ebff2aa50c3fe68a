import logging
from datetime import date
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from recurrence import FixedExpenseEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

JOB_ID = "fixed_expenses_daily"


class SchedulerManager:
    """Daily pass that posts the fixed expenses due today."""

    def __init__(
        self, session_factory: Optional[Callable[[], Session]] = None
    ) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.session_factory = session_factory
        self.hour = settings.scheduler_hour
        self.minute = settings.scheduler_minute

    def run_once(self, source: str = "manual", today: Optional[date] = None) -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope(self.session_factory) as session:
            created = FixedExpenseEngine(session).post_due_templates(today)
        logger.info(f"scheduler_run: source={source} created={created}")
        return created

    def start(self) -> None:
        # Catch up if the process was down at the scheduled time.
        self.run_once("startup")

        trigger = CronTrigger(hour=self.hour, minute=self.minute)
        self.scheduler.add_job(
            self.run_once,
            trigger,
            args=[f"daily_{self.hour:02d}:{self.minute:02d}"],
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily {self.hour:02d}:{self.minute:02d} run"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
