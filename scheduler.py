import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from database import session_scope
from services import RequestLogService


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, session_factory: Optional[sessionmaker[Session]] = None) -> None:
        settings = get_settings()
        self.retention_days = settings.log_retention_days
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        if self.retention_days <= 0:
            return 0
        cutoff = datetime.utcnow() - timedelta(days=self.retention_days)
        logger.info(f"log_retention_run: source={source} cutoff={cutoff.isoformat()}")
        with session_scope(self.session_factory) as session:
            removed = RequestLogService(session).purge_older_than(cutoff)
        logger.info(f"log_retention_run: source={source} removed={removed}")
        return removed

    def start(self) -> None:
        if self.retention_days <= 0:
            logger.info("Log retention disabled; scheduler not started")
            return

        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="log_retention_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily 03:15 log retention "
            f"({self.retention_days} days)"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
