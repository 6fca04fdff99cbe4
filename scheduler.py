import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import check_all_users

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"limit_check_run: source={source}")
        with session_scope() as session:
            count = check_all_users(session)
        logger.info(f"limit_check_run: source={source} notifications={count}")

    def start(self) -> None:
        self._run_job("startup")

        minutes = max(self.settings.limit_check_minutes, 1)
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(minutes=minutes),
            args=["interval"],
            id="limit_check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with limit checks every {minutes} min")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
