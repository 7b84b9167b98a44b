import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import RenewalService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> dict[str, int]:
        logger.info(f"renewal_run: source={source}")
        with session_scope() as session:
            summary = RenewalService(session).process_due_auto_renewals()
        logger.info(
            f"renewal_run: source={source} processed={summary['processed']} "
            f"errors={summary['errors']} skipped={summary['skipped']}"
        )
        return summary

    def start(self) -> None:
        self._run_job("startup")

        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="auto_renew_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="auto_renew_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Renewal scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Renewal scheduler stopped")
