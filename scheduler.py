import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from services import ReconciliationService


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.sweep_enabled
        self.sweep_hour = settings.sweep_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"reconcile_run: source={source}")
        with session_scope() as session:
            result = ReconciliationService(session).sweep()
            logger.info(
                f"reconcile_run: source={source} relinked={result.relinked} "
                f"removed_spending={result.removed_spending} "
                f"removed_allocations={result.removed_allocations}"
            )

    def start(self) -> None:
        if not self.enabled:
            logger.info("Reconciliation sweep disabled")
            return

        trigger = CronTrigger(hour=self.sweep_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.sweep_hour:02d}:00"],
            id="reconcile_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily sweep at {self.sweep_hour:02d}:00")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
