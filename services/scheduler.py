import datetime
import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

JOB_ID = "automatic_backup"


class CronScheduleTrigger:
    """
    Runs a single callback on a crontab schedule ('0 2 * * *').

    Holds at most one job: start() replaces whatever was scheduled before,
    stop() removes it and is safe to call at any time.
    """
    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self.scheduler = scheduler or BackgroundScheduler()
        self.cron_expression: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.scheduler.get_job(JOB_ID) is not None

    @property
    def next_run_time(self) -> Optional[datetime.datetime]:
        job = self.scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    def start(self, cron_expression: str, callback: Callable[[], None]) -> None:
        """
        Schedules `callback` on the given crontab expression.

        Raises:
            ValueError: If the expression is not a valid crontab.
        """
        trigger = CronTrigger.from_crontab(cron_expression)

        self.scheduler.add_job(
            callback,
            trigger,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,   # a slow backup never overlaps the next tick
            coalesce=True,     # missed ticks (sleep/hibernate) run once
            misfire_grace_time=3600,
        )
        self.cron_expression = cron_expression

        if not self.scheduler.running:
            self.scheduler.start()

        logger.info("Automatic backups scheduled: %s", cron_expression)

    def stop(self) -> None:
        """Removes the scheduled job, if there is one."""
        if self.scheduler.get_job(JOB_ID):
            self.scheduler.remove_job(JOB_ID)
            logger.info("Automatic backups stopped")
        self.cron_expression = None

    def shutdown(self) -> None:
        """Stops the job and the scheduler thread."""
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
