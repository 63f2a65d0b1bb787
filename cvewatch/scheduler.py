"""
Scheduling for the CVE check.

Runs the orchestrator at 00:00 and 12:00 UTC. A single in-process guard
shared by scheduled ticks and manual triggers ensures one run at a time;
an attempt that finds a run in progress is skipped, not queued.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel

from .config import Config

logger = structlog.get_logger(__name__)

SCHEDULE_HOURS = "0,12"
SCHEDULE_DESCRIPTION = "Every 12 hours (00:00 and 12:00 UTC)"
JOB_ID = "cve_watch_job"
STARTUP_JOB_ID = "cve_watch_startup"


class JobStatus(BaseModel):
    """Introspection snapshot of the CVE watch job."""

    is_running: bool
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    next_run: Optional[datetime] = None
    schedule: str = SCHEDULE_DESCRIPTION


class JobRunState:
    """
    Run flags owned by the scheduler.

    try_begin() is the overlap guard: it flips is_running under a lock and
    reports whether the caller may start a run.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._is_running = False
        self._last_run_at: Optional[datetime] = None
        self._last_run_status: Optional[str] = None

    def try_begin(self) -> bool:
        with self._lock:
            if self._is_running:
                return False
            self._is_running = True
            return True

    def finish(self, status: str, finished_at: datetime):
        with self._lock:
            self._is_running = False
            self._last_run_status = status
            self._last_run_at = finished_at

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def last_run_at(self) -> Optional[datetime]:
        return self._last_run_at

    @property
    def last_run_status(self) -> Optional[str]:
        return self._last_run_status


def next_run_estimate(now: datetime) -> datetime:
    """
    Next 00:00/12:00 UTC boundary after now.

    Before noon UTC this is 12:00 today, otherwise 00:00 tomorrow.
    """
    now = now.astimezone(timezone.utc)
    if now.hour < 12:
        return now.replace(hour=12, minute=0, second=0, microsecond=0)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CVEWatchScheduler:
    """
    Triggers the orchestrator twice a day and on demand.

    Any exception raised by a run is caught and recorded as 'failed';
    it never propagates into the scheduler thread.
    """

    def __init__(
        self,
        orchestrator,
        config: Config,
        scheduler: Optional[BackgroundScheduler] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize the scheduler.

        Args:
            orchestrator: Object with a run(scan_type) method.
            config: Application configuration.
            scheduler: APScheduler instance; a UTC BackgroundScheduler by default.
            clock: Source of the current UTC time.
        """
        self.orchestrator = orchestrator
        self.config = config
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.clock = clock
        self.state = JobRunState()
        self._started = False

    def _job_listener(self, event):
        if event.exception:
            logger.error("job_failed", job_id=event.job_id, exception=str(event.exception))

    def start(self, run_immediately: Optional[bool] = None):
        """
        Register the twice-daily trigger and start the scheduler.

        Args:
            run_immediately: Also run once right away. Defaults to True in production.
        """
        if run_immediately is None:
            run_immediately = self.config.is_production

        self.scheduler.add_listener(self._job_listener, EVENT_JOB_ERROR)
        self.scheduler.add_job(
            self.run_cve_check,
            trigger=CronTrigger(hour=SCHEDULE_HOURS, minute=0, timezone=timezone.utc),
            id=JOB_ID,
            name="CVE Watch",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        if run_immediately:
            logger.info("cve_watch_initial_run_queued")
            # No trigger: APScheduler runs the job once, as soon as possible
            self.scheduler.add_job(self.run_cve_check, id=STARTUP_JOB_ID, replace_existing=True)

        if not self.scheduler.running:
            self.scheduler.start()
        self._started = True

        logger.info("cve_watch_scheduled", schedule=SCHEDULE_DESCRIPTION)

    def stop(self):
        """Cancel future runs. A run already in progress is left to finish."""
        if not self._started:
            return
        self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("cve_watch_stopped")

    def run_cve_check(self, scan_type: str = "scheduled") -> bool:
        """
        Run the orchestrator unless a run is already in progress.

        Args:
            scan_type: 'scheduled' or 'manual'.

        Returns:
            True if a run took place, False if it was skipped.
        """
        if not self.state.try_begin():
            logger.warning("cve_check_skipped_previous_still_running", scan_type=scan_type)
            return False

        started_at = self.clock()
        status = "failed"
        logger.info("cve_check_job_started", scan_type=scan_type, started_at=started_at.isoformat())

        try:
            self.orchestrator.run(scan_type=scan_type)
            status = "success"
        except Exception as e:
            logger.error("cve_check_job_failed", scan_type=scan_type, error=str(e), exc_info=True)
        finally:
            finished_at = self.clock()
            self.state.finish(status, finished_at)
            logger.info(
                "cve_check_job_finished",
                status=status,
                duration_seconds=round((finished_at - started_at).total_seconds(), 1)
            )

        return True

    def trigger_manual_check(self) -> JobStatus:
        """
        Run a check now, in the caller's thread.

        Returns:
            Status after the run, or the in-progress status if skipped.
        """
        logger.info("manual_cve_check_triggered")
        self.run_cve_check(scan_type="manual")
        return self.get_status()

    def get_status(self) -> JobStatus:
        """Current job status with the next-run estimate."""
        return JobStatus(
            is_running=self.state.is_running,
            last_run_at=self.state.last_run_at,
            last_run_status=self.state.last_run_status,
            next_run=next_run_estimate(self.clock()) if self._started else None,
            schedule=SCHEDULE_DESCRIPTION,
        )
