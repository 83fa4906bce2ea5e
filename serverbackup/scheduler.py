"""
APScheduler configuration and backup scheduling for serverbackup.

Manages:
- The periodic backup tick (interval from BACKUP_INTERVAL_MINUTES)
- The primary and worker execution contexts used by the backup engine
- The last backup on shutdown

Executors:
- primary: one thread; evaluation, world saves and autosave toggles
- worker: file copy and compression
"""

import itertools
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from serverbackup.config import ConfigurationError


logger = logging.getLogger(__name__)

# One server tick, 20 per second
TICK_SECONDS = 0.05

PERIODIC_JOB_ID = 'backup_tick'

# Global scheduler instance
scheduler = None


class TaskContexts:
    """
    Runs callables on the scheduler's primary or worker executor.
    """

    def __init__(self, background_scheduler):
        self.scheduler = background_scheduler
        self._ids = itertools.count(1)

    def run_on_primary(self, fn):
        return self._submit(fn, 'primary')

    def run_on_worker(self, fn):
        return self._submit(fn, 'worker')

    def run_on_primary_after_delay(self, fn, ticks: int):
        run_date = datetime.now(timezone.utc) + timedelta(seconds=ticks * TICK_SECONDS)
        return self._submit(fn, 'primary', trigger=DateTrigger(run_date=run_date))

    def _submit(self, fn, executor: str, trigger=None):
        name = getattr(fn, '__name__', None) or getattr(getattr(fn, 'func', None), '__name__', 'task')
        return self.scheduler.add_job(
            func=fn,
            trigger=trigger,
            executor=executor,
            id=f"{executor}_{next(self._ids)}",
            name=f"{executor}: {name}",
            misfire_grace_time=None
        )


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    executors = {
        'default': ThreadPoolExecutor(max_workers=1),
        'primary': ThreadPoolExecutor(max_workers=1),
        'worker': ThreadPoolExecutor(max_workers=2)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def schedule_backups(orchestrator, interval_minutes: int):
    """
    Add the periodic backup tick.

    Args:
        orchestrator: BackupOrchestrator to tick
        interval_minutes: Minutes between ticks
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if interval_minutes <= 0:
        raise ConfigurationError(f"Backup interval must be positive: {interval_minutes}")

    scheduler.add_job(
        func=orchestrator.on_tick,
        trigger=IntervalTrigger(minutes=interval_minutes),
        executor='primary',
        id=PERIODIC_JOB_ID,
        name='Scheduled backup',
        replace_existing=True
    )
    logger.info(f"Scheduled backups every {interval_minutes} minutes")


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler(wait: bool = True):
    """Stop the APScheduler, letting running jobs finish by default."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("APScheduler stopped")


def shutdown_backups(orchestrator, last_backup: bool = True, timeout: float = 600):
    """
    Shutdown hook: take a last backup if due, wait for it, stop the scheduler.

    Args:
        orchestrator: BackupOrchestrator
        last_backup: Attempt a last backup first
        timeout: Seconds to wait for a running backup
    """
    if last_backup and scheduler is not None and scheduler.running:
        try:
            orchestrator.request_last_backup(timeout)
        except Exception as e:
            logger.error(f"Last backup failed to start: {e}", exc_info=e)

    if not orchestrator.wait_until_idle(timeout):
        logger.warning(f"Backup still running after {timeout}s, stopping anyway")

    stop_scheduler(wait=True)


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
