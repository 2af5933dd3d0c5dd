"""
APScheduler configuration for running backups on a cron schedule.

The scheduled job runs the same pipeline as a one-shot invocation with a
fresh RunContext for each firing. A failed run is logged and the scheduler
keeps going.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from zborg.backup.executor import run_backups
from zborg.backup.locking import TargetLockedError
from zborg.backup.selector import RunContext
from zborg.config import ConfigError
from zborg.utils.shell import ExternalToolError


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def run_scheduled_backup(config, session_factory=None) -> bool:
    """
    Run one backup pass from the scheduler.

    Returns:
        True if every filesystem was backed up
    """
    context = RunContext.for_today()
    try:
        run_backups(config, context=context, session_factory=session_factory)
        return True
    except (ExternalToolError, TargetLockedError) as e:
        logger.error(f"Scheduled backup for {context.today.isoformat()} failed: {e}")
        return False


def init_scheduler(config, session_factory=None):
    """
    Initialize and configure APScheduler.

    Args:
        config: Validated Config (uses config.schedule, a crontab expression)
        session_factory: SQLAlchemy sessionmaker for history records

    Raises:
        ConfigError: If the schedule is not a valid crontab expression
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    try:
        trigger = CronTrigger.from_crontab(config.schedule)
    except ValueError as e:
        raise ConfigError(f"Invalid schedule {config.schedule!r}: {e}")

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults)

    scheduler.add_job(
        func=run_scheduled_backup,
        args=[config, session_factory],
        trigger=trigger,
        id='zborg_backup',
        name='Tiered backup run',
        replace_existing=True
    )

    logger.info(f"Scheduled backups with cron '{config.schedule}'")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() or interrupt.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        logger.info("Scheduler starting")
        scheduler.start()
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
