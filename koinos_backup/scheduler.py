"""
APScheduler configuration for recurring backups.

A single cron-triggered job runs a full backup (including retention
cleanup) with fixed options. The scheduler blocks the calling process until
it is interrupted.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from koinos_backup.config import BackupOptions, Config
from koinos_backup.errors import BackupError, UsageError
from koinos_backup.backup.executor import execute_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'koinos_backup'


def build_trigger(cron: str, timezone: str = Config.SCHEDULER_TIMEZONE) -> CronTrigger:
    """
    Parse a crontab expression.

    Raises:
        UsageError: If the expression or timezone is invalid
    """
    try:
        return CronTrigger.from_crontab(cron, timezone=timezone)
    except Exception as e:
        raise UsageError(f"Invalid schedule '{cron}' ({timezone}): {e}") from e


def run_scheduled_backup(options: BackupOptions):
    """
    Job body executed by the scheduler.

    A failed run is logged and the scheduler keeps going; the next trigger
    starts a fresh backup.
    """
    logger.info(f"Scheduler executing backup: {options.backup_name}")
    try:
        result = execute_backup(options)
    except BackupError as e:
        logger.error(f"Scheduled backup failed: {e}")
        return None

    for warning in result.warnings:
        logger.warning(f"Scheduled backup warning: {warning}")
    logger.info(f"Scheduled backup completed: {result.value}")
    return result


def init_scheduler(options: BackupOptions, cron: str = Config.SCHEDULE_CRON,
                   timezone: str = Config.SCHEDULER_TIMEZONE) -> BlockingScheduler:
    """
    Create a scheduler with the backup job registered.

    Args:
        options: Backup options used by every run
        cron: Crontab expression for the backup job
        timezone: Timezone the cron expression is evaluated in

    Returns:
        Configured, not yet started scheduler

    Raises:
        UsageError: If options or schedule are invalid
    """
    options.validate()
    trigger = build_trigger(cron, timezone)

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never overlap two backups
        'misfire_grace_time': Config.SCHEDULER_MISFIRE_GRACE_TIME
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone=timezone)

    scheduler.add_job(
        func=run_scheduled_backup,
        args=[options],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup: {options.backup_name}",
        replace_existing=True
    )

    logger.info(f"Scheduled backup job: {options.backup_name} ({cron}, {timezone})")
    return scheduler


def start_scheduler(scheduler: BlockingScheduler):
    """Run the scheduler until interrupted."""
    logger.info("Scheduler started, press Ctrl+C to exit")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
