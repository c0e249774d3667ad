"""
APScheduler configuration and triggers for Snapkeeper.

Manages:
- Periodic backup cycles (cron expression)
- Manual "run now" triggers
- The final backup on shutdown

Backup cycles run on a single scheduler worker thread so they never block
the host process.
"""

import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup_cycle'

# Global scheduler instance and the orchestrator it drives
scheduler = None
orchestrator = None
backup_on_shutdown = False


def init_scheduler(config, backup_orchestrator):
    """
    Initialize and configure APScheduler.

    Args:
        config: Config class (BACKUP_SCHEDULE_CRON, SCHEDULER_TIMEZONE,
            BACKUP_ON_SHUTDOWN)
        backup_orchestrator: BackupOrchestrator run by every trigger

    Returns:
        The BackgroundScheduler instance
    """
    global scheduler, orchestrator, backup_on_shutdown

    if scheduler is not None:
        return scheduler

    orchestrator = backup_orchestrator
    backup_on_shutdown = config.BACKUP_ON_SHUTDOWN

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never overlap backup cycles
        'misfire_grace_time': 300
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=config.SCHEDULER_TIMEZONE
    )

    if config.BACKUP_SCHEDULE_CRON:
        scheduler.add_job(
            func=_execute_backup_wrapper,
            trigger=CronTrigger.from_crontab(config.BACKUP_SCHEDULE_CRON, timezone=config.SCHEDULER_TIMEZONE),
            id=BACKUP_JOB_ID,
            name='Periodic Backup',
            replace_existing=True
        )
        logger.info(f"Scheduled periodic backup ({config.BACKUP_SCHEDULE_CRON})")
    else:
        logger.info("No backup schedule configured, backups run on demand only")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Raises:
        RuntimeError: If init_scheduler() was not called
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler, waiting for a running cycle to finish."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")


def shutdown():
    """
    Shutdown hook: stop the scheduler, then take a final backup if configured.
    """
    stop_scheduler()

    if backup_on_shutdown and orchestrator is not None:
        logger.info("Running final backup before shutdown")
        run_now()


def reset_scheduler():
    """Drop the global scheduler state (stopping it first)."""
    global scheduler, orchestrator, backup_on_shutdown

    stop_scheduler()
    scheduler = None
    orchestrator = None
    backup_on_shutdown = False


def _execute_backup_wrapper():
    """Run one backup cycle in scheduler context."""
    outcome = run_now()
    logger.info(f"Scheduled backup cycle finished with status: {outcome.status}")


def run_now():
    """
    Run a backup cycle synchronously in the calling thread.

    Returns:
        BackupOutcome of the cycle

    Raises:
        RuntimeError: If no orchestrator is configured
    """
    if orchestrator is None:
        raise RuntimeError("Scheduler not initialized")

    return orchestrator.run_backup_cycle()


def trigger_backup_now() -> str:
    """
    Queue a backup cycle on the scheduler worker.

    Returns:
        ID of the one-off scheduler job

    Raises:
        RuntimeError: If scheduler not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp() * 1000)}"

    # Short delay so the job is registered before it fires
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup',
        replace_existing=False
    )

    logger.info(f"Manually triggered backup: {job_id}")
    return job_id


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
            'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running
