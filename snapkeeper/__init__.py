import os
import atexit
import logging
from logging.handlers import RotatingFileHandler


def configure_logging(config):
    """Configure service logging"""

    os.makedirs(config.LOG_DIR, exist_ok=True)

    log_level = logging.DEBUG if config.DEBUG else getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(config.LOG_DIR, 'snapkeeper.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    logger = logging.getLogger('snapkeeper')
    logger.setLevel(log_level)
    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_service(config_name=None, outcome_sink=None):
    """
    Snapkeeper service factory.

    Builds the backup orchestrator from configuration, wires the outcome sink
    (logging plus backup history) and, unless disabled, starts the scheduler
    with a shutdown hook that takes a final backup.

    Args:
        config_name: Key into snapkeeper.config.config, or a Config class
        outcome_sink: Replaces the default logging/history sink

    Returns:
        BackupOrchestrator instance
    """
    if config_name is None:
        config_name = os.environ.get('SNAPKEEPER_ENV', 'production')

    from snapkeeper.config import config
    service_config = config[config_name] if isinstance(config_name, str) else config_name

    configure_logging(service_config)
    logger = logging.getLogger('snapkeeper')

    os.makedirs(service_config.BACKUP_DIR, exist_ok=True)

    if outcome_sink is None:
        outcome_sink = _default_outcome_sink(service_config)

    from snapkeeper.backup.executor import create_orchestrator
    orchestrator = create_orchestrator(service_config, outcome_sink)
    logger.info(
        f"Backing up {len(orchestrator.sources)} source entries to {orchestrator.destination} "
        f"(keeping {orchestrator.max_backups})"
    )

    if service_config.SCHEDULER_ENABLED:
        from snapkeeper.scheduler import init_scheduler, start_scheduler, shutdown

        init_scheduler(service_config, orchestrator)
        start_scheduler()

        # Stop the scheduler (and take the final backup) on process exit
        atexit.register(shutdown)
        logger.info("Scheduler initialized and started successfully")
    else:
        logger.info("Scheduler disabled, backups run on demand only")

    return orchestrator


def _default_outcome_sink(service_config):
    """Log every outcome and, if configured, record it in the history database."""
    from snapkeeper.backup.executor import log_outcome

    if not service_config.HISTORY_DATABASE_URL:
        return log_outcome

    from snapkeeper.history import HistoryRecorder

    database_url = service_config.HISTORY_DATABASE_URL
    if database_url.startswith('sqlite:///') and ':memory:' not in database_url:
        db_dir = os.path.dirname(database_url.replace('sqlite:///', '', 1))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    recorder = HistoryRecorder(database_url)

    def sink(outcome):
        log_outcome(outcome)
        recorder.record(outcome)

    return sink
