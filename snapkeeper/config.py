import os
import json


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def _env_list(name):
    value = os.environ.get(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


def _env_source_entries():
    """Read SOURCE_ENTRIES as a JSON list of source entry dicts."""
    raw = os.environ.get('SOURCE_ENTRIES')
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except ValueError as e:
        raise ValueError(f"SOURCE_ENTRIES is not valid JSON: {e}")
    if not isinstance(entries, list):
        raise ValueError("SOURCE_ENTRIES must be a JSON list")
    return entries


class Config:
    """Base configuration"""

    DEBUG = False
    TESTING = False

    # Backups
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/data/backups'
    MAX_BACKUPS = int(os.environ.get('MAX_BACKUPS') or 20)
    SOURCE_ENTRIES = _env_source_entries()
    EXCLUDE_PATTERNS = _env_list('EXCLUDE_PATTERNS')
    COPY_BUFFER_SIZE = int(os.environ.get('COPY_BUFFER_SIZE') or 64 * 1024)

    # Scheduler
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', True)
    # Crontab expression; empty means backups only run on shutdown or on demand
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON', '0 * * * *')
    BACKUP_ON_SHUTDOWN = _env_bool('BACKUP_ON_SHUTDOWN', True)
    # None means the local time zone, which is also what archive names use
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or None

    # History
    HISTORY_DATABASE_URL = os.environ.get('HISTORY_DATABASE_URL', 'sqlite:////data/snapkeeper.db')

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    HISTORY_DATABASE_URL = f'sqlite:///{os.path.join(DATA_DIR, "snapkeeper.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SCHEDULER_ENABLED = False
    BACKUP_SCHEDULE_CRON = ''
    BACKUP_ON_SHUTDOWN = False
    HISTORY_DATABASE_URL = 'sqlite:///:memory:'
    SOURCE_ENTRIES = []
    EXCLUDE_PATTERNS = []


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
