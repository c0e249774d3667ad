"""
Backup module for Snapkeeper.

This module handles the core backup functionality including:
- Source expansion (local directories and files)
- Archive writing and the archive naming contract
- Retention policy enforcement
- Backup cycle orchestration
"""

from .executor import BackupOrchestrator, BackupOutcome, run_backup_cycle
from .sources import SourceEntry, LocalSource
from .compression import write_archive, generate_archive_filename, parse_archive_filename
from .retention import RetentionManager

__all__ = [
    'BackupOrchestrator',
    'BackupOutcome',
    'run_backup_cycle',
    'SourceEntry',
    'LocalSource',
    'write_archive',
    'generate_archive_filename',
    'parse_archive_filename',
    'RetentionManager'
]
