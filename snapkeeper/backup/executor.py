"""
Backup orchestrator - runs one complete backup cycle.

Workflow:
1. Ensure the backup directory exists
2. Prune old archives (failures are recorded, never fatal)
3. Compute the archive name for the current minute; skip if it exists
4. Write the archive, then prune again so the new archive counts
5. Hand the outcome to the outcome sink

A cycle never raises to its caller. Cycles for the same backup directory are
serialized; different directories are independent.
"""

import os
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Callable, Dict, Any

from .sources import SourceEntry, SourceUnavailable, create_source_entries
from .compression import (
    write_archive,
    generate_archive_filename,
    remove_stale_partials,
    ArchiveExistsError,
    DEFAULT_BUFFER_SIZE
)
from .retention import RetentionManager


logger = logging.getLogger(__name__)

OutcomeSink = Callable[['BackupOutcome'], None]

_directory_locks: Dict[str, threading.Lock] = {}
_directory_locks_guard = threading.Lock()


def _lock_for(directory: str) -> threading.Lock:
    """Return the process-wide lock for a backup directory."""
    key = os.path.normcase(os.path.realpath(directory))
    with _directory_locks_guard:
        lock = _directory_locks.get(key)
        if lock is None:
            lock = _directory_locks[key] = threading.Lock()
        return lock


@dataclass
class BackupOutcome:
    """What one backup cycle did."""

    destination: str
    pruned: int = 0
    pruned_errors: List[str] = field(default_factory=list)
    created: Optional[str] = None
    write_error: Optional[Exception] = None
    skipped: bool = False
    unavailable_sources: List[SourceUnavailable] = field(default_factory=list)
    file_size_bytes: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.write_error is not None:
            return 'failed'
        if self.skipped:
            return 'skipped'
        return 'success'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'destination': self.destination,
            'status': self.status,
            'pruned': self.pruned,
            'pruned_errors': list(self.pruned_errors),
            'created': self.created,
            'write_error': str(self.write_error) if self.write_error is not None else None,
            'skipped': self.skipped,
            'unavailable_sources': [str(item) for item in self.unavailable_sources],
            'file_size_bytes': self.file_size_bytes,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None
        }


def log_outcome(outcome: BackupOutcome):
    """Default outcome sink: report the outcome through logging."""
    if outcome.status == 'failed':
        logger.error(f"Backup failed for {outcome.destination}: {outcome.write_error}")
    elif outcome.status == 'skipped':
        logger.info(f"Backup skipped, archive for this minute already exists in {outcome.destination}")
    else:
        logger.info(f"Backed up data to: {os.path.basename(outcome.created)}")

    for error in outcome.pruned_errors:
        logger.warning(f"Could not delete an old backup: {error}")


def _report(outcome_sink: OutcomeSink, outcome: BackupOutcome):
    """Hand the outcome to the sink; a failing sink only gets logged."""
    try:
        outcome_sink(outcome)
    except Exception as e:
        logger.error(f"Outcome sink failed: {e}")


class BackupOrchestrator:
    """
    Prune-then-write backup cycle for one backup directory.
    """

    def __init__(
        self,
        destination: str,
        sources: List[SourceEntry],
        max_backups: int = 20,
        exclude_patterns: List[str] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        outcome_sink: Optional[OutcomeSink] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            destination: Backup directory holding the archives
            sources: Ordered source entries to capture
            max_backups: Retention cap
            exclude_patterns: Glob patterns of files to leave out
            buffer_size: Copy buffer size for archive writing
            outcome_sink: Callable receiving each BackupOutcome
            clock: Returns the current local time (default: datetime.now)
        """
        self.destination = str(destination)
        self.sources = list(sources)
        self.max_backups = max_backups
        self.exclude_patterns = exclude_patterns or []
        self.buffer_size = buffer_size
        self.outcome_sink = outcome_sink or log_outcome
        self.clock = clock
        self.logs = []

    def run_backup_cycle(self) -> BackupOutcome:
        """
        Run one backup cycle.

        Returns:
            BackupOutcome; errors are captured in it, never raised
        """
        with _lock_for(self.destination):
            self.logs = []
            outcome = BackupOutcome(destination=self.destination)

            try:
                outcome.started_at = self._now()
                self._run(outcome)
            except Exception as e:
                # Anything not handled by a step still ends up in the outcome
                outcome.write_error = e
                self._log(f"Backup cycle failed: {e}", level=logging.ERROR)

            outcome.completed_at = self._timestamp()
            if outcome.started_at is None:
                outcome.started_at = outcome.completed_at
            outcome.logs = list(self.logs)

        _report(self.outcome_sink, outcome)
        return outcome

    def _run(self, outcome: BackupOutcome):
        """Execute the cycle steps, filling in outcome."""
        self._log(f"Starting backup cycle for: {self.destination}")

        try:
            Path(self.destination).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            outcome.write_error = e
            self._log(f"Cannot create backup directory: {e}", level=logging.ERROR)
            return

        # Step 1: Prune
        self._prune(outcome)

        # Step 2: Name
        filename = generate_archive_filename(outcome.started_at)
        archive_path = os.path.join(self.destination, filename)
        if os.path.exists(archive_path):
            outcome.skipped = True
            self._log(f"Archive {filename} already exists, skipping")
            return

        # Step 3: Write
        self._clean_partials()
        self._log(f"Creating archive: {filename}")
        try:
            result = write_archive(
                archive_path,
                self.sources,
                exclude_patterns=self.exclude_patterns,
                buffer_size=self.buffer_size
            )
        except ArchiveExistsError:
            outcome.skipped = True
            self._log(f"Archive {filename} was created concurrently, skipping")
            return
        except Exception as e:
            outcome.write_error = e
            self._log(f"Failed to create archive: {e}", level=logging.ERROR)
            return

        outcome.created = result.path
        outcome.file_size_bytes = result.size_bytes
        outcome.unavailable_sources = result.unavailable
        for item in result.unavailable:
            self._log(f"Source unavailable: {item}", level=logging.WARNING)
        self._log(
            f"Archive created: {filename} "
            f"({len(result.entries)} entries, {result.size_bytes / 1024 / 1024:.2f} MB)"
        )

        # Step 4: Prune again so the new archive counts against the cap
        self._prune(outcome)

    def _prune(self, outcome: BackupOutcome):
        manager = RetentionManager()
        try:
            result = manager.prune(self.destination, self.max_backups)
            outcome.pruned += result.pruned_count
            errors = result.errors
        except Exception as e:
            errors = [str(e)]
            self._log(f"Retention failed: {e}", level=logging.WARNING)
        finally:
            self.logs.extend(manager.logs)

        for error in errors:
            if error not in outcome.pruned_errors:
                outcome.pruned_errors.append(error)

    def _clean_partials(self):
        """Drop work files of interrupted writes; the directory lock is held."""
        try:
            for name in remove_stale_partials(self.destination):
                self._log(f"Removed stale partial archive: {name}", level=logging.WARNING)
        except OSError as e:
            self._log(f"Could not clean up partial archives: {e}", level=logging.WARNING)

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now()

    def _timestamp(self) -> datetime:
        """Current time from the clock, falling back to the system clock."""
        try:
            return self._now()
        except Exception as e:
            self._log(f"Clock failed, using system time: {e}", level=logging.WARNING)
            return datetime.now()

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level used for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def create_orchestrator(config, outcome_sink: Optional[OutcomeSink] = None) -> BackupOrchestrator:
    """
    Build an orchestrator from a Config object.

    Args:
        config: Config class or instance (BACKUP_DIR, MAX_BACKUPS,
            SOURCE_ENTRIES, EXCLUDE_PATTERNS, COPY_BUFFER_SIZE)
        outcome_sink: Callable receiving each BackupOutcome

    Returns:
        BackupOrchestrator instance
    """
    return BackupOrchestrator(
        destination=config.BACKUP_DIR,
        sources=create_source_entries(config.SOURCE_ENTRIES),
        max_backups=config.MAX_BACKUPS,
        exclude_patterns=config.EXCLUDE_PATTERNS,
        buffer_size=config.COPY_BUFFER_SIZE,
        outcome_sink=outcome_sink
    )


def run_backup_cycle(config, outcome_sink: Optional[OutcomeSink] = None) -> BackupOutcome:
    """
    Run one backup cycle for a Config object.

    Returns:
        BackupOutcome of the cycle; a broken configuration is reported as a
        failed outcome
    """
    try:
        orchestrator = create_orchestrator(config, outcome_sink)
    except Exception as e:
        logger.error(f"Invalid backup configuration: {e}")
        now = datetime.now()
        outcome = BackupOutcome(
            destination=str(getattr(config, 'BACKUP_DIR', '')),
            write_error=e,
            started_at=now,
            completed_at=now
        )
        _report(outcome_sink or log_outcome, outcome)
        return outcome

    return orchestrator.run_backup_cycle()
