"""
Retention policy enforcement for backups.

Keeps at most ``max_backups`` archives in a backup directory. Only files whose
name follows the archive naming contract are considered; everything else in
the directory is left alone.
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List

from .compression import parse_archive_filename


logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """Raised when the backup directory cannot be read."""
    pass


@dataclass(frozen=True)
class BackupArchive:
    """An archive file whose name parsed into a creation time."""

    name: str
    created_at: datetime
    path: str


@dataclass
class PruneResult:
    """Outcome of a prune run."""

    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def pruned_count(self) -> int:
        return len(self.deleted)

    @property
    def ok(self) -> bool:
        return not self.errors


class RetentionManager:
    """
    Deletes the oldest archives once a directory holds more than the cap.

    Archives are ordered by the timestamp in their name, newest first, with
    the raw name as tie breaker.
    """

    def __init__(self):
        """Initialize retention manager."""
        self.logs = []

    def list_archives(self, directory: str) -> List[BackupArchive]:
        """
        List archives in a directory, newest first.

        Args:
            directory: Backup directory

        Returns:
            Sorted list of BackupArchive; empty if the directory does not exist

        Raises:
            RetentionError: If the directory cannot be listed
        """
        archives = []

        try:
            with os.scandir(directory) as it:
                for item in it:
                    created_at = parse_archive_filename(item.name)
                    if created_at is None:
                        continue
                    try:
                        if not item.is_file():
                            continue
                    except OSError:
                        continue
                    archives.append(BackupArchive(item.name, created_at, item.path))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise RetentionError(f"Failed to list backup directory {directory}: {e}")

        archives.sort(key=lambda archive: (archive.created_at, archive.name), reverse=True)
        return archives

    def prune(self, directory: str, max_backups: int) -> PruneResult:
        """
        Delete the oldest archives beyond ``max_backups``.

        Individual delete failures are collected in the result and do not
        stop the remaining deletions.

        Args:
            directory: Backup directory
            max_backups: Number of newest archives to keep

        Returns:
            PruneResult with deleted names and per-file errors

        Raises:
            ValueError: If max_backups is not a positive integer
            RetentionError: If the directory cannot be listed
        """
        if isinstance(max_backups, bool) or not isinstance(max_backups, int) or max_backups < 1:
            raise ValueError(f"max_backups must be a positive integer, got {max_backups!r}")

        result = PruneResult()
        archives = self.list_archives(directory)

        if len(archives) <= max_backups:
            self._log(f"Retention: {len(archives)}/{max_backups} archives, nothing to prune")
            return result

        excess = len(archives) - max_backups
        self._log(f"Retention: {len(archives)}/{max_backups} archives, deleting {excess} oldest")

        for archive in archives[max_backups:]:
            try:
                Path(archive.path).unlink()
                result.deleted.append(archive.name)
                self._log(f"Deleted old backup: {archive.name}")
            except FileNotFoundError:
                # Already gone, which is what we wanted
                result.deleted.append(archive.name)
                self._log(f"Old backup already removed: {archive.name}")
            except OSError as e:
                error_msg = f"Failed to delete {archive.name}: {e}"
                result.errors.append(error_msg)
                self._log(error_msg, level=logging.WARNING)

        return result

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

