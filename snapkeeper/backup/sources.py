"""
Source handlers for backup operations.

A backup is described by an ordered list of SourceEntry items. Each entry is
expanded into (filesystem path, archive entry name) pairs right before the
archive is written. Sources belong to a live system and may change while
they are read, so anything that disappears is reported instead of raised.
"""

import os
import logging
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Dict, Any, Iterator, Tuple, Optional


logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when a source entry is misconfigured."""
    pass


@dataclass(frozen=True)
class SourceUnavailable:
    """A configured source that vanished or could not be read."""

    path: str
    reason: str

    def __str__(self):
        return f"{self.path}: {self.reason}"


@dataclass(frozen=True)
class SourceEntry:
    """
    One configured item to capture.

    Attributes:
        path: File or directory on disk
        prefix: Logical entry name inside the archive
        is_directory: True to include the immediate files of ``path``
        per_child_directory: Treat every subdirectory of ``path`` as its own
            directory entry under ``prefix/<name>``
    """

    path: str
    prefix: str = ''
    is_directory: bool = True
    per_child_directory: bool = False

    @property
    def entry_prefix(self) -> str:
        prefix = self.prefix.replace('\\', '/').strip('/')
        if not prefix:
            prefix = Path(self.path).name
        return prefix


class LocalSource:
    """
    Expands source entries from the local filesystem.

    Directories are read one level deep. Children are yielded sorted by name
    so two snapshots of the same tree lay out identically.
    """

    def __init__(self, entries: List[SourceEntry], exclude_patterns: List[str] = None):
        """
        Initialize local source handler.

        Args:
            entries: Ordered source entries
            exclude_patterns: Glob patterns to skip (matched on name or full path)
        """
        self.entries = entries
        self.exclude_patterns = exclude_patterns or []
        self.unavailable: List[SourceUnavailable] = []

    def _should_exclude(self, path: Path) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Args:
            path: Path to check

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def mark_unavailable(self, path, reason: str):
        """Record a source that could not be captured."""
        record = SourceUnavailable(str(path), reason)
        self.unavailable.append(record)
        logger.warning(f"Source unavailable, skipping: {record}")

    def iter_files(self) -> Iterator[Tuple[Path, str]]:
        """
        Yield (path, entry name) pairs for every file to archive.

        Missing entries are recorded in ``self.unavailable`` and skipped.
        """
        for entry in self.entries:
            source_path = Path(entry.path).expanduser()

            if not entry.is_directory:
                if not source_path.is_file():
                    self.mark_unavailable(source_path, 'file not found')
                    continue
                if not self._should_exclude(source_path):
                    yield source_path, entry.entry_prefix
                continue

            if entry.per_child_directory:
                for child, name in self._list_children(source_path, directories=True):
                    yield from self._iter_directory(child, f"{entry.entry_prefix}/{name}")
            else:
                yield from self._iter_directory(source_path, entry.entry_prefix)

    def _iter_directory(self, directory: Path, prefix: str) -> Iterator[Tuple[Path, str]]:
        for child, name in self._list_children(directory, directories=False):
            yield child, f"{prefix}/{name}"

    def _list_children(self, directory: Path, directories: bool) -> List[Tuple[Path, str]]:
        """
        List immediate children of a directory.

        Args:
            directory: Directory to list
            directories: Return subdirectories instead of regular files

        Returns:
            Sorted list of (path, name) tuples; empty if the directory is gone
        """
        try:
            with os.scandir(directory) as it:
                children = []
                for item in it:
                    try:
                        wanted = item.is_dir() if directories else item.is_file()
                    except OSError:
                        # Vanished between listing and stat
                        continue
                    if wanted and not self._should_exclude(Path(item.path)):
                        children.append((Path(item.path), item.name))
        except FileNotFoundError:
            self.mark_unavailable(directory, 'directory not found')
            return []
        except NotADirectoryError:
            self.mark_unavailable(directory, 'not a directory')
            return []
        except PermissionError as e:
            self.mark_unavailable(directory, f"permission denied: {e}")
            return []

        children.sort(key=lambda child: child[1])
        return children


def _get(config: Dict[str, Any], *keys, default=None):
    for key in keys:
        if key in config:
            return config[key]
    return default


def create_source_entry(config: Dict[str, Any]) -> SourceEntry:
    """
    Build a SourceEntry from a configuration dict.

    Accepts both snake_case keys (``path``, ``is_directory``, ``prefix``,
    ``per_child_directory``) and the camelCase spelling (``isDirectory``,
    ``logicalPrefix``).

    Raises:
        SourceError: If ``path`` is missing
    """
    path = _get(config, 'path')
    if not path:
        raise SourceError(f"Source entry has no path: {config}")

    return SourceEntry(
        path=str(path),
        prefix=_get(config, 'prefix', 'logicalPrefix', 'logical_prefix', default='') or '',
        is_directory=bool(_get(config, 'is_directory', 'isDirectory', default=True)),
        per_child_directory=bool(_get(config, 'per_child_directory', 'perChildDirectory', default=False))
    )


def create_source_entries(configs: Optional[List[Dict[str, Any]]]) -> List[SourceEntry]:
    """Build SourceEntry items from a list of configuration dicts."""
    return [create_source_entry(config) for config in configs or []]
