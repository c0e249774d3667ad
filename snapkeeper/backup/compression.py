"""
Archive creation and the archive naming contract.

Archives are ZIP files named after the local minute they were taken in:
``yyyy-MM-dd-HH-mm.zip`` (e.g. ``2024-03-07-22-15.zip``). Retention parses the
same names back into timestamps, so changing the pattern is a breaking change
for existing backup directories.
"""

import os
import re
import time
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .sources import LocalSource, SourceEntry, SourceUnavailable


logger = logging.getLogger(__name__)

ARCHIVE_NAME_FORMAT = '%Y-%m-%d-%H-%M'
ARCHIVE_EXTENSION = '.zip'
PARTIAL_SUFFIX = '.partial'
DEFAULT_BUFFER_SIZE = 64 * 1024

_ARCHIVE_NAME_RE = re.compile(r'([0-9]{4})-([0-9]{2})-([0-9]{2})-([0-9]{2})-([0-9]{2})\.zip')

# Earliest timestamp a ZIP header can hold
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


class ArchiveExistsError(CompressionError):
    """Raised when the target archive name is already taken."""
    pass


class ArchiveWriteError(CompressionError):
    """Raised when the archive cannot be created or written."""
    pass


@dataclass
class ArchiveResult:
    """Summary of a finished archive."""

    path: str
    entries: List[str] = field(default_factory=list)
    unavailable: List[SourceUnavailable] = field(default_factory=list)
    size_bytes: int = 0


def generate_archive_filename(now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a point in time.

    Args:
        now: Local time to name the archive after (default: current time)

    Returns:
        Filename (without path), minute resolution
    """
    if now is None:
        now = datetime.now()
    return now.strftime(ARCHIVE_NAME_FORMAT) + ARCHIVE_EXTENSION


def parse_archive_filename(filename: str) -> Optional[datetime]:
    """
    Parse an archive filename back into its timestamp.

    Only exact, zero-padded ``yyyy-MM-dd-HH-mm.zip`` names are accepted.

    Returns:
        The naive local datetime, or None if the name is not an archive name
    """
    match = _ARCHIVE_NAME_RE.fullmatch(filename)
    if not match:
        return None

    try:
        return datetime(*(int(part) for part in match.groups()))
    except ValueError:
        # e.g. month 13
        return None


def partial_path_for(destination) -> Path:
    """Hidden work file an archive is written to before it is published."""
    destination = Path(destination)
    return destination.with_name(f".{destination.name}{PARTIAL_SUFFIX}")


def remove_stale_partials(directory: str) -> List[str]:
    """
    Remove work files left behind by interrupted archive writes.

    Only ``.<archive name>.partial`` files are touched. Callers must make sure
    no write into the directory is in progress.

    Returns:
        Names of the removed work files
    """
    removed = []

    try:
        with os.scandir(directory) as it:
            names = [item.name for item in it]
    except FileNotFoundError:
        return removed

    for name in sorted(names):
        if not (name.startswith('.') and name.endswith(PARTIAL_SUFFIX)):
            continue
        if parse_archive_filename(name[1:-len(PARTIAL_SUFFIX)]) is None:
            continue

        try:
            os.unlink(os.path.join(directory, name))
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to remove stale partial archive {name}: {e}")
            continue

        removed.append(name)

    return removed


def write_archive(
    destination: str,
    entries: List[SourceEntry],
    exclude_patterns: List[str] = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE
) -> ArchiveResult:
    """
    Write source entries into a new ZIP archive.

    The archive is streamed into a hidden ``.<name>.partial`` file next to the
    destination and only appears under its real name once complete. Sources
    that vanish while the archive is written are skipped and reported.

    Args:
        destination: Archive path to create; must not exist yet
        entries: Ordered source entries to capture
        exclude_patterns: Glob patterns of files to leave out
        buffer_size: Size of the copy buffer in bytes

    Returns:
        ArchiveResult describing the written archive

    Raises:
        ArchiveExistsError: If destination already exists
        ArchiveWriteError: If the archive cannot be written; nothing is left
            behind at destination
    """
    if buffer_size <= 0:
        raise ValueError(f"Invalid buffer size: {buffer_size}")

    destination = Path(destination)
    if destination.exists():
        raise ArchiveExistsError(f"Archive already exists: {destination}")

    work_path = partial_path_for(destination)
    source = LocalSource(entries, exclude_patterns)
    written = []
    owns_work_file = False

    try:
        try:
            raw = open(work_path, 'xb')
        except FileExistsError:
            raise ArchiveWriteError(
                f"Stale partial archive {work_path.name} from an interrupted write "
                f"blocks {destination.name}"
            )
        owns_work_file = True

        with raw:
            with zipfile.ZipFile(raw, 'w', zipfile.ZIP_DEFLATED) as zipf:
                for path, arcname in source.iter_files():
                    if _add_file(zipf, source, path, arcname, buffer_size):
                        written.append(arcname)

        _publish(work_path, destination)

    except CompressionError:
        raise
    except Exception as e:
        raise ArchiveWriteError(f"Failed to create archive {destination.name}: {e}") from e
    finally:
        if owns_work_file:
            _remove_partial(work_path)

    result = ArchiveResult(
        path=str(destination),
        entries=written,
        unavailable=list(source.unavailable),
        size_bytes=get_archive_size(str(destination))
    )
    logger.info(
        f"Archive written: {destination.name} "
        f"({len(written)} entries, {len(result.unavailable)} unavailable)"
    )
    return result


def _add_file(
    zipf: zipfile.ZipFile,
    source: LocalSource,
    path: Path,
    arcname: str,
    buffer_size: int
) -> bool:
    """
    Stream one file into the archive.

    Returns:
        False if the file vanished or could not be opened
    """
    try:
        input_file = open(path, 'rb')
    except FileNotFoundError:
        source.mark_unavailable(path, 'file not found')
        return False
    except (PermissionError, IsADirectoryError) as e:
        source.mark_unavailable(path, f"cannot open: {e}")
        return False

    with input_file:
        stat = os.fstat(input_file.fileno())

        info = zipfile.ZipInfo(arcname, max(time.localtime(stat.st_mtime)[:6], _ZIP_EPOCH))
        info.compress_type = zipfile.ZIP_DEFLATED
        info.file_size = stat.st_size
        info.external_attr = (stat.st_mode & 0xFFFF) << 16

        with zipf.open(info, 'w') as output:
            while True:
                chunk = input_file.read(buffer_size)
                if not chunk:
                    break
                output.write(chunk)

    return True


def _publish(work_path: Path, destination: Path):
    """
    Move the finished work file to its final name without overwriting.

    Raises:
        ArchiveExistsError: If destination appeared in the meantime
    """
    try:
        os.link(work_path, destination)
    except FileExistsError:
        raise ArchiveExistsError(f"Archive already exists: {destination}")
    except OSError:
        # Filesystem without hard link support
        if destination.exists():
            raise ArchiveExistsError(f"Archive already exists: {destination}")
        os.rename(work_path, destination)


def _remove_partial(work_path: Path):
    try:
        work_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove partial archive {work_path}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
