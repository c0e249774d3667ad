"""
Shared pytest fixtures for Snapkeeper tests.

This module provides fixtures for:
- A live-looking source data tree
- Source entry lists matching that tree
- Backup directories pre-filled with named archives
- Test configuration and history recorder
- Scheduler state reset
"""

from pathlib import Path

import pytest

from snapkeeper import scheduler as scheduler_module
from snapkeeper.config import TestingConfig
from snapkeeper.history import HistoryRecorder
from snapkeeper.backup.sources import SourceEntry


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a data directory shaped like a game server's storage.

    Creates:
    - stored-blocks/world/a.sfb, b.sfb
    - stored-blocks/world_nether/c.sfb
    - universal-inventories/inv1.sfi, inv2.sfi
    - universal-inventories/deeper/ignored.sfi (below one level, not archived)
    - stored-inventories/chest.sfi
    - stored-chunks/chunks.sfc
    """
    root = tmp_path / 'data-storage'

    world = root / 'stored-blocks' / 'world'
    world.mkdir(parents=True)
    (world / 'a.sfb').write_text('block a')
    (world / 'b.sfb').write_text('block b')

    nether = root / 'stored-blocks' / 'world_nether'
    nether.mkdir()
    (nether / 'c.sfb').write_text('block c')

    universal = root / 'universal-inventories'
    universal.mkdir()
    (universal / 'inv1.sfi').write_text('inventory 1')
    (universal / 'inv2.sfi').write_text('inventory 2')
    (universal / 'deeper').mkdir()
    (universal / 'deeper' / 'ignored.sfi').write_text('too deep')

    stored = root / 'stored-inventories'
    stored.mkdir()
    (stored / 'chest.sfi').write_text('chest')

    chunks = root / 'stored-chunks'
    chunks.mkdir()
    (chunks / 'chunks.sfc').write_text('chunk data')

    return root


@pytest.fixture
def source_entries(source_tree):
    """Source entries covering every kind of entry in source_tree."""
    return [
        SourceEntry(str(source_tree / 'stored-blocks'), 'stored-blocks', per_child_directory=True),
        SourceEntry(str(source_tree / 'universal-inventories'), 'universal-inventories'),
        SourceEntry(str(source_tree / 'stored-inventories'), 'stored-inventories'),
        SourceEntry(str(source_tree / 'stored-chunks' / 'chunks.sfc'), 'stored-chunks/chunks.sfc', is_directory=False),
    ]


@pytest.fixture
def backup_dir(tmp_path):
    """Empty backup directory."""
    directory = tmp_path / 'block-backups'
    directory.mkdir()
    return directory


@pytest.fixture
def make_archives(backup_dir):
    """
    Factory creating placeholder archives with the given names.

    Returns a function taking an iterable of names and returning their paths.
    """
    def _make(names):
        paths = []
        for name in names:
            path = Path(backup_dir) / name
            path.write_bytes(b'PK\x05\x06' + b'\x00' * 18)
            paths.append(path)
        return paths

    return _make


@pytest.fixture
def minute_archive_names():
    """2024-01-01-00-00.zip through 2024-01-01-00-25.zip (26 names)."""
    return [f"2024-01-01-00-{minute:02d}.zip" for minute in range(26)]


@pytest.fixture
def test_config(tmp_path, source_tree):
    """Testing config pointing at temporary directories."""
    class _Config(TestingConfig):
        BACKUP_DIR = str(tmp_path / 'block-backups')
        LOG_DIR = str(tmp_path / 'logs')
        MAX_BACKUPS = 3
        SOURCE_ENTRIES = [
            {'path': str(source_tree / 'universal-inventories'), 'isDirectory': True, 'logicalPrefix': 'universal-inventories'},
            {'path': str(source_tree / 'stored-chunks' / 'chunks.sfc'), 'isDirectory': False, 'logicalPrefix': 'stored-chunks/chunks.sfc'},
        ]

    return _Config


@pytest.fixture
def history_recorder():
    """History recorder on an in-memory SQLite database."""
    return HistoryRecorder('sqlite:///:memory:')


@pytest.fixture(autouse=True)
def reset_scheduler():
    """Make sure no test leaks global scheduler state."""
    yield
    scheduler_module.reset_scheduler()
