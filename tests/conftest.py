"""
Shared pytest fixtures for zborg tests.

This module provides fixtures for:
- Domain values (filesystem, retention policy, backup targets)
- An in-memory stand-in for the ZFS snapshot manager
- A mocked Borg archiver
- History database with in-memory SQLite
- Config files with passphrase files
"""

from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from zborg.backup.archiver import BorgArchiver
from zborg.backup.labels import BackupTarget, Filesystem, Label, RemoteLocator, RetentionPolicy
from zborg.backup.selector import RunContext
from zborg.backup.zfs import ZfsManager
from zborg.models import init_database


def make_labels(tier, days):
    """Labels of one tier for a list of (year, month, day) tuples."""
    return [Label(tier=tier, date=date(*d)) for d in days]


@pytest.fixture
def filesystem():
    """The zroot/home filesystem."""
    return Filesystem.parse('zroot/home')


@pytest.fixture
def policy():
    """Keep 12 monthly, 4 weekly and 7 daily backups."""
    return RetentionPolicy(month_keep=12, week_keep=4, day_keep=7)


@pytest.fixture
def context():
    """Friday 2024-03-15: not the first of the month, not Sunday."""
    return RunContext(today=date(2024, 3, 15))


@pytest.fixture
def target(tmp_path):
    """Local-only backup target rooted in a temp directory."""
    root = tmp_path / 'backup'
    root.mkdir()
    return BackupTarget(root=root)


@pytest.fixture
def remote_target(tmp_path):
    """Backup target with a remote replica."""
    root = tmp_path / 'backup-remote'
    root.mkdir()
    return BackupTarget(root=root, remote=RemoteLocator.parse('backup@offsite.example:zborg'))


@pytest.fixture
def mock_zfs(tmp_path):
    """
    ZfsManager mock backed by a plain list of snapshot label strings.

    create_snapshot/destroy_snapshot mutate `mock_zfs.snapshots` so the
    catalog sees the effect of earlier steps. wait_until_ready returns an
    existing directory standing in for the snapshot tree.
    """
    zfs = MagicMock(spec=ZfsManager)
    zfs.snapshots = []

    def create(fs, label):
        zfs.snapshots.append(str(label))

    def destroy(fs, label):
        zfs.snapshots.remove(str(label))

    zfs.list_snapshots.side_effect = lambda fs: list(zfs.snapshots)
    zfs.create_snapshot.side_effect = create
    zfs.destroy_snapshot.side_effect = destroy

    snapshot_tree = tmp_path / 'snapshot-tree'
    snapshot_tree.mkdir()
    (snapshot_tree / 'file.txt').write_text('snapshot content')
    zfs.wait_until_ready.return_value = snapshot_tree

    return zfs


@pytest.fixture
def mock_archiver():
    """BorgArchiver mock; every call succeeds unless a test says otherwise."""
    archiver = MagicMock(spec=BorgArchiver)
    archiver.exists.return_value = True
    return archiver


@pytest.fixture
def session_factory():
    """Session factory for a fresh in-memory history database."""
    return init_database('sqlite:///:memory:')


@pytest.fixture
def passphrase_file(tmp_path):
    path = tmp_path / 'passphrase'
    path.write_text('correct horse battery staple\n')
    return path


@pytest.fixture
def config_data(tmp_path, passphrase_file):
    """Minimal valid config mapping."""
    output_dir = tmp_path / 'out'
    output_dir.mkdir()
    return {
        'filesystems': ['zroot/home', 'zroot/var/db'],
        'output_dir': str(output_dir),
        'passphrase_file': str(passphrase_file),
        'retention': {'month': 12, 'week': 4, 'day': 7},
        'require_root': False,
    }


@pytest.fixture
def write_config(tmp_path):
    """Write a mapping as YAML and return the file path."""
    def _write(data, name='zborg.yaml') -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return path
    return _write
