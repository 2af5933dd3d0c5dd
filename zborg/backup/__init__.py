"""
Backup module for zborg.

This module handles the core backup functionality including:
- Snapshot catalog and tier selection
- Snapshot creation and bind mounting
- Archiving to local and remote Borg repositories
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, run_backups
from .catalog import SnapshotCatalog
from .selector import RunContext, TierSelector, select_tier
from .archiver import BorgArchiver
from .storage import LocalTarget, RemoteTarget
from .retention import RetentionManager, select_excess
from .zfs import ZfsManager

__all__ = [
    'BackupExecutor',
    'run_backups',
    'SnapshotCatalog',
    'RunContext',
    'TierSelector',
    'select_tier',
    'BorgArchiver',
    'LocalTarget',
    'RemoteTarget',
    'RetentionManager',
    'select_excess',
    'ZfsManager'
]
