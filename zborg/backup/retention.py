"""
Retention policy enforcement for snapshots and archives.

Two independent passes run after a successful backup:
- Snapshots: exact keep-last-N for the tier that was just backed up.
- Archives: borg prune with all three keep counts, on the local repository
  and the remote one when configured.

Borg prunes by calendar day/week/month buckets regardless of label prefix,
so the surviving archives need not match the surviving snapshots.
"""

import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Sequence

from .archiver import BorgArchiver
from .catalog import SnapshotCatalog
from .labels import BackupTarget, Filesystem, Label, RetentionPolicy, Tier
from .zfs import ZfsManager


logger = logging.getLogger(__name__)


def select_excess(labels: Sequence[Label], keep: int) -> List[Label]:
    """
    Labels to drop so that only the `keep` newest remain.

    Args:
        labels: Labels of a single tier, newest first
        keep: Number of newest labels to retain (>= 0)

    Returns:
        The oldest len(labels) - keep labels, oldest last; empty when
        len(labels) <= keep
    """
    if keep < 0:
        raise ValueError(f"keep must be non-negative, got {keep}")
    if len(labels) <= keep:
        return []
    return list(labels[keep:])


class RetentionManager:
    """
    Prunes snapshots and archives for a filesystem after a backup.
    """

    def __init__(self, zfs: ZfsManager, catalog: SnapshotCatalog,
                 archiver: BorgArchiver, policy: RetentionPolicy):
        self.zfs = zfs
        self.catalog = catalog
        self.archiver = archiver
        self.policy = policy
        self.logs = []

    def enforce(self, filesystem: Filesystem, tier: Tier, target: BackupTarget,
                current: Optional[Label] = None) -> Dict[str, Any]:
        """
        Run both pruning passes for a filesystem.

        Args:
            filesystem: Filesystem that was just backed up
            tier: Tier acted on this run (only its snapshots are pruned)
            target: Archive target holding the filesystem's repositories
            current: Label created this run; never destroyed

        Returns:
            Dict with results:
            {
                'snapshots_destroyed': List[Label],
                'archive_stores_pruned': int
            }

        Raises:
            ExternalToolError: If zfs or borg fails
        """
        destroyed = self.prune_snapshots(filesystem, tier, current=current)

        stores = 0
        if self.prune_archives(target.local_repository(filesystem)):
            stores += 1

        remote_repository = target.remote_repository(filesystem)
        if remote_repository is not None:
            if self.prune_archives(remote_repository, remote=True):
                stores += 1
        else:
            self._log("Remote target not configured, skipping remote prune")

        return {
            'snapshots_destroyed': destroyed,
            'archive_stores_pruned': stores
        }

    def prune_snapshots(self, filesystem: Filesystem, tier: Tier,
                        current: Optional[Label] = None) -> List[Label]:
        """
        Destroy all but the newest `keep` snapshots of one tier.

        `current` survives even with keep 0.

        Returns:
            Labels destroyed, newest first
        """
        keep = self.policy.keep_for(tier)
        labels = self.catalog.find_all(filesystem, tier)
        excess = [label for label in select_excess(labels, keep) if label != current]

        self._log(f"Snapshot retention for {filesystem} {tier}: {len(labels)} present, keep {keep}")

        for label in excess:
            self.zfs.destroy_snapshot(filesystem, label)
            self._log(f"Destroyed snapshot: {filesystem.snapshot(label)}")

        return excess

    def prune_archives(self, repository: str, remote: bool = False) -> bool:
        """
        Prune a Borg repository with the policy's daily/weekly/monthly counts.

        Returns:
            False when the pass was skipped because every keep count is 0
            (borg refuses to prune without a keep rule)
        """
        if not any(self.policy.keep_for(tier) for tier in Tier):
            logger.warning(f"All retention counts are 0, not pruning archives in {repository}")
            return False

        self.archiver.prune(repository, self.policy, remote=remote)
        self._log(f"Pruned archives in {repository}")
        return True

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
