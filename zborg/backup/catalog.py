"""
Snapshot catalog: which labelled snapshots exist for a filesystem and tier.
"""

import logging
from typing import List, Optional

from .labels import Filesystem, Label, Tier
from .zfs import ZfsManager


logger = logging.getLogger(__name__)


class SnapshotCatalog:
    """
    Read-only view over a filesystem's snapshots, grouped by tier.
    """

    def __init__(self, zfs: ZfsManager):
        self.zfs = zfs

    def find_all(self, filesystem: Filesystem, tier: Tier) -> List[Label]:
        """
        All labels of a tier, newest first.

        Snapshots whose name starts with the tier prefix but does not parse
        as a label (e.g. ``day-manual``) are ignored.

        Raises:
            ExternalToolError: If listing snapshots fails
        """
        prefix = f"{tier.value}-"
        labels = []

        for name in self.zfs.list_snapshots(filesystem):
            if not name.startswith(prefix):
                continue
            try:
                labels.append(Label.parse(name))
            except ValueError:
                logger.debug(f"Ignoring unmanaged snapshot {filesystem}@{name}")

        return sorted(labels, reverse=True)

    def find_last(self, filesystem: Filesystem, tier: Tier) -> Optional[Label]:
        """Newest label of a tier, or None if the tier has no snapshot yet."""
        labels = self.find_all(filesystem, tier)
        return labels[0] if labels else None
