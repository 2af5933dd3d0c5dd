"""
ZFS snapshot manager.

Thin wrapper over the zfs CLI. The catalog, selector and retention code only
talk to ZFS through this class.
"""

import logging
import time
from pathlib import Path
from typing import List

from zborg.utils.shell import ExternalToolError, run_command, split_lines
from .labels import Filesystem, Label


logger = logging.getLogger(__name__)


class ZfsManager:
    """
    Lists, creates and destroys snapshots of ZFS filesystems.
    """

    def __init__(self, zfs_path: str = 'zfs', snapshot_dir: str = '.snapshot',
                 ready_timeout: float = 30, ready_interval: float = 1):
        """
        Args:
            zfs_path: zfs binary
            snapshot_dir: Directory under a filesystem's mountpoint where
                snapshots are exposed
            ready_timeout: Seconds to wait for a new snapshot to be readable
            ready_interval: Seconds between readiness polls
        """
        self.zfs_path = zfs_path
        self.snapshot_dir = snapshot_dir
        self.ready_timeout = ready_timeout
        self.ready_interval = ready_interval

    def list_snapshots(self, filesystem: Filesystem) -> List[str]:
        """
        List raw snapshot label strings of a filesystem (children excluded).

        Returns:
            Labels in the order zfs printed them

        Raises:
            ExternalToolError: If zfs fails
        """
        output = run_command(
            [self.zfs_path, 'list', '-H', '-p', '-t', 'snapshot', '-o', 'name', '-d', '1', str(filesystem)],
            step=f"list snapshots of {filesystem}"
        )

        prefix = f"{filesystem}@"
        return [line[len(prefix):] for line in split_lines(output) if line.startswith(prefix)]

    def create_snapshot(self, filesystem: Filesystem, label: Label):
        snapshot = filesystem.snapshot(label)
        logger.info(f"Creating snapshot {snapshot}")
        run_command([self.zfs_path, 'snapshot', snapshot], step=f"create snapshot {snapshot}")

    def destroy_snapshot(self, filesystem: Filesystem, label: Label):
        snapshot = filesystem.snapshot(label)
        logger.info(f"Destroying snapshot {snapshot}")
        run_command([self.zfs_path, 'destroy', snapshot], step=f"destroy snapshot {snapshot}")

    def mountpoint(self, filesystem: Filesystem) -> Path:
        """
        Return the mountpoint of a filesystem.

        Raises:
            ExternalToolError: If zfs fails or the filesystem is not mounted
                at a real path (none/legacy)
        """
        step = f"get mountpoint of {filesystem}"
        output = run_command(
            [self.zfs_path, 'get', '-H', '-o', 'value', 'mountpoint', str(filesystem)],
            step=step
        )
        value = output.strip()
        if not value.startswith('/'):
            raise ExternalToolError(step, stderr=f"filesystem has no usable mountpoint ({value or 'empty'})")
        return Path(value)

    def snapshot_path(self, filesystem: Filesystem, label: Label) -> Path:
        return self.mountpoint(filesystem) / self.snapshot_dir / str(label)

    def wait_until_ready(self, filesystem: Filesystem, label: Label) -> Path:
        """
        Poll until a freshly created snapshot's tree is readable.

        Returns:
            Path of the snapshot tree

        Raises:
            ExternalToolError: If the tree does not appear within ready_timeout
        """
        path = self.snapshot_path(filesystem, label)

        end = time.time() + self.ready_timeout
        while True:
            if path.is_dir():
                logger.debug(f"Snapshot tree ready: {path}")
                return path
            if time.time() >= end:
                break
            time.sleep(self.ready_interval)

        raise ExternalToolError(
            f"wait for snapshot {filesystem.snapshot(label)}",
            stderr=f"{path} not readable after {self.ready_timeout}s"
        )
