"""
Bind mounts for exposing a snapshot tree at a stable path.
"""

import logging
import os
import re
from pathlib import Path
from typing import Sequence

from zborg.utils.shell import ExternalToolError, run_command


logger = logging.getLogger(__name__)

MOUNTINFO = '/proc/self/mountinfo'

_OCTAL_ESCAPE_RE = re.compile(r'\\([0-7]{3})')


def mount_count(path: Path) -> int:
    """
    Number of mounts stacked at path.

    Reads the kernel mount table where there is one; elsewhere falls back to
    os.path.ismount, which sees at most one mount and misses bind mounts
    from the same device.
    """
    path = os.path.realpath(path)
    try:
        with open(MOUNTINFO, 'r') as f:
            lines = f.readlines()
    except FileNotFoundError:
        return 1 if os.path.ismount(path) else 0

    count = 0
    for line in lines:
        fields = line.split()
        if len(fields) < 5:
            continue
        # mount point is the fifth field, with spaces etc. octal-escaped
        mount_point = _OCTAL_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), fields[4])
        if mount_point == path:
            count += 1
    return count


class BindMount:
    """
    Context manager that bind-mounts source at target and always unmounts.

    Mounts still present at target from a crashed run are released before
    mounting again.

    Usage:
        with BindMount(snapshot_path, bind_point) as path:
            archiver.create(repo, label, path)
    """

    def __init__(self, source: Path, target: Path,
                 mount_command: Sequence[str] = ('mount', '--bind'),
                 umount_command: Sequence[str] = ('umount',)):
        self.source = Path(source)
        self.target = Path(target)
        self.mount_command = list(mount_command)
        self.umount_command = list(umount_command)
        self.mounted = False

    def __enter__(self) -> Path:
        self.target.mkdir(parents=True, exist_ok=True)

        stale = mount_count(self.target)
        if stale:
            logger.warning(f"Stale mount found at {self.target} ({stale} layers), unmounting")
        for _ in range(stale):
            self._unmount()

        run_command(
            self.mount_command + [str(self.source), str(self.target)],
            step=f"bind mount {self.source} at {self.target}"
        )
        self.mounted = True
        logger.info(f"Mounted {self.source} at {self.target}")
        return self.target

    def __exit__(self, exc_type, exc, tb):
        if not self.mounted:
            return False

        try:
            self._unmount()
            self.mounted = False
            logger.info(f"Unmounted {self.target}")
        except ExternalToolError:
            if exc_type is None:
                raise
            # Keep the original failure; the unmount failure is only logged.
            logger.error(f"Failed to unmount {self.target} after error", exc_info=True)
        return False

    def _unmount(self):
        run_command(self.umount_command + [str(self.target)], step=f"unmount {self.target}")
