"""
Archive engine handler.

Drives the borg CLI for repository initialization, archive creation and
calendar-bucketed pruning. Supported compression:
- none, lz4, zstd, zlib, lzma (optionally with a level, e.g. zstd,10)
- auto,<algorithm>[,level]
"""

import logging
from typing import List, Optional

from zborg.utils.shell import ExternalToolError, run_command
from .labels import Label, RetentionPolicy


logger = logging.getLogger(__name__)

COMPRESSION_ALGORITHMS = ('none', 'lz4', 'zstd', 'zlib', 'lzma')


def validate_compression(spec: str) -> str:
    """
    Validate a borg compression spec.

    Raises:
        ValueError: If the algorithm or level is not valid
    """
    parts = str(spec).split(',')
    if parts[0] == 'auto':
        parts = parts[1:]

    if not parts or parts[0] not in COMPRESSION_ALGORITHMS:
        raise ValueError(
            f"Invalid compression: {spec}. "
            f"Valid algorithms: {list(COMPRESSION_ALGORITHMS)}"
        )
    if len(parts) > 2 or (len(parts) == 2 and not parts[1].isdigit()):
        raise ValueError(f"Invalid compression level in: {spec}")

    return spec


class BorgArchiver:
    """
    Creates and prunes Borg archives in local or remote repositories.

    The passphrase is handed to borg through BORG_PASSPHRASE in the child
    environment only.
    """

    def __init__(self, passphrase: str, borg_path: str = 'borg',
                 compression: str = 'lz4', exclude_marker: str = '.nobackup',
                 encryption: str = 'repokey-blake2',
                 remote_borg_path: Optional[str] = None):
        self.passphrase = passphrase
        self.borg_path = borg_path
        self.compression = validate_compression(compression)
        self.exclude_marker = exclude_marker
        self.encryption = encryption
        self.remote_borg_path = remote_borg_path

    def _env(self):
        return {'BORG_PASSPHRASE': self.passphrase}

    def _base(self, command: str, remote: bool) -> List[str]:
        args = [self.borg_path, command]
        if remote and self.remote_borg_path:
            args += ['--remote-path', self.remote_borg_path]
        return args

    def exists(self, repository: str, remote: bool = False) -> bool:
        """Return True if `borg info` can open the repository."""
        try:
            run_command(
                self._base('info', remote) + [repository],
                step=f"inspect repository {repository}",
                env=self._env()
            )
            return True
        except ExternalToolError as e:
            # also a wrong passphrase, network error or lock timeout; init then fails
            logger.warning(f"Repository {repository} not usable, will try to initialize it: {e}")
            return False

    def init(self, repository: str, remote: bool = False):
        logger.info(f"Initializing repository {repository} (encryption: {self.encryption})")
        run_command(
            self._base('init', remote) + [f'--encryption={self.encryption}', repository],
            step=f"initialize repository {repository}",
            env=self._env()
        )

    def create(self, repository: str, label: Label, source_path: str, remote: bool = False):
        """
        Archive source_path as <repository>::<label>.

        borg runs from inside source_path and archives '.', so stored paths
        are relative to the snapshot root.

        Raises:
            ExternalToolError: If borg fails
        """
        archive = f"{repository}::{label}"
        logger.info(f"Creating archive {archive}")
        run_command(
            self._base('create', remote) + [
                '--stats',
                '--compression', self.compression,
                '--exclude-if-present', self.exclude_marker,
                archive,
                '.',
            ],
            step=f"create archive {archive}",
            env=self._env(),
            cwd=str(source_path)
        )

    def prune(self, repository: str, policy: RetentionPolicy, remote: bool = False):
        """
        Prune a repository with borg's own calendar buckets.

        Raises:
            ExternalToolError: If borg fails
        """
        logger.info(
            f"Pruning {repository} (daily={policy.day_keep}, "
            f"weekly={policy.week_keep}, monthly={policy.month_keep})"
        )
        run_command(
            self._base('prune', remote) + [
                '--list',
                f'--keep-daily={policy.day_keep}',
                f'--keep-weekly={policy.week_keep}',
                f'--keep-monthly={policy.month_keep}',
                repository,
            ],
            step=f"prune repository {repository}",
            env=self._env()
        )
