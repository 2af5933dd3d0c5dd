"""
Backup executor - orchestrates the backup of one filesystem.

Workflow:
1. Create BackupHistory record (status: running)
2. Bootstrap local (and remote) repositories
3. Select the tier and label for today
4. Create the snapshot and wait until its tree is readable
5. Bind-mount the snapshot tree and archive it locally (and remotely)
6. Unmount
7. Prune snapshots of the tier, then prune archives
8. Update BackupHistory (status: success/failed)

Any failing step aborts the filesystem and the error propagates. Nothing
already done is rolled back: a local archive made before a failed remote
archive stays.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .archiver import BorgArchiver
from .catalog import SnapshotCatalog
from .labels import BackupTarget, Filesystem, RetentionPolicy
from .locking import TargetLock
from .mount import BindMount
from .retention import RetentionManager
from .selector import RunContext, TierSelector
from .storage import LocalTarget, RemoteTarget
from .zfs import ZfsManager
from zborg.models import BackupHistory


logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupExecutor:
    """
    Runs the full pipeline for one filesystem.
    """

    def __init__(self, filesystem: Filesystem, context: RunContext,
                 target: BackupTarget, policy: RetentionPolicy,
                 zfs: ZfsManager, archiver: BorgArchiver,
                 session_factory: Optional[Callable] = None,
                 mount_command=('mount', '--bind'), umount_command=('umount',),
                 ssh_options: Optional[dict] = None):
        """
        Initialize backup executor.

        Args:
            filesystem: Filesystem to back up
            context: Immutable run calendar
            target: Local root and optional remote locator
            policy: Keep counts per tier
            zfs: Snapshot manager
            archiver: Borg handler
            session_factory: SQLAlchemy sessionmaker for history records;
                None disables history
            mount_command: Bind mount command prefix
            umount_command: Unmount command prefix
            ssh_options: port/username/key_file for the remote bootstrap
        """
        self.filesystem = filesystem
        self.context = context
        self.target = target
        self.policy = policy
        self.zfs = zfs
        self.archiver = archiver
        self.session_factory = session_factory
        self.mount_command = mount_command
        self.umount_command = umount_command
        self.ssh_options = ssh_options or {}

        self.catalog = SnapshotCatalog(zfs)
        self.label = None
        self.history_record = None
        self.session = None
        self.logs = []

    def execute(self) -> BackupHistory:
        """
        Execute the backup of the filesystem.

        Returns:
            BackupHistory record with status 'success'

        Raises:
            ExternalToolError: If any external step fails; the history
                record is marked 'failed' before the error propagates
        """
        self.history_record = BackupHistory(
            filesystem=str(self.filesystem),
            status='running',
            started_at=_utcnow(),
            remote=self.target.remote is not None,
            snapshots_pruned=0
        )
        if self.session_factory is not None:
            self.session = self.session_factory()
            self.session.add(self.history_record)
            self.session.commit()

        self._log(f"Starting backup of {self.filesystem}")

        try:
            self._execute_workflow()

            self.history_record.status = 'success'
            self.history_record.completed_at = _utcnow()
            self._log(f"Backup of {self.filesystem} completed successfully")

        except Exception as e:
            self.history_record.status = 'failed'
            self.history_record.completed_at = _utcnow()
            self.history_record.error_message = str(e)
            self._log(f"Backup of {self.filesystem} failed: {e}")
            raise

        finally:
            self.history_record.logs = '\n'.join(self.logs)
            if self.session is not None:
                self.session.commit()
                self.session.close()

        return self.history_record

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Bootstrap targets
        self._log("Ensuring archive repositories exist")
        self._bootstrap_targets()

        # Step 2: Select tier
        self.label = TierSelector(self.catalog).select(self.filesystem, self.context)
        self.history_record.tier = self.label.tier.value
        self.history_record.label = str(self.label)
        self._log(f"Selected tier {self.label.tier} (label {self.label})")

        # Step 3: Snapshot
        self.zfs.create_snapshot(self.filesystem, self.label)
        snapshot_path = self.zfs.wait_until_ready(self.filesystem, self.label)
        self._log(f"Snapshot ready: {snapshot_path}")

        # Step 4: Archive
        self._archive(snapshot_path)

        # Step 5: Retention
        self._log("Enforcing retention")
        retention = RetentionManager(self.zfs, self.catalog, self.archiver, self.policy)
        try:
            result = retention.enforce(self.filesystem, self.label.tier, self.target, current=self.label)
        finally:
            self.logs.extend(retention.logs)
        self.history_record.snapshots_pruned = len(result['snapshots_destroyed'])

    def _bootstrap_targets(self):
        LocalTarget(self.target.local_repository(self.filesystem), self.archiver).ensure()

        if self.target.remote is not None:
            RemoteTarget(self.target.remote_locator(self.filesystem), self.archiver, **self.ssh_options).ensure()

    def _archive(self, snapshot_path):
        bind_point = self.target.bind_point(self.filesystem)

        with BindMount(snapshot_path, bind_point, self.mount_command, self.umount_command) as source:
            self._log("Archiving to local repository")
            self.archiver.create(self.target.local_repository(self.filesystem), self.label, source)
            self._log(f"Local archive created: {self.label}")

            remote_repository = self.target.remote_repository(self.filesystem)
            if remote_repository is not None:
                self._log("Archiving to remote repository")
                self.archiver.create(remote_repository, self.label, source, remote=True)
                self._log(f"Remote archive created: {self.label}")
            else:
                self._log("Remote target not configured, skipping")

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = _utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def run_backups(config, context: Optional[RunContext] = None,
                session_factory: Optional[Callable] = None) -> List[BackupHistory]:
    """
    Back up every configured filesystem in order, stopping at the first
    failure.

    Args:
        config: Validated zborg.config.Config
        context: Run calendar (defaults to today)
        session_factory: SQLAlchemy sessionmaker for history records

    Returns:
        BackupHistory records, one per filesystem, all successful

    Raises:
        ExternalToolError: From the first filesystem that fails
        TargetLockedError: If another run holds the target lock
    """
    context = context or RunContext.for_today()

    zfs = ZfsManager(
        zfs_path=config.zfs_path,
        snapshot_dir=config.snapshot_dir,
        ready_timeout=config.snapshot_ready_timeout,
        ready_interval=config.snapshot_ready_interval
    )
    archiver = BorgArchiver(
        passphrase=config.passphrase,
        borg_path=config.borg_path,
        compression=config.compression,
        exclude_marker=config.exclude_marker,
        encryption=config.encryption,
        remote_borg_path=config.remote_borg_path
    )
    ssh_options = {
        'port': config.ssh_port,
        'username': config.ssh_username,
        'key_file': config.ssh_key_file
    }

    logger.info(
        f"Backup run started for {context.today.isoformat()} "
        f"({len(config.filesystems)} filesystems)"
    )

    records = []
    with TargetLock(config.target.lock_path):
        for filesystem in config.filesystems:
            executor = BackupExecutor(
                filesystem, context, config.target, config.retention,
                zfs, archiver,
                session_factory=session_factory,
                mount_command=config.mount_command,
                umount_command=config.umount_command,
                ssh_options=ssh_options
            )
            records.append(executor.execute())

    logger.info(f"Backup run finished: {len(records)} filesystems backed up")
    return records
