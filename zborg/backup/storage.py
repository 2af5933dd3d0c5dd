"""
Archive target bootstrapping.

Supports:
- LocalTarget: Borg repository under the local output root
- RemoteTarget: Borg repository on a remote host, directory created via SSH

Both are idempotent and run before every backup.
"""

import logging
import posixpath
import shlex
from pathlib import Path
from typing import Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from zborg.utils.shell import ExternalToolError
from .archiver import BorgArchiver
from .labels import RemoteLocator


logger = logging.getLogger(__name__)


class LocalTarget:
    """
    Local Borg repository for one filesystem.
    """

    def __init__(self, repository: str, archiver: BorgArchiver):
        self.repository = repository
        self.archiver = archiver

    def ensure(self):
        """
        Create the repository directory parents and init the repository once.

        Raises:
            ExternalToolError: If borg init fails
        """
        repo_path = Path(self.repository)
        repo_path.parent.mkdir(parents=True, exist_ok=True)

        # borg writes a config file at repository creation
        if (repo_path / 'config').exists():
            logger.debug(f"Local repository exists: {self.repository}")
            return

        self.archiver.init(self.repository)


class RemoteTarget:
    """
    Remote Borg repository for one filesystem.

    The parent directory is created over SSH with paramiko; borg itself
    reaches the host through its own ssh transport.
    """

    def __init__(self, locator: RemoteLocator, archiver: BorgArchiver,
                 port: int = 22, username: Optional[str] = None,
                 key_file: Optional[str] = None, timeout: int = 30):
        """
        Args:
            locator: Remote repository locator (host:directory)
            archiver: Archiver used for borg info/init
            port: SSH port
            username: SSH username (defaults to the user@ part of the locator)
            key_file: Private key path (defaults to agent/~/.ssh keys)
            timeout: Connection timeout in seconds
        """
        self.locator = locator
        self.archiver = archiver
        self.port = port
        self.username = username or locator.username
        self.key_file = key_file
        self.timeout = timeout

        self.ssh_client = None

    @property
    def repository(self) -> str:
        return str(self.locator)

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            ExternalToolError: If connection fails
        """
        step = f"connect to {self.locator.hostname}"
        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.locator.hostname,
                'port': self.port,
                'timeout': self.timeout
            }
            if self.username:
                connect_kwargs['username'] = self.username
            if self.key_file:
                connect_kwargs['key_filename'] = str(Path(self.key_file).expanduser())

            self.ssh_client.connect(**connect_kwargs)

        except paramiko.AuthenticationException as e:
            raise ExternalToolError(step, stderr=f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            raise ExternalToolError(step, stderr=f"SSH connection failed: {e}")
        except OSError as e:
            raise ExternalToolError(step, stderr=str(e))

    def _exec(self, command: str, step: str) -> str:
        """
        Run a command on the remote host.

        Raises:
            ExternalToolError: If the command exits non-zero
        """
        logger.debug(f"remote exec [{step}]: {command}")
        try:
            _, stdout, stderr = self.ssh_client.exec_command(command, timeout=self.timeout)
            exit_status = stdout.channel.recv_exit_status()
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
        except paramiko.SSHException as e:
            raise ExternalToolError(step, stderr=str(e))

        if exit_status != 0:
            raise ExternalToolError(step, [command], returncode=exit_status, stderr=err)
        return out

    def ensure(self):
        """
        Create the remote parent directory and init the repository once.

        Raises:
            ExternalToolError: If SSH, mkdir or borg init fails
        """
        parent = posixpath.dirname(self.locator.directory.rstrip('/')) or '.'

        try:
            self._connect()
            self._exec(
                f"mkdir -p {shlex.quote(parent)}",
                step=f"create remote directory {self.locator.host}:{parent}"
            )
        finally:
            self.cleanup()

        if self.archiver.exists(self.repository, remote=True):
            logger.debug(f"Remote repository exists: {self.repository}")
            return

        self.archiver.init(self.repository, remote=True)

    def cleanup(self):
        """Close SSH connection."""
        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Ignoring error while closing SSH connection: {e}")
            self.ssh_client = None
