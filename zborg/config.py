"""
Configuration loading and validation.

The configuration is a YAML mapping; see load_config for the keys. Values
are validated once here so the backup pipeline only ever sees typed,
checked inputs.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from zborg.backup.archiver import validate_compression
from zborg.backup.labels import BackupTarget, Filesystem, RemoteLocator, RetentionPolicy


class ConfigError(Exception):
    """Raised when the configuration is unreadable or invalid."""
    pass


REQUIRED_KEYS = ('filesystems', 'output_dir', 'passphrase_file', 'retention')


@dataclass
class Config:
    """Validated run configuration"""

    filesystems: List[Filesystem]
    target: BackupTarget
    passphrase: str
    retention: RetentionPolicy

    # Borg
    borg_path: str = 'borg'
    remote_borg_path: Optional[str] = None
    compression: str = 'lz4'
    exclude_marker: str = '.nobackup'
    encryption: str = 'repokey-blake2'

    # ZFS / mounting
    zfs_path: str = 'zfs'
    snapshot_dir: str = '.snapshot'
    snapshot_ready_timeout: float = 30
    snapshot_ready_interval: float = 1
    mount_command: List[str] = field(default_factory=lambda: ['mount', '--bind'])
    umount_command: List[str] = field(default_factory=lambda: ['umount'])

    # Remote bootstrap
    ssh_port: int = 22
    ssh_username: Optional[str] = None
    ssh_key_file: Optional[str] = None

    # Scheduling, history, logging
    schedule: str = '0 3 * * *'
    database_url: Optional[str] = None
    log_dir: Optional[str] = None
    require_root: bool = True


def _require_int(data: Dict[str, Any], key: str, minimum: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"'{key}' must be an integer >= {minimum}, got {value!r}")
    return value


def _require_number(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number, got {value!r}")
    return float(value)


def _command(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not value or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"'{key}' must be a non-empty list of strings")
    return list(value)


def read_passphrase(path: str) -> str:
    """
    Read the repository passphrase.

    Raises:
        ConfigError: If the file is unreadable or the passphrase is empty
    """
    try:
        with open(Path(path).expanduser(), 'r') as f:
            passphrase = f.read().strip('\r\n')
    except OSError as e:
        raise ConfigError(f"Cannot read passphrase file {path}: {e}")

    if not passphrase.strip():
        raise ConfigError(f"Passphrase file is empty: {path}")
    return passphrase


def parse_config(data: Any) -> Config:
    """
    Build a Config from an already-parsed mapping.

    Raises:
        ConfigError: If any value is missing or invalid
    """
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    # Filesystems
    raw_filesystems = data['filesystems']
    if not isinstance(raw_filesystems, list) or not raw_filesystems:
        raise ConfigError("'filesystems' must be a non-empty list")
    try:
        filesystems = [Filesystem.parse(fs) for fs in raw_filesystems]
    except ValueError as e:
        raise ConfigError(str(e))
    if len(set(filesystems)) != len(filesystems):
        raise ConfigError("'filesystems' contains duplicates")

    # Output root and remote
    output_dir = Path(str(data['output_dir'])).expanduser()
    if not output_dir.is_dir():
        raise ConfigError(f"Output directory does not exist: {output_dir}")

    remote = None
    if data.get('remote'):
        try:
            remote = RemoteLocator.parse(data['remote'])
        except ValueError as e:
            raise ConfigError(str(e))

    # Retention
    retention = data['retention']
    if not isinstance(retention, dict):
        raise ConfigError("'retention' must be a mapping with month, week and day")
    policy = RetentionPolicy(
        month_keep=_require_int(retention, 'month'),
        week_keep=_require_int(retention, 'week'),
        day_keep=_require_int(retention, 'day'),
    )

    config = Config(
        filesystems=filesystems,
        target=BackupTarget(root=output_dir, remote=remote),
        passphrase=read_passphrase(data['passphrase_file']),
        retention=policy,
    )

    for key in ('borg_path', 'remote_borg_path', 'exclude_marker', 'encryption',
                'zfs_path', 'snapshot_dir', 'schedule', 'database_url', 'log_dir'):
        if data.get(key) is not None:
            setattr(config, key, str(data[key]))

    if 'compression' in data:
        try:
            config.compression = validate_compression(data['compression'])
        except ValueError as e:
            raise ConfigError(str(e))

    if 'snapshot_ready_timeout' in data:
        config.snapshot_ready_timeout = _require_number(data['snapshot_ready_timeout'], 'snapshot_ready_timeout')
    if 'snapshot_ready_interval' in data:
        config.snapshot_ready_interval = _require_number(data['snapshot_ready_interval'], 'snapshot_ready_interval')
    if 'mount_command' in data:
        config.mount_command = _command(data['mount_command'], 'mount_command')
    if 'umount_command' in data:
        config.umount_command = _command(data['umount_command'], 'umount_command')
    if 'require_root' in data:
        config.require_root = bool(data['require_root'])

    ssh = data.get('ssh') or {}
    if not isinstance(ssh, dict):
        raise ConfigError("'ssh' must be a mapping")
    if 'port' in ssh:
        config.ssh_port = _require_int(ssh, 'port', minimum=1)
    config.ssh_username = ssh.get('username')
    config.ssh_key_file = ssh.get('key_file')

    # Environment overrides
    config.database_url = (
        os.environ.get('ZBORG_DATABASE_URL')
        or config.database_url
        or f"sqlite:///{output_dir / 'zborg.db'}"
    )
    config.log_dir = os.environ.get('ZBORG_LOG_DIR') or config.log_dir

    return config


def load_config(path: str) -> Config:
    """
    Load and validate configuration from a YAML file.

    Required keys: filesystems, output_dir, passphrase_file, retention
    (month/week/day). Optional: remote, compression, exclude_marker,
    encryption, borg_path, remote_borg_path, zfs_path, snapshot_dir,
    snapshot_ready_timeout, snapshot_ready_interval, mount_command,
    umount_command, ssh (port/username/key_file), schedule, database_url,
    log_dir, require_root.

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"Failed to read config {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    return parse_config(data)
