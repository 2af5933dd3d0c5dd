"""
Value types shared by the backup pipeline.

Every string that names something (a filesystem, a snapshot label, a remote
locator) is parsed once into one of these types. Parsing is strict and raises
ValueError on malformed input.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Optional


LABEL_DATE_FORMAT = '%Y%m%d'

_LABEL_RE = re.compile(r'^(?P<tier>[a-z]+)-(?P<date>\d{8})$')
_FILESYSTEM_PART_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.:-]*$')


class Tier(Enum):
    """Backup tiers. Declaration order is precedence order."""

    MONTH = 'month'
    WEEK = 'week'
    DAY = 'day'

    @property
    def precedence(self) -> int:
        """Higher value wins: month=3, week=2, day=1."""
        return len(Tier) - list(Tier).index(self)

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class Label:
    """
    Snapshot / archive label: ``<tier>-<YYYYMMDD>``.

    Labels order by tier precedence first, then by date, so a sorted list of
    same-tier labels is in chronological order no matter how the string form
    would sort.
    """

    tier: Tier
    date: date

    @classmethod
    def parse(cls, text: str) -> 'Label':
        """
        Parse a label string.

        Raises:
            ValueError: If the string is not ``<known tier>-<valid YYYYMMDD>``
        """
        match = _LABEL_RE.match(text)
        if not match:
            raise ValueError(f"Malformed label: {text!r}")

        try:
            tier = Tier(match.group('tier'))
        except ValueError:
            raise ValueError(f"Unknown tier in label: {text!r}")

        try:
            day = datetime.strptime(match.group('date'), LABEL_DATE_FORMAT).date()
        except ValueError:
            raise ValueError(f"Invalid date in label: {text!r}")

        return cls(tier=tier, date=day)

    @property
    def sort_key(self):
        return (self.tier.precedence, self.date)

    def __lt__(self, other):
        if not isinstance(other, Label):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __le__(self, other):
        if not isinstance(other, Label):
            return NotImplemented
        return self.sort_key <= other.sort_key

    def __gt__(self, other):
        if not isinstance(other, Label):
            return NotImplemented
        return self.sort_key > other.sort_key

    def __ge__(self, other):
        if not isinstance(other, Label):
            return NotImplemented
        return self.sort_key >= other.sort_key

    def __str__(self):
        return f"{self.tier.value}-{self.date.strftime(LABEL_DATE_FORMAT)}"


@dataclass(frozen=True)
class Filesystem:
    """A ZFS filesystem: ``pool/name``. The name may contain further slashes."""

    pool: str
    name: str

    @classmethod
    def parse(cls, text: str) -> 'Filesystem':
        """
        Parse ``pool/name``.

        Raises:
            ValueError: If there is no pool/name split, a part is empty, or a
                part contains characters ZFS would reject
        """
        if not isinstance(text, str):
            raise ValueError(f"Filesystem must be a string, got {type(text).__name__}")

        pool, sep, name = text.strip().partition('/')
        if not sep or not pool or not name:
            raise ValueError(f"Filesystem must look like 'pool/name': {text!r}")

        for part in [pool] + name.split('/'):
            if not _FILESYSTEM_PART_RE.match(part):
                raise ValueError(f"Invalid filesystem component {part!r} in {text!r}")

        return cls(pool=pool, name=name)

    def snapshot(self, label: Label) -> str:
        """Full snapshot name, e.g. ``zroot/home@day-20240315``."""
        return f"{self}@{label}"

    def __str__(self):
        return f"{self.pool}/{self.name}"


@dataclass(frozen=True)
class RemoteLocator:
    """Remote archive store root: ``[user@]host:directory``."""

    host: str
    directory: str

    @classmethod
    def parse(cls, text: str) -> 'RemoteLocator':
        """
        Parse ``host:directory``.

        Raises:
            ValueError: If either side of the colon is empty or contains
                whitespace
        """
        if not isinstance(text, str):
            raise ValueError(f"Remote locator must be a string, got {type(text).__name__}")

        host, sep, directory = text.strip().partition(':')
        if not sep or not host or not directory:
            raise ValueError(f"Remote locator must look like 'host:directory': {text!r}")
        if any(c.isspace() for c in text.strip()):
            raise ValueError(f"Remote locator must not contain whitespace: {text!r}")

        return cls(host=host, directory=directory.rstrip('/') or '/')

    @property
    def username(self) -> Optional[str]:
        user, sep, _ = self.host.partition('@')
        return user if sep else None

    @property
    def hostname(self) -> str:
        return self.host.rpartition('@')[2]

    def join(self, *parts: str) -> 'RemoteLocator':
        directory = '/'.join([self.directory.rstrip('/')] + list(parts))
        return RemoteLocator(host=self.host, directory=directory)

    def __str__(self):
        return f"{self.host}:{self.directory}"


@dataclass(frozen=True)
class RetentionPolicy:
    """How many snapshots/archives to keep per tier."""

    month_keep: int
    week_keep: int
    day_keep: int

    def __post_init__(self):
        for tier in Tier:
            value = self.keep_for(tier)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"Retention for {tier} must be a non-negative integer, got {value!r}")

    def keep_for(self, tier: Tier) -> int:
        return {
            Tier.MONTH: self.month_keep,
            Tier.WEEK: self.week_keep,
            Tier.DAY: self.day_keep,
        }[tier]


@dataclass(frozen=True)
class BackupTarget:
    """
    Where archives go.

    Layout under the local root:
        bind/<pool>/<name>   bind mount point for the snapshot being archived
        borg/<pool>/<name>   local Borg repository
    The remote repository mirrors the borg/ layout under the remote directory.
    """

    root: Path
    remote: Optional[RemoteLocator] = None

    def bind_point(self, filesystem: Filesystem) -> Path:
        return Path(self.root) / 'bind' / filesystem.pool / filesystem.name

    def local_repository(self, filesystem: Filesystem) -> str:
        return str(Path(self.root) / 'borg' / filesystem.pool / filesystem.name)

    def remote_locator(self, filesystem: Filesystem) -> Optional[RemoteLocator]:
        if self.remote is None:
            return None
        return self.remote.join(filesystem.pool, *filesystem.name.split('/'))

    def remote_repository(self, filesystem: Filesystem) -> Optional[str]:
        locator = self.remote_locator(filesystem)
        return str(locator) if locator is not None else None

    @property
    def lock_path(self) -> Path:
        return Path(self.root) / '.zborg.lock'
