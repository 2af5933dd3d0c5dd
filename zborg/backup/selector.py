"""
Tier selection.

One tier is acted on per filesystem per run, first match wins:
1. month: no monthly snapshot yet, or first day of the month
2. week: no weekly snapshot yet, or the weekly day (Sunday)
3. day: otherwise
"""

from dataclasses import dataclass
from datetime import date

from .catalog import SnapshotCatalog
from .labels import Filesystem, Label, Tier


SUNDAY = 6  # date.weekday()


@dataclass(frozen=True)
class RunContext:
    """Immutable per-run view of the calendar."""

    today: date
    weekly_day: int = SUNDAY

    @classmethod
    def for_today(cls) -> 'RunContext':
        return cls(today=date.today())

    @property
    def is_first_of_month(self) -> bool:
        return self.today.day == 1

    @property
    def is_weekly_day(self) -> bool:
        return self.today.weekday() == self.weekly_day


def select_tier(context: RunContext, has_month: bool, has_week: bool) -> Tier:
    if not has_month or context.is_first_of_month:
        return Tier.MONTH
    if not has_week or context.is_weekly_day:
        return Tier.WEEK
    return Tier.DAY


class TierSelector:
    """
    Picks the label to create for a filesystem on this run.
    """

    def __init__(self, catalog: SnapshotCatalog):
        self.catalog = catalog

    def select(self, filesystem: Filesystem, context: RunContext) -> Label:
        """
        Args:
            filesystem: Filesystem being backed up
            context: Run calendar

        Returns:
            Label to snapshot and archive under

        Raises:
            ExternalToolError: If the catalog cannot be read
        """
        tier = select_tier(
            context,
            has_month=self.catalog.find_last(filesystem, Tier.MONTH) is not None,
            has_week=self.catalog.find_last(filesystem, Tier.WEEK) is not None,
        )
        return Label(tier=tier, date=context.today)
