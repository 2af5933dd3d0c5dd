"""
Unit tests for retention policy management (zborg/backup/retention.py).

Tests select_excess and RetentionManager for pruning snapshots and archives.
"""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from zborg.backup.catalog import SnapshotCatalog
from zborg.backup.labels import Label, RetentionPolicy, Tier
from zborg.backup.retention import RetentionManager, select_excess
from zborg.utils.shell import ExternalToolError


def day_labels(count, start=date(2024, 3, 1)):
    """`count` consecutive day labels starting at `start`, as strings."""
    return [f"day-{(start + timedelta(days=n)).strftime('%Y%m%d')}" for n in range(count)]


class TestSelectExcess:
    """Test the keep-last-N computation."""

    def test_nothing_when_under_keep(self):
        labels = sorted([Label.parse(s) for s in day_labels(3)], reverse=True)
        assert select_excess(labels, 5) == []

    def test_nothing_when_equal_to_keep(self):
        labels = sorted([Label.parse(s) for s in day_labels(5)], reverse=True)
        assert select_excess(labels, 5) == []

    def test_exact_excess_all_older_than_retained(self):
        labels = sorted([Label.parse(s) for s in day_labels(10)], reverse=True)

        for keep in range(0, 11):
            excess = select_excess(labels, keep)
            retained = [l for l in labels if l not in excess]

            assert len(excess) == len(labels) - keep
            assert len(retained) == keep
            if excess and retained:
                assert max(excess) < min(retained)

    def test_keep_zero_drops_everything(self):
        labels = [Label.parse('week-20240310'), Label.parse('week-20240303')]
        assert select_excess(labels, 0) == labels

    def test_negative_keep_rejected(self):
        with pytest.raises(ValueError):
            select_excess([], -1)


class TestRetentionManager:
    """Test RetentionManager pruning passes."""

    def _manager(self, mock_zfs, mock_archiver, policy):
        return RetentionManager(mock_zfs, SnapshotCatalog(mock_zfs), mock_archiver, policy)

    def test_retention_manager_initialization(self, mock_zfs, mock_archiver, policy):
        manager = self._manager(mock_zfs, mock_archiver, policy)

        assert manager.policy == policy
        assert manager.logs == []

    def test_prune_snapshots_destroys_two_oldest_of_nine(self, mock_zfs, mock_archiver, filesystem):
        """day_keep=7 with 9 day snapshots destroys exactly the 2 oldest."""
        mock_zfs.snapshots = day_labels(9)
        policy = RetentionPolicy(month_keep=12, week_keep=4, day_keep=7)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        destroyed = manager.prune_snapshots(filesystem, Tier.DAY)

        assert [str(l) for l in destroyed] == ['day-20240302', 'day-20240301']
        assert mock_zfs.destroy_snapshot.call_count == 2
        assert sorted(mock_zfs.snapshots) == day_labels(9)[2:]

    def test_prune_snapshots_noop_when_within_keep(self, mock_zfs, mock_archiver, filesystem, policy):
        mock_zfs.snapshots = day_labels(7)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        assert manager.prune_snapshots(filesystem, Tier.DAY) == []
        mock_zfs.destroy_snapshot.assert_not_called()

    def test_prune_snapshots_only_touches_its_tier(self, mock_zfs, mock_archiver, filesystem):
        mock_zfs.snapshots = ['month-20240101', 'month-20240201', 'week-20240303', 'week-20240310'] + day_labels(4)
        policy = RetentionPolicy(month_keep=0, week_keep=0, day_keep=1)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        manager.prune_snapshots(filesystem, Tier.DAY)

        assert mock_zfs.snapshots == ['month-20240101', 'month-20240201', 'week-20240303', 'week-20240310', 'day-20240304']

    def test_prune_snapshots_keep_zero_spares_current(self, mock_zfs, mock_archiver, filesystem):
        mock_zfs.snapshots = ['week-20240303', 'week-20240310', 'week-20240317']
        policy = RetentionPolicy(month_keep=1, week_keep=0, day_keep=1)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        destroyed = manager.prune_snapshots(filesystem, Tier.WEEK, current=Label.parse('week-20240317'))

        assert [str(l) for l in destroyed] == ['week-20240310', 'week-20240303']
        assert mock_zfs.snapshots == ['week-20240317']

    def test_enforce_never_destroys_current(self, mock_zfs, mock_archiver, filesystem, target):
        mock_zfs.snapshots = ['month-20240301', 'month-20240401']
        policy = RetentionPolicy(month_keep=0, week_keep=4, day_keep=7)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        result = manager.enforce(filesystem, Tier.MONTH, target, current=Label.parse('month-20240401'))

        assert [str(l) for l in result['snapshots_destroyed']] == ['month-20240301']
        assert mock_zfs.snapshots == ['month-20240401']

    def test_prune_snapshots_uses_date_order_not_listing_order(self, mock_zfs, mock_archiver, filesystem):
        mock_zfs.snapshots = ['month-20240301', 'month-20231201', 'month-20240101', 'month-20240201']
        policy = RetentionPolicy(month_keep=2, week_keep=4, day_keep=7)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        destroyed = manager.prune_snapshots(filesystem, Tier.MONTH)

        assert [str(l) for l in destroyed] == ['month-20240101', 'month-20231201']

    def test_prune_snapshots_propagates_destroy_failure(self, mock_zfs, mock_archiver, filesystem):
        mock_zfs.snapshots = day_labels(3)
        mock_zfs.destroy_snapshot.side_effect = ExternalToolError('destroy snapshot', returncode=1)
        policy = RetentionPolicy(month_keep=1, week_keep=1, day_keep=1)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        with pytest.raises(ExternalToolError):
            manager.prune_snapshots(filesystem, Tier.DAY)

    def test_prune_archives_passes_all_counts(self, mock_zfs, mock_archiver, policy):
        manager = self._manager(mock_zfs, mock_archiver, policy)

        assert manager.prune_archives('/backup/borg/zroot/home') is True

        mock_archiver.prune.assert_called_once_with('/backup/borg/zroot/home', policy, remote=False)

    def test_prune_archives_skipped_when_all_zero(self, mock_zfs, mock_archiver):
        policy = RetentionPolicy(month_keep=0, week_keep=0, day_keep=0)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        assert manager.prune_archives('/backup/borg/zroot/home') is False
        mock_archiver.prune.assert_not_called()

    def test_enforce_local_only(self, mock_zfs, mock_archiver, filesystem, policy, target):
        mock_zfs.snapshots = day_labels(8)
        manager = self._manager(mock_zfs, mock_archiver, policy)

        result = manager.enforce(filesystem, Tier.DAY, target)

        assert [str(l) for l in result['snapshots_destroyed']] == ['day-20240301']
        assert result['archive_stores_pruned'] == 1
        mock_archiver.prune.assert_called_once_with(target.local_repository(filesystem), policy, remote=False)
        assert any('skipping remote prune' in line for line in manager.logs)

    def test_enforce_with_remote(self, mock_zfs, mock_archiver, filesystem, policy, remote_target):
        manager = self._manager(mock_zfs, mock_archiver, policy)

        result = manager.enforce(filesystem, Tier.WEEK, remote_target)

        assert result['archive_stores_pruned'] == 2
        calls = mock_archiver.prune.call_args_list
        assert calls[0].args == (remote_target.local_repository(filesystem), policy)
        assert calls[0].kwargs == {'remote': False}
        assert calls[1].args == ('backup@offsite.example:zborg/zroot/home', policy)
        assert calls[1].kwargs == {'remote': True}

    def test_enforce_snapshots_before_archives(self, mock_zfs, mock_archiver, filesystem, target):
        order = MagicMock()
        mock_zfs.snapshots = day_labels(2)
        mock_zfs.destroy_snapshot.side_effect = lambda fs, label: order('destroy')
        mock_archiver.prune.side_effect = lambda *a, **kw: order('prune')
        policy = RetentionPolicy(month_keep=1, week_keep=1, day_keep=1)

        self._manager(mock_zfs, mock_archiver, policy).enforce(filesystem, Tier.DAY, target)

        assert [c.args[0] for c in order.call_args_list] == ['destroy', 'prune']
