"""
Unit tests for scheduler (zborg/scheduler.py).

Tests APScheduler configuration and the scheduled backup job.
"""

from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from freezegun import freeze_time

from zborg import scheduler as scheduler_module
from zborg.backup.locking import TargetLockedError
from zborg.config import ConfigError
from zborg.utils.shell import ExternalToolError


@pytest.fixture
def config():
    return SimpleNamespace(schedule='0 3 * * *')


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def teardown_method(self):
        """Clean up after each test."""
        # Reset global scheduler
        scheduler_module.scheduler = None

    @patch('zborg.scheduler.BlockingScheduler')
    def test_init_scheduler(self, mock_scheduler_class, config, session_factory):
        """Test scheduler initialization."""
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler(config, session_factory)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler

        job_defaults = mock_scheduler_class.call_args[1]['job_defaults']
        assert job_defaults['coalesce'] is True
        assert job_defaults['max_instances'] == 1

        mock_scheduler.add_job.assert_called_once()
        job_kwargs = mock_scheduler.add_job.call_args[1]
        assert job_kwargs['func'] == scheduler_module.run_scheduled_backup
        assert job_kwargs['args'] == [config, session_factory]
        assert job_kwargs['id'] == 'zborg_backup'
        assert isinstance(job_kwargs['trigger'], CronTrigger)

    @patch('zborg.scheduler.BlockingScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class, config):
        """Test scheduler is only initialized once."""
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler(config)
        result2 = scheduler_module.init_scheduler(config)

        assert result1 == result2
        mock_scheduler_class.assert_called_once()

    @patch('zborg.scheduler.BlockingScheduler')
    def test_invalid_schedule(self, mock_scheduler_class):
        with pytest.raises(ConfigError, match='Invalid schedule'):
            scheduler_module.init_scheduler(SimpleNamespace(schedule='every night'))

        mock_scheduler_class.assert_not_called()
        assert scheduler_module.scheduler is None


class TestSchedulerLifecycle:
    """Test start/stop."""

    def teardown_method(self):
        scheduler_module.scheduler = None

    def test_start_requires_init(self):
        with pytest.raises(RuntimeError, match='not initialized'):
            scheduler_module.start_scheduler()

    def test_start(self):
        mock_scheduler = MagicMock()
        mock_scheduler.running = False
        scheduler_module.scheduler = mock_scheduler

        scheduler_module.start_scheduler()

        mock_scheduler.start.assert_called_once()

    def test_start_when_running(self):
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        scheduler_module.scheduler = mock_scheduler

        scheduler_module.start_scheduler()

        mock_scheduler.start.assert_not_called()

    def test_stop(self):
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        scheduler_module.scheduler = mock_scheduler

        scheduler_module.stop_scheduler()

        mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_stop_without_scheduler(self):
        scheduler_module.stop_scheduler()


class TestRunScheduledBackup:
    """Test the job body."""

    @freeze_time("2024-03-17 03:00:00")
    @patch('zborg.scheduler.run_backups')
    def test_uses_todays_context(self, mock_run_backups, config, session_factory):
        assert scheduler_module.run_scheduled_backup(config, session_factory) is True

        kwargs = mock_run_backups.call_args[1]
        assert kwargs['context'].today == date(2024, 3, 17)
        assert kwargs['session_factory'] is session_factory

    @pytest.mark.parametrize('error', [
        ExternalToolError('create archive', returncode=2),
        TargetLockedError('Another backup run holds /backup/.zborg.lock'),
    ])
    @patch('zborg.scheduler.run_backups')
    def test_failure_is_logged_not_raised(self, mock_run_backups, error, config, caplog):
        mock_run_backups.side_effect = error

        assert scheduler_module.run_scheduled_backup(config) is False
        assert 'Scheduled backup' in caplog.text
