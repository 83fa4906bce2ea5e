"""
Unit tests for scheduler (serverbackup/scheduler.py).

Tests APScheduler configuration, execution contexts and the shutdown hook.
"""

from functools import partial
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from serverbackup import scheduler as scheduler_module
from serverbackup.config import ConfigurationError


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def teardown_method(self):
        """Clean up after each test."""
        # Reset global scheduler
        scheduler_module.scheduler = None

    @patch('serverbackup.scheduler.BackgroundScheduler')
    def test_init_scheduler(self, mock_scheduler_class, app):
        """Test scheduler initialization."""
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler(app)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler

        call_kwargs = mock_scheduler_class.call_args[1]
        assert set(call_kwargs['executors']) == {'default', 'primary', 'worker'}
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['timezone'] == 'UTC'

        # Nothing scheduled until schedule_backups
        mock_scheduler.add_job.assert_not_called()

    @patch('serverbackup.scheduler.BackgroundScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class, app):
        """Test scheduler is only initialized once."""
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler(app)
        result2 = scheduler_module.init_scheduler(app)

        assert result1 == result2
        mock_scheduler_class.assert_called_once()


class TestTaskContexts:
    """Test primary and worker submission."""

    def setup_method(self):
        self.mock_scheduler = MagicMock()
        self.contexts = scheduler_module.TaskContexts(self.mock_scheduler)

    def test_run_on_primary(self):
        def save_worlds():
            pass

        self.contexts.run_on_primary(save_worlds)

        kwargs = self.mock_scheduler.add_job.call_args[1]
        assert kwargs['func'] is save_worlds
        assert kwargs['executor'] == 'primary'
        assert kwargs['trigger'] is None
        assert kwargs['name'] == 'primary: save_worlds'
        assert kwargs['misfire_grace_time'] is None

    def test_run_on_worker_with_partial(self):
        def copy_files(job):
            pass

        self.contexts.run_on_worker(partial(copy_files, 'job'))

        kwargs = self.mock_scheduler.add_job.call_args[1]
        assert kwargs['executor'] == 'worker'
        assert kwargs['name'] == 'worker: copy_files'

    def test_job_ids_are_unique(self):
        self.contexts.run_on_primary(print)
        self.contexts.run_on_worker(print)
        self.contexts.run_on_primary(print)

        ids = [c[1]['id'] for c in self.mock_scheduler.add_job.call_args_list]
        assert len(set(ids)) == 3

    def test_run_on_primary_after_delay(self):
        self.contexts.run_on_primary_after_delay(print, ticks=20)

        kwargs = self.mock_scheduler.add_job.call_args[1]
        assert kwargs['executor'] == 'primary'
        assert isinstance(kwargs['trigger'], DateTrigger)


class TestScheduleBackups:
    """Test the periodic tick."""

    def setup_method(self):
        self.mock_scheduler = MagicMock()
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        scheduler_module.scheduler = None

    def test_schedule_backups(self):
        orchestrator = MagicMock()

        scheduler_module.schedule_backups(orchestrator, 30)

        kwargs = self.mock_scheduler.add_job.call_args[1]
        assert kwargs['func'] == orchestrator.on_tick
        assert kwargs['id'] == scheduler_module.PERIODIC_JOB_ID
        assert kwargs['executor'] == 'primary'
        assert kwargs['replace_existing'] is True
        assert isinstance(kwargs['trigger'], IntervalTrigger)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_invalid_interval(self, interval):
        with pytest.raises(ConfigurationError, match="must be positive"):
            scheduler_module.schedule_backups(MagicMock(), interval)

    def test_not_initialized(self):
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.schedule_backups(MagicMock(), 30)


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = False
        self.mock_scheduler.state = 0
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None

    def test_start_scheduler(self):
        self.mock_scheduler.get_jobs.return_value = []

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self):
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.start_scheduler()

    def test_start_scheduler_already_running(self):
        self.mock_scheduler.running = True

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_not_called()

    def test_stop_scheduler(self):
        self.mock_scheduler.running = True

        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_called_once_with(wait=True)

    def test_stop_scheduler_not_running(self):
        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_not_called()

    def test_is_scheduler_running(self):
        assert scheduler_module.is_scheduler_running() is False

        self.mock_scheduler.running = True
        assert scheduler_module.is_scheduler_running() is True

    def test_get_scheduled_jobs(self):
        job = MagicMock()
        job.id = 'backup_tick'
        job.name = 'Scheduled backup'
        job.next_run_time = None
        self.mock_scheduler.get_jobs.return_value = [job]

        jobs = scheduler_module.get_scheduled_jobs()

        assert jobs == [{
            'id': 'backup_tick',
            'name': 'Scheduled backup',
            'next_run': None,
            'trigger': str(job.trigger)
        }]

    def test_get_scheduled_jobs_without_scheduler(self):
        scheduler_module.scheduler = None

        assert scheduler_module.get_scheduled_jobs() == []


class TestShutdownBackups:
    """Test the last backup on shutdown."""

    def setup_method(self):
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = True
        scheduler_module.scheduler = self.mock_scheduler
        self.orchestrator = MagicMock()
        self.orchestrator.wait_until_idle.return_value = True

    def teardown_method(self):
        scheduler_module.scheduler = None

    def test_last_backup_then_stop(self):
        scheduler_module.shutdown_backups(self.orchestrator, last_backup=True, timeout=30)

        self.orchestrator.request_last_backup.assert_called_once_with(30)
        self.orchestrator.wait_until_idle.assert_called_once_with(30)
        self.mock_scheduler.shutdown.assert_called_once_with(wait=True)

    def test_last_backup_disabled(self):
        scheduler_module.shutdown_backups(self.orchestrator, last_backup=False)

        self.orchestrator.request_last_backup.assert_not_called()
        self.orchestrator.wait_until_idle.assert_called_once()
        self.mock_scheduler.shutdown.assert_called_once()

    def test_scheduler_already_stopped(self):
        self.mock_scheduler.running = False

        scheduler_module.shutdown_backups(self.orchestrator)

        self.orchestrator.request_last_backup.assert_not_called()
        self.mock_scheduler.shutdown.assert_not_called()

    def test_failed_last_backup_still_stops(self):
        self.orchestrator.request_last_backup.side_effect = RuntimeError("boom")

        scheduler_module.shutdown_backups(self.orchestrator)

        self.mock_scheduler.shutdown.assert_called_once()

    def test_timeout_still_stops(self):
        self.orchestrator.wait_until_idle.return_value = False

        scheduler_module.shutdown_backups(self.orchestrator, timeout=1)

        self.mock_scheduler.shutdown.assert_called_once()
