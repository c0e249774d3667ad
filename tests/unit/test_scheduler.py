"""
Unit tests for scheduler (snapkeeper/scheduler.py).

Tests APScheduler configuration and backup triggers.
"""

from unittest.mock import MagicMock, patch

import pytest

from snapkeeper import scheduler as scheduler_module
from snapkeeper.backup.executor import BackupOutcome


def _config(cron='0 * * * *', on_shutdown=True, tz='UTC'):
    class _Config:
        BACKUP_SCHEDULE_CRON = cron
        BACKUP_ON_SHUTDOWN = on_shutdown
        SCHEDULER_TIMEZONE = tz
    return _Config


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    @patch('snapkeeper.scheduler.BackgroundScheduler')
    def test_init_scheduler(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler
        orchestrator = MagicMock()

        result = scheduler_module.init_scheduler(_config(), orchestrator)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler
        assert scheduler_module.orchestrator == orchestrator

        call_kwargs = mock_scheduler_class.call_args[1]
        assert 'executors' in call_kwargs
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True
        assert call_kwargs['timezone'] == 'UTC'

        mock_scheduler.add_job.assert_called_once()
        job_kwargs = mock_scheduler.add_job.call_args[1]
        assert job_kwargs['id'] == scheduler_module.BACKUP_JOB_ID
        assert job_kwargs['func'] == scheduler_module._execute_backup_wrapper

    @patch('snapkeeper.scheduler.BackgroundScheduler')
    def test_init_scheduler_without_cron(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        scheduler_module.init_scheduler(_config(cron=''), MagicMock())

        mock_scheduler.add_job.assert_not_called()

    @patch('snapkeeper.scheduler.BackgroundScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class):
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler(_config(), MagicMock())
        result2 = scheduler_module.init_scheduler(_config(), MagicMock())

        assert result1 == result2
        mock_scheduler_class.assert_called_once()

    def test_init_scheduler_real_cron_job(self):
        scheduler = scheduler_module.init_scheduler(_config(cron='*/15 * * * *'), MagicMock())

        jobs = scheduler_module.get_scheduled_jobs()

        assert scheduler is scheduler_module.scheduler
        assert [job['id'] for job in jobs] == [scheduler_module.BACKUP_JOB_ID]
        assert 'cron' in jobs[0]['trigger']


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def setup_method(self):
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = False
        self.mock_scheduler.state = 0
        self.mock_scheduler.get_jobs.return_value = []
        scheduler_module.scheduler = self.mock_scheduler

    def test_start_scheduler(self):
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


class TestTriggers:
    """Test run-now, queued and shutdown triggers."""

    def test_run_now(self):
        orchestrator = MagicMock()
        outcome = BackupOutcome('/backups')
        orchestrator.run_backup_cycle.return_value = outcome
        scheduler_module.orchestrator = orchestrator

        assert scheduler_module.run_now() is outcome
        orchestrator.run_backup_cycle.assert_called_once_with()

    def test_run_now_not_initialized(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.run_now()

    def test_trigger_backup_now(self):
        mock_scheduler = MagicMock()
        scheduler_module.scheduler = mock_scheduler

        job_id = scheduler_module.trigger_backup_now()

        assert job_id.startswith('manual_')
        job_kwargs = mock_scheduler.add_job.call_args[1]
        assert job_kwargs['id'] == job_id
        assert job_kwargs['func'] == scheduler_module._execute_backup_wrapper

    def test_trigger_backup_now_not_initialized(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.trigger_backup_now()

    def test_execute_backup_wrapper(self):
        orchestrator = MagicMock()
        orchestrator.run_backup_cycle.return_value = BackupOutcome('/backups')
        scheduler_module.orchestrator = orchestrator

        scheduler_module._execute_backup_wrapper()

        orchestrator.run_backup_cycle.assert_called_once()

    @patch('snapkeeper.scheduler.BackgroundScheduler')
    def test_shutdown_runs_final_backup(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler_class.return_value = mock_scheduler
        orchestrator = MagicMock()
        scheduler_module.init_scheduler(_config(on_shutdown=True), orchestrator)

        scheduler_module.shutdown()

        mock_scheduler.shutdown.assert_called_once_with(wait=True)
        orchestrator.run_backup_cycle.assert_called_once()

    @patch('snapkeeper.scheduler.BackgroundScheduler')
    def test_shutdown_without_final_backup(self, mock_scheduler_class):
        mock_scheduler_class.return_value = MagicMock()
        orchestrator = MagicMock()
        scheduler_module.init_scheduler(_config(on_shutdown=False), orchestrator)

        scheduler_module.shutdown()

        orchestrator.run_backup_cycle.assert_not_called()

    def test_get_scheduled_jobs_not_initialized(self):
        assert scheduler_module.get_scheduled_jobs() == []


class TestSchedulerIntegration:
    """Run a real queued cycle through the scheduler worker."""

    def test_trigger_backup_now_runs_cycle(self, source_entries, backup_dir):
        import threading
        from snapkeeper.backup.executor import BackupOrchestrator

        done = threading.Event()
        outcomes = []

        def sink(outcome):
            outcomes.append(outcome)
            done.set()

        orchestrator = BackupOrchestrator(str(backup_dir), source_entries, outcome_sink=sink)
        scheduler_module.init_scheduler(_config(cron=''), orchestrator)
        scheduler_module.start_scheduler()

        scheduler_module.trigger_backup_now()

        assert done.wait(timeout=15)
        assert outcomes[0].status == 'success'
        scheduler_module.stop_scheduler()
