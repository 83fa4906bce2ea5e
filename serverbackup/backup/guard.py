"""
Backup trigger and guard.

Decides whether a scheduled or manual tick should start a backup, makes
the server's worlds consistent on disk, and hands the copy to a worker
while holding the in-progress guard.

Phases: IDLE -> EVALUATING -> QUIESCING -> RUNNING -> IDLE

Only the check-and-set of the in-progress flag runs under the lock; the
flag is released on every exit path, on the primary context once autosave
is back on.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Optional

from serverbackup.config import BackupConfiguration
from serverbackup.host import BYPASS_CAPABILITY, Broadcast, RegionRegistry, SessionRegistry
from serverbackup.messages import MessageCatalog
from .executor import BackupJob, BackupResult, BackupTask
from .logs import EngineLogger
from .notify import Notifier


class BackupPhase(str, Enum):
    IDLE = 'idle'
    EVALUATING = 'evaluating'
    QUIESCING = 'quiescing'
    RUNNING = 'running'


@dataclass
class EngineState:
    """Mutable flags owned by one BackupOrchestrator."""

    backup_enabled: bool = True
    backup_in_progress: bool = False
    is_manual_backup: bool = False
    is_last_backup: bool = False


class BackupOrchestrator:
    """
    Owns the engine state and runs the trigger state machine.

    Args:
        configuration: Engine configuration
        scheduler: Object providing run_on_primary / run_on_worker
        sessions: Connected players
        regions: Worlds to quiesce
        broadcast: Message delivery to players
        messages: Message catalog
        logger: Operator log
        task_factory: Builds the BackupTask for each run
        enabled: Initial state of scheduled backups
    """

    def __init__(self, configuration: BackupConfiguration, scheduler, sessions: SessionRegistry,
                 regions: RegionRegistry, broadcast: Broadcast, messages: MessageCatalog = None,
                 logger: EngineLogger = None, task_factory: Callable[[], BackupTask] = None,
                 enabled: bool = True):
        self.configuration = configuration
        self.scheduler = scheduler
        self.sessions = sessions
        self.regions = regions
        self.messages = messages or MessageCatalog()
        self.logger = logger or EngineLogger()
        self.notifier = Notifier(broadcast, self.messages, notify_all=configuration.notify_all)
        self.task_factory = task_factory or (
            lambda: BackupTask(configuration, logger=self.logger, messages=self.messages)
        )

        self.state = EngineState(backup_enabled=enabled)
        self.phase = BackupPhase.IDLE
        self.last_result: Optional[BackupResult] = None

        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    # Triggers

    def on_tick(self) -> bool:
        """
        Evaluate a scheduled or manual tick and start a backup if due.

        Returns:
            True if a backup was started
        """
        with self._lock:
            if self.state.backup_in_progress:
                # Rejected triggers are dropped, not queued
                self.state.is_manual_backup = False
                self._log('backupinprogress')
                return False

            self.phase = BackupPhase.EVALUATING
            manual = self.state.is_manual_backup
            if not self._should_run():
                self.phase = BackupPhase.IDLE
                return False

            # Any run covers a pending last backup
            self.state.is_last_backup = False
            self.state.backup_in_progress = True
            self.phase = BackupPhase.QUIESCING
            self._idle.clear()

        job = BackupJob.create(self.configuration, manual=manual)
        try:
            self._quiesce()
        except Exception as e:
            self.logger.log_error(e, f"Preparing backup {job.name} failed: {e}")
            self._resume_autosave()
            self._release()
            return False

        return self._dispatch(job)

    def request_manual_backup(self) -> bool:
        """
        Force the next evaluation to run and schedule it on the primary context.

        Returns:
            False if a backup is already running
        """
        with self._lock:
            if self.state.backup_in_progress:
                self._log('backupinprogress')
                return False
            self.state.is_manual_backup = True

        self._log('manualbackup')
        self.scheduler.run_on_primary(self.on_tick)
        return True

    def request_last_backup(self, timeout: float = None) -> bool:
        """
        Shutdown hook: back up once more even though nobody is online.

        The tick is evaluated on the primary context; this call blocks until
        that evaluation is done, so it must not be made from the primary
        context itself. Pair with wait_until_idle() to wait for the copy.

        Args:
            timeout: Seconds to wait for the evaluation

        Returns:
            True if a backup was started, False if skipped or timed out
        """
        with self._lock:
            self.state.is_last_backup = True

        evaluated = threading.Event()
        outcome = []

        def evaluate_last_backup():
            try:
                outcome.append(self.on_tick())
            finally:
                evaluated.set()

        self.scheduler.run_on_primary(evaluate_last_backup)
        if not evaluated.wait(timeout):
            return False
        return bool(outcome and outcome[0])

    def toggle_enabled(self) -> bool:
        """Flip scheduled backups on or off and return the new state."""
        with self._lock:
            self.state.backup_enabled = not self.state.backup_enabled
            enabled = self.state.backup_enabled
        self._log('backuptoggleon' if enabled else 'backuptoggleoff')
        return enabled

    def wait_until_idle(self, timeout: float = None) -> bool:
        """Block until no backup is running. Returns False on timeout."""
        return self._idle.wait(timeout)

    @property
    def in_progress(self) -> bool:
        return self.state.backup_in_progress

    def status(self) -> dict:
        with self._lock:
            data = {
                'enabled': self.state.backup_enabled,
                'in_progress': self.state.backup_in_progress,
                'phase': self.phase.value,
            }
        data['last_result'] = self.last_result.to_dict() if self.last_result else None
        return data

    # Evaluation

    def _should_run(self) -> bool:
        """Eligibility rules. Caller holds the lock."""
        if self.state.is_manual_backup:
            self.state.is_manual_backup = False
            return True

        if not self.state.backup_enabled:
            self._log('backupoff')
            return False

        if self.configuration.backup_empty_server:
            return True

        if self.sessions.count() == 0:
            if self.state.is_last_backup:
                self._log('lastbackup')
                return True
            self._log('abortedbackup')
            return False

        # One player without the bypass node is enough
        for session in self.sessions.list_active_sessions():
            if not session.has_capability(BYPASS_CAPABILITY):
                return True

        self._log('skipbackupbypass')
        return False

    # Run

    def _quiesce(self):
        self.notifier.notify_started()
        self.sessions.flush()

        regions = self.regions.list_regions()
        for region in regions:
            region.set_autosave(False)
        for region in regions:
            region.force_save()

    def _dispatch(self, job: BackupJob) -> bool:
        with self._lock:
            self.state.is_manual_backup = False
            self.phase = BackupPhase.RUNNING

        try:
            self.scheduler.run_on_worker(partial(self._run_job, job))
        except Exception as e:
            self.logger.log_error(e, f"Could not schedule backup {job.name}: {e}")
            self._finish()
            return False
        return True

    def _run_job(self, job: BackupJob):
        try:
            self.last_result = self.task_factory().run(job)
        except Exception as e:
            self.logger.log_error(e, f"Backup {job.name} crashed: {e}")
        finally:
            self._finish()

    def _finish(self):
        """Resume autosave on the primary context, then release the guard there."""
        try:
            self.scheduler.run_on_primary(self._resume_and_release)
        except Exception as e:
            self.logger.log_error(e, f"Could not schedule autosave resume: {e}")
            self._release()

    def _resume_and_release(self):
        try:
            self._resume_autosave()
        finally:
            self._release()

    def _resume_autosave(self):
        for region in self.regions.list_regions():
            try:
                region.set_autosave(True)
            except Exception as e:
                self.logger.log_error(e, f"Failed to re-enable autosave: {e}")

    def _release(self):
        with self._lock:
            self.state.backup_in_progress = False
            self.phase = BackupPhase.IDLE
            self._idle.set()

    def _log(self, key: str, *args):
        message = self.messages.get_message(key, *args)
        self.logger.log(message if message is not None else key)
