"""
Backup executor - stages, filters and archives the server tree.

Workflow for one job:
1. Stage every strategy (filtered copy into its staging directory)
2. Finalize every staged strategy (compress or promote, then clean up)
3. Record the outcome on a BackupResult

Two strategies run per job:
- FullTreeBackup: the whole server directory minus the backup folder
  and the server log
- PluginsBackup: the plugins directory filtered by the plugin list, either
  nested in the full-tree copy or written as its own artifact
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import List, Optional

from serverbackup.config import BackupConfiguration
from serverbackup.messages import MessageCatalog
from .filters import ExtensionFilter, NameDenyFilter, PathFilter
from .logs import EngineLogger
from .staging import (
    StagingError,
    archive_extension,
    copy_directory,
    create_archive,
    delete_directory,
    generate_backup_name,
    promote_directory
)


EXTENSIONS_DIR_NAME = 'extensions'


@dataclass(frozen=True)
class BackupJob:
    """One backup run. ``staging_path`` is the full-tree staging directory."""

    name: str
    staging_path: Path
    manual: bool = False

    @classmethod
    def create(cls, configuration: BackupConfiguration, manual: bool = False, now: datetime = None) -> 'BackupJob':
        """
        Name the job after the current time.

        Names already used by an artifact or a staging directory get a
        ``-1``, ``-2``... suffix so a run never overwrites an earlier one.
        """
        base_name = generate_backup_name(now)
        name = base_name
        suffix = 1
        while _name_taken(configuration, name):
            name = f"{base_name}-{suffix}"
            suffix += 1
        return cls(name=name, staging_path=configuration.staging_root / name, manual=manual)


@dataclass
class BackupResult:
    """Outcome of a BackupTask run."""

    job_name: str
    status: str = 'running'
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    artifacts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    def to_dict(self) -> dict:
        return {
            'job_name': self.job_name,
            'status': self.status,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'artifacts': list(self.artifacts),
            'errors': list(self.errors)
        }


@dataclass(frozen=True)
class ArtifactLayout:
    """
    Where a strategy stages its copy and where the artifact ends up.

    ``final_path`` is None when the copy is nested in another strategy's
    staging directory and rides along with that artifact.
    """

    stage_dir: Path
    final_path: Optional[Path]


class BackupStrategy:
    """
    Stage and finalize one source tree.

    Subclasses supply the source, the filter and the layout; staging,
    compression, promotion and cleanup are shared.
    """

    name = 'backup'

    def __init__(self, configuration: BackupConfiguration):
        self.configuration = configuration

    @property
    def source_root(self) -> Path:
        raise NotImplementedError

    @property
    def path_filter(self) -> PathFilter:
        raise NotImplementedError

    def layout(self, job: BackupJob) -> ArtifactLayout:
        raise NotImplementedError

    def available(self) -> bool:
        return True

    def prepare(self, log):
        """Hook run before the copy."""

    def stage(self, job: BackupJob) -> Path:
        """
        Copy the filtered source into the staging directory.

        A partial copy is removed before the error propagates.

        Raises:
            StagingError: If the copy fails
        """
        layout = self.layout(job)
        try:
            return copy_directory(self.source_root, layout.stage_dir, self.path_filter)
        except StagingError:
            delete_directory(layout.stage_dir)
            raise

    def finalize(self, job: BackupJob) -> Optional[Path]:
        """
        Turn the staged copy into the final artifact.

        Without temp staging the copy already sits at its final path. With
        temp staging it is archived (then deleted) or moved into place. A
        failed archive leaves the staged copy untouched.

        Returns:
            Path of the artifact, or None for nested copies

        Raises:
            CompressionError: If archive creation fails
            StagingError: If the staged copy cannot be moved or deleted
        """
        layout = self.layout(job)
        if layout.final_path is None:
            return None

        if not self.configuration.use_temp_staging:
            return layout.stage_dir

        if self.configuration.compress:
            archive_path = create_archive(
                layout.stage_dir,
                layout.final_path,
                self.configuration.archive_format
            )
            delete_directory(layout.stage_dir)
            return archive_path

        return promote_directory(layout.stage_dir, layout.final_path)


class FullTreeBackup(BackupStrategy):
    """Copy of the whole server directory."""

    name = 'full'

    @property
    def source_root(self) -> Path:
        return self.configuration.server_root

    @property
    def path_filter(self) -> NameDenyFilter:
        cfg = self.configuration

        # Temp staging may live in the tree
        denied_paths = set()
        for path in (cfg.backup_root, cfg.temp_path):
            relative = _relative_to(path, cfg.server_root)
            if relative is not None:
                denied_paths.add(relative)

        return NameDenyFilter(
            denied_names=frozenset({cfg.backup_root.name, cfg.log_file_name}),
            denied_paths=frozenset(denied_paths)
        )

    def layout(self, job: BackupJob) -> ArtifactLayout:
        return ArtifactLayout(
            stage_dir=job.staging_path,
            final_path=self.configuration.backup_root / job.name
        )


class PluginsBackup(BackupStrategy):
    """Copy of the plugins directory, filtered by the plugin list."""

    name = 'plugins'

    @property
    def source_root(self) -> Path:
        return self.configuration.extensions_root

    @property
    def path_filter(self) -> ExtensionFilter:
        return ExtensionFilter.from_selection(self.configuration.extension_selection)

    def layout(self, job: BackupJob) -> ArtifactLayout:
        cfg = self.configuration
        if cfg.split_extensions_artifact:
            return ArtifactLayout(
                stage_dir=cfg.staging_root / EXTENSIONS_DIR_NAME / job.name,
                final_path=cfg.backup_root / EXTENSIONS_DIR_NAME / job.name
            )
        return ArtifactLayout(stage_dir=job.staging_path / EXTENSIONS_DIR_NAME, final_path=None)

    def available(self) -> bool:
        return self.source_root.is_dir()

    def prepare(self, log):
        # Mark the plugins folder as recently used
        os.utime(self.source_root, None)

        selection = self.configuration.extension_selection
        if selection.names:
            log('enabledplugins' if selection.mode == 'allow' else 'disabledplugins')
            log(', '.join(sorted(selection.names)), raw=True)


class BackupTask:
    """
    Runs every strategy for a job and collects the outcome.

    Failures are caught per strategy and step; they mark the result failed
    and never propagate to the caller.
    """

    def __init__(self, configuration: BackupConfiguration, logger: EngineLogger = None,
                 messages: MessageCatalog = None, strategies: List[BackupStrategy] = None):
        self.configuration = configuration
        self.logger = logger or EngineLogger()
        self.messages = messages or MessageCatalog()
        self.strategies = strategies if strategies is not None else [
            FullTreeBackup(configuration),
            PluginsBackup(configuration)
        ]
        self.result = None

    def run(self, job: BackupJob) -> BackupResult:
        """Execute the job. Always returns a result."""
        self.result = BackupResult(job_name=job.name)
        self._log(f"Starting backup {job.name}", raw=True)

        staged = []
        failed_dirs = []
        for strategy in self.strategies:
            layout = strategy.layout(job)
            if any(_is_within(layout.stage_dir, failed) for failed in failed_dirs):
                self._log(f"Skipping {strategy.name} backup, its parent copy failed", raw=True)
                continue

            if not strategy.available():
                self._log(f"No {strategy.name} directory at {strategy.source_root}, skipping", raw=True)
                continue

            if self._run_step(strategy, 'stage', job):
                staged.append(strategy)
            else:
                failed_dirs.append(layout.stage_dir)

        for strategy in staged:
            self._run_step(strategy, 'finalize', job)

        self.result.status = 'failed' if self.result.errors else 'success'
        self.result.completed_at = datetime.now(timezone.utc)

        if self.result.succeeded:
            self._log('backupfinished', job.name)
        else:
            self._log('backupfailed', job.name)
        return self.result

    def _run_step(self, strategy: BackupStrategy, step: str, job: BackupJob) -> bool:
        try:
            if step == 'stage':
                strategy.prepare(self._log)
                path = strategy.stage(job)
                self._log(f"Copied {strategy.name} tree to {path}", raw=True)
            else:
                artifact = strategy.finalize(job)
                if artifact is not None:
                    self.result.artifacts.append(str(artifact))
                    self._log(f"Stored {strategy.name} backup at {artifact}", raw=True)
            return True
        except Exception as e:
            self.result.errors.append(f"{strategy.name} {step}: {e}")
            self.logger.log_error(e, f"{strategy.name} backup {step} failed for {job.name}: {e}")
            self._stamp(f"{strategy.name} backup {step} failed: {e}")
            return False

    def _log(self, key_or_message: str, *args, raw: bool = False):
        """Log a catalog message (or a literal one) and keep it on the result."""
        message = key_or_message if raw else self.messages.get_message(key_or_message, *args)
        if message is None:
            message = key_or_message
        self.logger.log(message)
        self._stamp(message)

    def _stamp(self, message: str):
        if self.result is not None:
            timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
            self.result.logs.append(f"[{timestamp}] {message}")


def _name_taken(configuration: BackupConfiguration, name: str) -> bool:
    extension = archive_extension(configuration.archive_format)
    candidates = []
    for root in (configuration.backup_root, configuration.staging_root):
        for parent in (root, root / EXTENSIONS_DIR_NAME):
            candidates.append(parent / name)
            candidates.append(parent / f"{name}.{extension}")
    return any(path.exists() for path in candidates)


def _relative_to(path: Path, root: Path) -> Optional[PurePath]:
    try:
        relative = path.relative_to(root)
    except ValueError:
        return None
    return relative if relative.parts else None


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents
