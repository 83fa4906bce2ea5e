"""
Backup module for serverbackup.

This module handles the core backup functionality including:
- Trigger evaluation and the in-progress guard
- World quiescing and player notification
- Filtered staging of the server and plugin trees
- Compression and artifact layout
"""

from .executor import BackupJob, BackupResult, BackupTask, FullTreeBackup, PluginsBackup
from .filters import ExtensionFilter, NameDenyFilter
from .guard import BackupOrchestrator, BackupPhase, EngineState
from .notify import Notifier
from .staging import create_archive, copy_directory, delete_directory
from .storage import BackupStore

__all__ = [
    'BackupJob',
    'BackupResult',
    'BackupTask',
    'FullTreeBackup',
    'PluginsBackup',
    'ExtensionFilter',
    'NameDenyFilter',
    'BackupOrchestrator',
    'BackupPhase',
    'EngineState',
    'Notifier',
    'create_archive',
    'copy_directory',
    'delete_directory',
    'BackupStore'
]
