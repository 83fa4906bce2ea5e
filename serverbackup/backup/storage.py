"""
Read access to the backup folder.

Layout:
    {backup_root}/{name}[.zip|.tar.gz|...]
    {backup_root}/extensions/{name}[...]   (split plugin backups)
    {backup_root}/temp/                    (staging, not listed)
"""

from datetime import datetime
from pathlib import Path
from typing import List

from .executor import EXTENSIONS_DIR_NAME


class StorageError(Exception):
    """Raised when the backup folder cannot be read."""
    pass


class BackupStore:
    """
    Lists backup artifacts in the local backup folder.
    """

    def __init__(self, backup_root: Path, temp_path: Path = None):
        """
        Args:
            backup_root: Backup folder
            temp_path: Staging folder to leave out of listings
        """
        self.backup_root = Path(backup_root)
        self.temp_path = Path(temp_path) if temp_path else self.backup_root / 'temp'

    def list_backups(self, limit: int = 8, include_extensions: bool = True) -> List[dict]:
        """
        List artifacts, newest first.

        Args:
            limit: Maximum number of entries returned
            include_extensions: Also list split plugin backups

        Returns:
            List of dicts with 'name', 'path', 'kind', 'modified' and 'size' keys

        Raises:
            StorageError: If listing fails
        """
        if limit <= 0 or not self.backup_root.exists():
            return []

        try:
            entries = self._entries(self.backup_root, 'full')
            extensions_dir = self.backup_root / EXTENSIONS_DIR_NAME
            if include_extensions and extensions_dir.is_dir():
                entries.extend(self._entries(extensions_dir, 'plugins'))
        except OSError as e:
            raise StorageError(f"Failed to list backups: {e}")

        entries.sort(key=lambda entry: entry['modified'], reverse=True)
        return entries[:limit]

    def _entries(self, directory: Path, kind: str) -> List[dict]:
        entries = []
        for path in directory.iterdir():
            if path == self.temp_path or (kind == 'full' and path.name == EXTENSIONS_DIR_NAME):
                continue

            stat = path.stat()
            entries.append({
                'name': path.name,
                'path': str(path.relative_to(self.backup_root)),
                'kind': kind,
                'modified': datetime.fromtimestamp(stat.st_mtime),
                'size': _size_of(path) if path.is_dir() else stat.st_size
            })
        return entries


def _size_of(directory: Path) -> int:
    return sum(item.stat().st_size for item in directory.rglob('*') if item.is_file())
