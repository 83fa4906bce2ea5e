"""
Filesystem primitives used by the backup strategies.

- copy_directory: filtered recursive copy
- delete_directory: recursive removal
- promote_directory: move a staged copy to its final place
- create_archive: directory to archive file

Supported archive formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import shutil
import tarfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Union

from .filters import PathFilter, include_all


PathLike = Union[str, Path]

ARCHIVE_EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

TAR_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
    'none': 'w'
}


class StagingError(Exception):
    """Raised when copying, moving or deleting a staged tree fails."""
    pass


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def generate_backup_name(now: datetime = None) -> str:
    """Timestamp-derived name shared by every artifact of one run."""
    return (now or datetime.now()).strftime('%Y%m%d-%H%M%S')


def archive_extension(compression_format: str) -> str:
    try:
        return ARCHIVE_EXTENSIONS[compression_format]
    except KeyError:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(ARCHIVE_EXTENSIONS.keys())}"
        )


def copy_directory(source: PathLike, destination: PathLike, path_filter: PathFilter = include_all) -> Path:
    """
    Recursively copy a directory, keeping only entries the filter accepts.

    The filter sees each entry's path relative to ``source``; a rejected
    directory is skipped as a whole. The destination may already exist.

    Args:
        source: Directory to copy
        destination: Directory to copy into
        path_filter: Callable returning True for entries to include

    Returns:
        The destination path

    Raises:
        StagingError: If the source is missing or any entry fails to copy
    """
    source_path = Path(source)
    destination_path = Path(destination)

    if not source_path.is_dir():
        raise StagingError(f"Source directory does not exist: {source_path}")

    def ignore_rejected(directory, names):
        base = Path(directory)
        ignored = []
        for name in names:
            relative = (base / name).relative_to(source_path)
            if not path_filter(relative):
                ignored.append(name)
        return ignored

    try:
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            source_path,
            destination_path,
            symlinks=False,
            ignore=ignore_rejected,
            dirs_exist_ok=True
        )
    except PermissionError as e:
        raise StagingError(f"Permission denied copying {source_path}: {e}")
    except (shutil.Error, OSError) as e:
        raise StagingError(f"Failed to copy {source_path} to {destination_path}: {e}")

    return destination_path


def delete_directory(path: PathLike):
    """
    Remove a directory tree. Missing directories are ignored.

    Raises:
        StagingError: If removal fails
    """
    target = Path(path)
    if not target.exists():
        return

    try:
        shutil.rmtree(target)
    except OSError as e:
        raise StagingError(f"Failed to delete {target}: {e}")


def promote_directory(source: PathLike, destination: PathLike) -> Path:
    """
    Move a staged directory to its final location.

    Raises:
        StagingError: If the destination exists or the move fails
    """
    source_path = Path(source)
    destination_path = Path(destination)

    if source_path == destination_path:
        raise StagingError(f"Staging and destination paths are the same: {source_path}")
    if destination_path.exists():
        raise StagingError(f"Destination already exists: {destination_path}")

    try:
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source_path), str(destination_path))
    except (shutil.Error, OSError) as e:
        raise StagingError(f"Failed to move {source_path} to {destination_path}: {e}")

    return destination_path


def create_archive(source_dir: PathLike, output_path: PathLike, compression_format: str = 'zip') -> Path:
    """
    Create an archive from a directory.

    Entries are stored under the directory's own name, so extracting
    ``<name>.zip`` yields ``<name>/...``.

    Args:
        source_dir: Directory to archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    source = Path(source_dir)
    extension = archive_extension(compression_format)
    archive_path = Path(f"{output_path}.{extension}")

    if not source.is_dir():
        raise CompressionError(f"Path does not exist: {source}")
    if archive_path.exists():
        raise CompressionError(f"Archive already exists: {archive_path}")

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        if compression_format == 'zip':
            _create_zip(source, archive_path)
        else:
            _create_tar(source, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if archive_path.exists():
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def _create_zip(source: Path, archive_path: Path):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        zipf.write(source, source.name)
        for item in sorted(source.rglob('*')):
            # Calculate relative path within archive
            relative_path = item.relative_to(source.parent)
            zipf.write(item, relative_path)


def _create_tar(source: Path, archive_path: Path, compression_format: str):
    with tarfile.open(archive_path, TAR_MODES[compression_format]) as tar:
        tar.add(source, arcname=source.name, recursive=True)
