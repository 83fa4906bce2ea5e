import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional


ARCHIVE_FORMATS = ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')


class ConfigurationError(ValueError):
    """Raised when backup settings are missing or inconsistent."""
    pass


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'serverbackup-dev'

    # Server tree being backed up
    SERVER_ROOT = os.environ.get('SERVER_ROOT') or '.'
    SERVER_LOG_FILE = os.environ.get('SERVER_LOG_FILE') or 'server.log'
    PLUGINS_DIR = os.environ.get('PLUGINS_DIR') or 'plugins'

    # Destination
    BACKUP_PATH = os.environ.get('BACKUP_PATH') or 'backups'
    USE_TEMP = _env_bool('USE_TEMP', True)
    TEMP_FOLDER = os.environ.get('TEMP_FOLDER') or ''
    ZIP_BACKUP = _env_bool('ZIP_BACKUP', True)
    ARCHIVE_FORMAT = os.environ.get('ARCHIVE_FORMAT') or 'zip'
    SPLIT_BACKUP = _env_bool('SPLIT_BACKUP', False)

    # Plugin selection: true means PLUGIN_LIST names the plugins to include
    PLUGIN_LIST_MODE = _env_bool('PLUGIN_LIST_MODE', True)
    PLUGIN_LIST = os.environ.get('PLUGIN_LIST') or ''

    # Trigger policy
    BACKUP_ENABLED = _env_bool('BACKUP_ENABLED', True)
    BACKUP_EMPTY_SERVER = _env_bool('BACKUP_EMPTY_SERVER', False)
    NOTIFY_ALL_PLAYERS = _env_bool('NOTIFY_ALL_PLAYERS', True)
    LAST_BACKUP_ON_SHUTDOWN = _env_bool('LAST_BACKUP_ON_SHUTDOWN', True)
    LAST_BACKUP_TIMEOUT = int(os.environ.get('LAST_BACKUP_TIMEOUT') or 600)

    # Messages
    MESSAGES_FILE = os.environ.get('MESSAGES_FILE')

    # Scheduler
    BACKUP_INTERVAL_MINUTES = int(os.environ.get('BACKUP_INTERVAL_MINUTES') or 60)
    SCHEDULER_TIMEZONE = 'UTC'

    # Logs
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(
        os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'data', 'logs'
    )


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration - scheduler is left to the test"""
    DEBUG = False
    TESTING = True
    SCHEDULER_ENABLED = False
    LAST_BACKUP_ON_SHUTDOWN = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


class Settings:
    """
    Typed read access to a flat settings mapping (usually ``app.config``).

    Values may be real Python types or the strings found in environment
    variables and settings files.
    """

    _TRUE = ('1', 'true', 'yes', 'on')
    _FALSE = ('0', 'false', 'no', 'off')

    def __init__(self, values: Mapping):
        self._values = values

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key)
        if value is None:
            return default
        return str(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._values.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value

        text = str(value).strip().lower()
        if text in self._TRUE:
            return True
        if text in self._FALSE:
            return False
        raise ConfigurationError(f"Invalid boolean for {key}: {value!r}")

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._values.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid integer for {key}: {value!r}")


@dataclass(frozen=True)
class ExtensionSelection:
    """Which plugin directories the plugin backup keeps."""

    mode: str = 'allow'
    names: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def parse(cls, list_mode: bool, raw_names: str) -> 'ExtensionSelection':
        names = frozenset(name.strip() for name in (raw_names or '').split(';') if name.strip())
        return cls(mode='allow' if list_mode else 'deny', names=names)


@dataclass(frozen=True)
class BackupConfiguration:
    """
    Immutable settings for one backup engine instance.

    All paths are absolute. ``temp_path`` is only used when
    ``use_temp_staging`` is set.
    """

    server_root: Path
    backup_root: Path
    use_temp_staging: bool
    temp_path: Path
    compress: bool
    archive_format: str
    split_extensions_artifact: bool
    extensions_root: Path
    extension_selection: ExtensionSelection
    log_file_name: str
    backup_empty_server: bool = False
    notify_all: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> 'BackupConfiguration':
        """
        Build the engine configuration from settings.

        Relative backup, temp and plugin paths are resolved against the
        server root.

        Raises:
            ConfigurationError: If the settings cannot produce a usable layout
        """
        server_root = Path(settings.get_string('SERVER_ROOT', '.')).expanduser().resolve()

        backup_setting = settings.get_string('BACKUP_PATH', 'backups')
        if not backup_setting:
            raise ConfigurationError("BACKUP_PATH must not be empty")
        backup_root = _resolve_under(server_root, backup_setting)

        use_temp = settings.get_bool('USE_TEMP', True)
        temp_folder = settings.get_string('TEMP_FOLDER', '')
        if temp_folder:
            temp_path = _resolve_under(server_root, temp_folder)
        else:
            temp_path = backup_root / 'temp'

        if use_temp and temp_path == backup_root:
            raise ConfigurationError(
                f"Temp folder must differ from the backup path: {temp_path}"
            )

        archive_format = settings.get_string('ARCHIVE_FORMAT', 'zip')
        if archive_format not in ARCHIVE_FORMATS:
            raise ConfigurationError(
                f"Invalid archive format: {archive_format}. "
                f"Valid options: {list(ARCHIVE_FORMATS)}"
            )

        return cls(
            server_root=server_root,
            backup_root=backup_root,
            use_temp_staging=use_temp,
            temp_path=temp_path,
            compress=settings.get_bool('ZIP_BACKUP', True),
            archive_format=archive_format,
            split_extensions_artifact=settings.get_bool('SPLIT_BACKUP', False),
            extensions_root=_resolve_under(server_root, settings.get_string('PLUGINS_DIR', 'plugins')),
            extension_selection=ExtensionSelection.parse(
                settings.get_bool('PLUGIN_LIST_MODE', True),
                settings.get_string('PLUGIN_LIST', '')
            ),
            log_file_name=settings.get_string('SERVER_LOG_FILE', 'server.log'),
            backup_empty_server=settings.get_bool('BACKUP_EMPTY_SERVER', False),
            notify_all=settings.get_bool('NOTIFY_ALL_PLAYERS', True),
        )

    @property
    def staging_root(self) -> Path:
        """Where copies land before they become artifacts."""
        return self.temp_path if self.use_temp_staging else self.backup_root


def _resolve_under(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()
