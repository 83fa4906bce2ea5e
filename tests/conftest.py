"""
Shared pytest fixtures for serverbackup tests.

This module provides fixtures for:
- A temporary server directory tree
- Engine configuration built from settings
- Fake host collaborators (players, worlds, broadcast)
- Inline scheduler contexts that run tasks immediately
- Flask app and test client
"""

import pytest

from serverbackup import create_app
from serverbackup.config import BackupConfiguration, Settings, TestingConfig
from serverbackup.host import Broadcast, DataRegion, RegionRegistry, Session, SessionRegistry


class FakeSession(Session):
    """Player holding a fixed set of permission nodes."""

    def __init__(self, name, capabilities=()):
        self.name = name
        self.capabilities = set(capabilities)

    def has_capability(self, name):
        return name in self.capabilities


class FakeRegion(DataRegion):
    """World recording autosave toggles and saves into a shared event list."""

    def __init__(self, name, events):
        self.name = name
        self.events = events
        self.autosave = True

    def set_autosave(self, enabled):
        self.autosave = enabled
        self.events.append(('autosave', self.name, enabled))

    def force_save(self):
        self.events.append(('save', self.name))


class FakeHost(SessionRegistry, RegionRegistry, Broadcast):
    """Host with configurable players and worlds; records everything."""

    def __init__(self, sessions=None, region_names=('world', 'world_nether')):
        self.events = []
        self.sessions = list(sessions or [])
        self.regions = [FakeRegion(name, self.events) for name in region_names]
        self.broadcasts = []

    def list_active_sessions(self):
        return list(self.sessions)

    def flush(self):
        self.events.append(('flush',))

    def list_regions(self):
        return list(self.regions)

    def notify_all(self, message):
        self.events.append(('notify', message))
        self.broadcasts.append(('all', message))

    def notify_with_capability(self, message, capability):
        self.events.append(('notify', message))
        self.broadcasts.append((capability, message))


class InlineContexts:
    """Scheduler contexts that run every task immediately on the caller."""

    def __init__(self):
        self.calls = []

    def run_on_primary(self, fn):
        self.calls.append('primary')
        fn()

    def run_on_worker(self, fn):
        self.calls.append('worker')
        fn()

    def run_on_primary_after_delay(self, fn, ticks):
        self.calls.append(('primary', ticks))
        fn()


@pytest.fixture
def server_tree(tmp_path):
    """
    Create a server directory.

    Creates:
    - server.properties, server.log
    - world/level.dat, world/region/r.0.0.mca
    - logs/old/server.log (nested log, excluded too)
    - backups/old-backup.zip (existing backup folder)
    - plugins/A/config.yml, plugins/A/data/a.db, plugins/B/config.yml,
      plugins/plugin.jar
    """
    root = tmp_path / 'server'
    root.mkdir()

    (root / 'server.properties').write_text('motd=test')
    (root / 'server.log').write_text('log line')

    world = root / 'world'
    (world / 'region').mkdir(parents=True)
    (world / 'level.dat').write_bytes(b'level')
    (world / 'region' / 'r.0.0.mca').write_bytes(b'region')

    (root / 'logs' / 'old').mkdir(parents=True)
    (root / 'logs' / 'old' / 'server.log').write_text('old log')

    (root / 'backups').mkdir()
    (root / 'backups' / 'old-backup.zip').write_bytes(b'zip')

    plugins = root / 'plugins'
    (plugins / 'A' / 'data').mkdir(parents=True)
    (plugins / 'A' / 'config.yml').write_text('a: 1')
    (plugins / 'A' / 'data' / 'a.db').write_bytes(b'a')
    (plugins / 'B').mkdir()
    (plugins / 'B' / 'config.yml').write_text('b: 1')
    (plugins / 'plugin.jar').write_bytes(b'jar')

    return root


@pytest.fixture
def make_configuration(server_tree):
    """
    Build a BackupConfiguration for the server tree.

    Keyword arguments override settings keys, e.g. ``USE_TEMP=False``.
    """
    def _make(**overrides):
        values = {
            'SERVER_ROOT': str(server_tree),
            'BACKUP_PATH': 'backups',
            'USE_TEMP': True,
            'TEMP_FOLDER': '',
            'ZIP_BACKUP': True,
            'ARCHIVE_FORMAT': 'zip',
            'SPLIT_BACKUP': False,
            'PLUGINS_DIR': 'plugins',
            'PLUGIN_LIST_MODE': True,
            'PLUGIN_LIST': '',
            'SERVER_LOG_FILE': 'server.log',
        }
        values.update(overrides)
        return BackupConfiguration.from_settings(Settings(values))

    return _make


@pytest.fixture
def host():
    """Host with one ordinary player online."""
    return FakeHost(sessions=[FakeSession('alex')])


@pytest.fixture
def contexts():
    return InlineContexts()


@pytest.fixture
def app(server_tree, tmp_path, monkeypatch, contexts):
    """
    Create Flask app with test configuration around the server tree.

    Runs on inline scheduler contexts and a fake host with nobody online.
    """
    monkeypatch.setattr(TestingConfig, 'SERVER_ROOT', str(server_tree))
    monkeypatch.setattr(TestingConfig, 'LOG_DIR', str(tmp_path / 'logs'))

    app = create_app('testing', host=FakeHost(), contexts=contexts)
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()
