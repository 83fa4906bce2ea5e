"""
Interfaces to the running server the backup engine works against.

The engine only needs to:
- count and inspect connected sessions (players)
- flush session state and toggle/force saves on data regions (worlds)
- broadcast a message to sessions

``StandaloneHost`` is used when the service runs next to a server it has
no live connection to: there are no sessions or regions, and broadcasts go
to the log.
"""

import logging
from abc import ABC, abstractmethod
from typing import List


BYPASS_CAPABILITY = 'backup.bypass'
NOTIFY_CAPABILITY = 'backup.notify'


class Session(ABC):
    """A connected player."""

    @abstractmethod
    def has_capability(self, name: str) -> bool:
        ...


class SessionRegistry(ABC):

    @abstractmethod
    def list_active_sessions(self) -> List[Session]:
        ...

    def count(self) -> int:
        return len(self.list_active_sessions())

    def flush(self):
        """Write in-memory session state to the data regions."""


class DataRegion(ABC):
    """A managed on-disk data region such as a world."""

    @abstractmethod
    def set_autosave(self, enabled: bool):
        ...

    @abstractmethod
    def force_save(self):
        ...


class RegionRegistry(ABC):

    @abstractmethod
    def list_regions(self) -> List[DataRegion]:
        ...


class Broadcast(ABC):

    @abstractmethod
    def notify_all(self, message: str):
        ...

    @abstractmethod
    def notify_with_capability(self, message: str, capability: str):
        ...


class StandaloneHost(SessionRegistry, RegionRegistry, Broadcast):
    """Host with no live sessions or regions; broadcasts are logged."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger(__name__)

    def list_active_sessions(self) -> List[Session]:
        return []

    def list_regions(self) -> List[DataRegion]:
        return []

    def notify_all(self, message: str):
        self.logger.info(f"[broadcast] {message}")

    def notify_with_capability(self, message: str, capability: str):
        self.logger.info(f"[broadcast:{capability}] {message}")
