"""Backup-started announcements to connected players."""

from typing import List

from serverbackup.host import NOTIFY_CAPABILITY, Broadcast
from serverbackup.messages import MessageCatalog, split_lines


class Notifier:
    """
    Sends catalog messages line by line to every session, or only to
    sessions holding the notify capability.
    """

    def __init__(self, broadcast: Broadcast, messages: MessageCatalog, notify_all: bool = True,
                 capability: str = NOTIFY_CAPABILITY):
        self.broadcast = broadcast
        self.messages = messages
        self.notify_all = notify_all
        self.capability = capability

    def notify(self, message: str) -> List[str]:
        """Deliver each line of ``message`` in order and return the lines sent."""
        lines = split_lines(message)
        for line in lines:
            if self.notify_all:
                self.broadcast.notify_all(line)
            else:
                self.broadcast.notify_with_capability(line, self.capability)
        return lines

    def notify_started(self) -> List[str]:
        message = self.messages.get_message('backupstarted')
        if message is None:
            return []
        return self.notify(message)
