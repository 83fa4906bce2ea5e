"""
Operator and player facing message strings.

Messages may contain ``;;`` to mark line breaks; callers that deliver
messages to players split on it.
"""

import json
from typing import Dict, List, Optional


LINE_BREAK = ';;'

DEFAULT_MESSAGES = {
    'backupstarted': 'Started backup of the server.;;The server may lag for a moment.',
    'backupfinished': 'Backup {0} finished.',
    'backupfailed': 'Backup {0} failed, see the log for details.',
    'backupinprogress': 'A backup is already in progress, skipping this one.',
    'backupoff': 'Backups are disabled, skipping.',
    'abortedbackup': 'No players online, skipping backup.',
    'lastbackup': 'All players left, performing a last backup.',
    'skipbackupbypass': 'All online players can bypass backups, skipping.',
    'enabledplugins': 'Only backing up these plugins:',
    'disabledplugins': 'Skipping these plugins:',
    'backuptoggleon': 'Scheduled backups are now enabled.',
    'backuptoggleoff': 'Scheduled backups are now disabled.',
    'manualbackup': 'Manual backup requested.',
}


class MessageCatalog:
    """
    Keyed message strings with positional ``{0}`` placeholders.
    """

    def __init__(self, messages: Optional[Dict[str, str]] = None):
        self.messages = dict(DEFAULT_MESSAGES)
        if messages:
            self.messages.update(messages)

    @classmethod
    def from_file(cls, path: Optional[str]) -> 'MessageCatalog':
        """
        Load overrides from a JSON object file on top of the defaults.

        Args:
            path: JSON file path, or None for defaults only
        """
        if not path:
            return cls()

        with open(path, 'r', encoding='utf-8') as f:
            overrides = json.load(f)

        if not isinstance(overrides, dict):
            raise ValueError(f"Messages file must contain a JSON object: {path}")

        return cls({str(k): str(v) for k, v in overrides.items()})

    def get_message(self, key: str, *args) -> Optional[str]:
        """Return the formatted message, or None when the key is unknown."""
        template = self.messages.get(key)
        if template is None:
            return None
        if args:
            return template.format(*args)
        return template


def split_lines(message: str) -> List[str]:
    """Split a catalog message on its line-break marker."""
    return message.split(LINE_BREAK)
