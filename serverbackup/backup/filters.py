"""
Inclusion filters for the recursive copy.

A filter is called with the path of each entry relative to the directory
being copied and returns True to include it. Excluded directories are not
descended into.
"""

from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Callable, FrozenSet

from serverbackup.config import ExtensionSelection


PathFilter = Callable[[PurePath], bool]


def include_all(relative_path: PurePath) -> bool:
    return True


@dataclass(frozen=True)
class NameDenyFilter:
    """
    Deny entries whose name, or the name of any parent directory, is listed.

    ``denied_paths`` additionally denies specific relative paths such as a
    temp folder that lives inside the copied tree.
    """

    denied_names: FrozenSet[str] = field(default_factory=frozenset)
    denied_paths: FrozenSet[PurePath] = field(default_factory=frozenset)

    def __call__(self, relative_path: PurePath) -> bool:
        if any(part in self.denied_names for part in relative_path.parts):
            return False
        return relative_path not in self.denied_paths


@dataclass(frozen=True)
class ExtensionFilter:
    """
    Keep or drop plugin files by name.

    An entry matches when any configured name is a substring of its path
    relative to the plugins directory. In ``allow`` mode only matching
    entries are kept, in ``deny`` mode matching entries are dropped. With
    no names configured everything is kept.
    """

    mode: str = 'allow'
    names: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.mode not in ('allow', 'deny'):
            raise ValueError(f"Invalid selection mode: {self.mode}")

    @classmethod
    def from_selection(cls, selection: ExtensionSelection) -> 'ExtensionFilter':
        return cls(mode=selection.mode, names=selection.names)

    def __call__(self, relative_path: PurePath) -> bool:
        if not self.names:
            return True

        identifier = relative_path.as_posix()
        matched = any(name in identifier for name in self.names)
        return matched if self.mode == 'allow' else not matched
