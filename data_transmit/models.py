#!/usr/bin/env python3
"""
Data models for Data Transmit
Spool directory registry and backlog entries

The registry is built once at startup from the immediate subdirectories of
the uploads root and never changes while the process runs. Backlog entries
are throwaway snapshots taken during a retry sweep to order evictions.
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpoolDirectory:
    """One monitored spool directory."""
    name: str
    path: Path

    def list_files(self) -> List[str]:
        """
        Names of the spooled files, sorted.

        Regular files and symlinks count as spooled files; subdirectories
        and other special entries do not.

        Raises:
            OSError: If the directory cannot be listed
        """
        with os.scandir(self.path) as it:
            return sorted(
                entry.name for entry in it
                if entry.is_symlink() or entry.is_file(follow_symlinks=False)
            )


@dataclass(frozen=True)
class BacklogEntry:
    """Snapshot of one spooled file taken during a sweep."""
    path: Path
    directory_name: str
    last_modified: float
    size: int

    @classmethod
    def from_stat(cls, path: Path, directory_name: str,
                  stat_result: os.stat_result) -> "BacklogEntry":
        return cls(
            path=path,
            directory_name=directory_name,
            last_modified=stat_result.st_mtime,
            size=stat_result.st_size,
        )


class SpoolRegistry:
    """
    Immutable set of spool directories.

    Example:
        >>> registry = SpoolRegistry.discover('/var/spool/data-transmit')
        >>> [d.name for d in registry]
        ['http', 'passive']
        >>> registry.find_by_path('/var/spool/data-transmit/http').name
        'http'

    Attributes:
        root (Path): Uploads root the directories were discovered under
        directories (Tuple[SpoolDirectory, ...]): Directories in discovery order
    """

    def __init__(self, root: str, directories: List[SpoolDirectory]):
        self.root = Path(root)
        self.directories: Tuple[SpoolDirectory, ...] = tuple(directories)
        self._by_path: Dict[Path, SpoolDirectory] = {d.path: d for d in self.directories}
        self._by_name: Dict[str, SpoolDirectory] = {d.name: d for d in self.directories}

    @classmethod
    def discover(cls, root: str) -> "SpoolRegistry":
        """
        Build the registry from the non-hidden subdirectories of root.

        Args:
            root: Uploads root directory

        Returns:
            SpoolRegistry: Directories sorted by name

        Raises:
            OSError: If root cannot be listed or an entry cannot be stat'ed
        """
        root_path = Path(root).absolute()
        directories = []

        for name in sorted(os.listdir(root_path)):
            # Skip hidden entries
            if name.startswith('.'):
                continue

            path = root_path / name
            if stat.S_ISDIR(os.stat(path).st_mode):
                directories.append(SpoolDirectory(name=name, path=path))

        if not directories:
            logger.warning(f"No spool directories found under {root_path}")
        else:
            logger.info(f"Discovered {len(directories)} spool directories under {root_path}")

        return cls(str(root_path), directories)

    def __iter__(self) -> Iterator[SpoolDirectory]:
        return iter(self.directories)

    def __len__(self) -> int:
        return len(self.directories)

    def names(self) -> List[str]:
        return [d.name for d in self.directories]

    def paths(self) -> List[str]:
        return [str(d.path) for d in self.directories]

    def find_by_path(self, directory: str) -> Optional[SpoolDirectory]:
        """Return the spool directory whose absolute path is directory, if any."""
        return self._by_path.get(Path(directory).absolute())

    def find_by_name(self, name: str) -> Optional[SpoolDirectory]:
        return self._by_name.get(name)


def sort_backlog(entries: List[BacklogEntry]) -> List[BacklogEntry]:
    """Order entries newest first by last-modified time (stable for ties)."""
    return sorted(entries, key=lambda entry: entry.last_modified, reverse=True)
