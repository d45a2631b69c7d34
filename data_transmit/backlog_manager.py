#!/usr/bin/env python3
"""
Backlog Manager for Data Transmit
Removes uploaded files and keeps the unsent backlog under a byte quota
"""

import logging
from pathlib import Path
from typing import Iterable, List

from data_transmit.failure_counters import FailureCounters
from data_transmit.models import BacklogEntry, SpoolDirectory, sort_backlog
from data_transmit.utils import format_bytes

logger = logging.getLogger(__name__)


class BacklogManager:
    """
    Owns every deletion the system performs on spooled files.

    Features:
    - Delete files after a successful upload
    - Quota eviction: keep the newest files that fit in quota_bytes,
      delete the rest (oldest first)
    - Count every eviction per spool directory and persist the report

    Safety:
    - A failed deletion is logged and never counted as an eviction
    - Never touches files it does not delete

    Example:
        >>> backlog = BacklogManager(counters, quota_bytes=5 * 1024**2)
        >>> evicted = backlog.enforce_quota(entries)  # Phase A survivors
        >>> backlog.get_backlog_size(registry)

    Attributes:
        failure_counters (FailureCounters): Per-directory eviction counters
        quota_bytes (int): Maximum total size of the retained backlog
    """

    def __init__(self, failure_counters: FailureCounters, quota_bytes: int):
        self.failure_counters = failure_counters
        self.quota_bytes = quota_bytes

        logger.info(f"Backlog quota: {format_bytes(quota_bytes)}")

    def remove_uploaded(self, filepath: str) -> bool:
        """
        Delete a file that was uploaded successfully.

        Returns:
            bool: True if deleted. False means the upload stands but the file
                  is still on disk and may be uploaded again later.
        """
        file_path = Path(filepath)
        try:
            file_path.unlink()
            logger.debug(f"Deleted uploaded file: {file_path.name}")
            return True
        except OSError as e:
            logger.error(f"Uploaded file not garbage collected: {file_path}: {e}")
            return False

    def evict(self, entry: BacklogEntry, reason: str) -> bool:
        """
        Delete an unsent file and count it against its directory.

        Returns:
            bool: True if the file was deleted and counted
        """
        try:
            entry.path.unlink()
        except OSError as e:
            logger.error(f"Failed to evict {entry.path}: {e}")
            return False

        count = self.failure_counters.increment(entry.directory_name)
        logger.warning(
            f"EVICTED ({reason}): {entry.path.name} [{entry.directory_name}] "
            f"({format_bytes(entry.size)}), {count} evicted from this directory so far"
        )
        return True

    def enforce_quota(self, entries: List[BacklogEntry]) -> List[BacklogEntry]:
        """
        Evict the oldest files that do not fit in the quota.

        Walks the entries newest first, accumulating sizes. Each entry is
        kept if it still fits under the quota on top of the newer entries
        already kept, otherwise it is evicted. Evicted entries do not count
        toward the retained total, so an older, smaller entry may still fit
        after a larger one was evicted. The failure report is rewritten if
        anything was evicted.

        Args:
            entries: Every file still in the backlog after the retry pass

        Returns:
            List[BacklogEntry]: Entries that were evicted
        """
        running_total = 0
        evicted: List[BacklogEntry] = []

        for entry in sort_backlog(entries):
            if running_total + entry.size <= self.quota_bytes:
                running_total += entry.size
                continue

            if self.evict(entry, "over quota"):
                evicted.append(entry)

        if evicted:
            freed = sum(entry.size for entry in evicted)
            logger.warning(
                f"Quota eviction: {len(evicted)} files, {format_bytes(freed)} freed, "
                f"{format_bytes(running_total)} retained of {format_bytes(self.quota_bytes)}"
            )
            self.failure_counters.save()
        else:
            logger.debug(
                f"Backlog within quota: {format_bytes(running_total)} "
                f"of {format_bytes(self.quota_bytes)}"
            )

        return evicted

    def get_backlog_size(self, directories: Iterable[SpoolDirectory]) -> int:
        """Total bytes of the spooled files currently in the given directories."""
        total = 0
        for directory in directories:
            try:
                names = directory.list_files()
            except OSError as e:
                logger.warning(f"Cannot list {directory.path}: {e}")
                continue

            for name in names:
                try:
                    total += (directory.path / name).stat().st_size
                except OSError as e:
                    logger.debug(f"Not counted in backlog size: {directory.path / name}: {e}")
        return total
