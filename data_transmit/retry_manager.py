#!/usr/bin/env python3
"""
Retry Manager for Data Transmit
Periodically retries stray uploads and bounds the backlog

A sweep has two phases:
  A. For every spool directory, retry each file that has been in the spool
     longer than the retry threshold. Uploaded files are deleted; everything
     else stays in the backlog.
  B. Evict the oldest backlog files that do not fit in the quota.

With the ``max_age`` policy, phase B is replaced by deleting files older
than ``max_age_seconds`` during phase A.
"""

import logging
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Callable, List, Optional

from data_transmit.backlog_manager import BacklogManager
from data_transmit.models import BacklogEntry, SpoolDirectory, SpoolRegistry
from data_transmit.upload_manager import TransferError, UploadManager
from data_transmit.utils import format_bytes, spool_age_seconds

logger = logging.getLogger(__name__)

POLICY_QUOTA = "quota"
POLICY_MAX_AGE = "max_age"


@dataclass
class SweepResult:
    """Outcome of one sweep."""
    retried: int = 0
    uploaded: int = 0
    failed: int = 0
    evicted: int = 0
    bytes_uploaded: int = 0
    retained_bytes: int = 0


class RetryManager:
    """
    Timer-driven retry sweeper.

    Runs one sweep as soon as it starts, then another ``interval_seconds``
    after each sweep finishes. A sweep holds the transfer lock from start to
    end, so no event-driven upload can run in the middle of it.

    Example:
        >>> sweeper = RetryManager(registry, uploader, backlog, lock,
        ...                        interval_seconds=180, retry_threshold_seconds=180)
        >>> sweeper.start()
        >>> result = sweeper.run_sweep()  # or synchronously

    Attributes:
        interval_seconds (float): Delay between the end of a sweep and the next
        retry_threshold_seconds (float): Spool age a file needs to be retried
        policy (str): 'quota' or 'max_age'
        max_age_seconds (Optional[float]): Age at which files are dropped ('max_age')
    """

    def __init__(self,
                 registry: SpoolRegistry,
                 upload_manager: UploadManager,
                 backlog_manager: BacklogManager,
                 transfer_lock: threading.Lock,
                 interval_seconds: float,
                 retry_threshold_seconds: float,
                 policy: str = POLICY_QUOTA,
                 max_age_seconds: Optional[float] = None,
                 on_sweep: Optional[Callable[[SweepResult], None]] = None):
        if policy not in (POLICY_QUOTA, POLICY_MAX_AGE):
            raise ValueError(f"Unknown backlog policy: {policy}")
        if policy == POLICY_MAX_AGE and not max_age_seconds:
            raise ValueError("max_age_seconds is required for the max_age policy")

        self.registry = registry
        self.upload_manager = upload_manager
        self.backlog_manager = backlog_manager
        self.transfer_lock = transfer_lock
        self.interval_seconds = interval_seconds
        self.retry_threshold_seconds = retry_threshold_seconds
        self.policy = policy
        self.max_age_seconds = max_age_seconds
        self.on_sweep = on_sweep

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(f"Retry interval: {interval_seconds:.0f} seconds")
        logger.info(f"Retry threshold: {retry_threshold_seconds:.0f} seconds")
        if policy == POLICY_MAX_AGE:
            logger.info(f"Backlog policy: max_age ({max_age_seconds:.0f} seconds)")
        else:
            logger.info(f"Backlog policy: quota ({format_bytes(backlog_manager.quota_bytes)})")

    def start(self):
        """Start the sweeper thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._sweep_loop, name="retry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5):
        """Stop the sweeper thread, waiting for an in-progress sweep up to timeout."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _sweep_loop(self):
        """Background thread: sweep, then wait a full interval, until stopped."""
        logger.info("Retry sweeper started")

        while not self._stop_event.is_set():
            try:
                self.run_sweep()
            except Exception as e:
                logger.error(f"Error in retry sweep: {e}")
                logger.debug(traceback.format_exc())

            # Re-armed relative to completion, not on a fixed schedule
            self._stop_event.wait(self.interval_seconds)

        logger.info("Retry sweeper stopped")

    def run_sweep(self, now: Optional[float] = None) -> SweepResult:
        """
        Run one complete sweep across all spool directories.

        Args:
            now: Reference time for age computation (default: current time)

        Returns:
            SweepResult: Counts for this sweep
        """
        result = SweepResult()

        with self.transfer_lock:
            if now is None:
                now = time.time()

            backlog: List[BacklogEntry] = []
            for directory in self.registry:
                backlog.extend(self._retry_directory(directory, now, result))

            if self.policy == POLICY_QUOTA:
                evicted = self.backlog_manager.enforce_quota(backlog)
                result.evicted += len(evicted)
                evicted_paths = {entry.path for entry in evicted}
                result.retained_bytes = sum(
                    entry.size for entry in backlog if entry.path not in evicted_paths
                )
            else:
                result.retained_bytes = sum(entry.size for entry in backlog)
                if result.evicted:
                    self.backlog_manager.failure_counters.save()

        logger.info(
            f"Sweep complete: {result.retried} retried, {result.uploaded} uploaded, "
            f"{result.failed} failed, {result.evicted} evicted, "
            f"{format_bytes(result.retained_bytes)} in backlog"
        )

        if self.on_sweep is not None:
            self.on_sweep(result)

        return result

    def _retry_directory(self, directory: SpoolDirectory, now: float,
                         result: SweepResult) -> List[BacklogEntry]:
        """
        Phase A for one directory.

        Returns:
            List[BacklogEntry]: Files that remain in the backlog
        """
        try:
            names = directory.list_files()
        except OSError as e:
            logger.error(f"Cannot list spool directory {directory.path}: {e}")
            return []

        remaining: List[BacklogEntry] = []

        for name in names:
            file_path = directory.path / name
            try:
                stat = file_path.stat()
            except OSError as e:
                logger.warning(f"Cannot stat {file_path}: {e}")
                continue

            entry = BacklogEntry.from_stat(file_path, directory.name, stat)
            age = spool_age_seconds(stat, now)

            if self.policy == POLICY_MAX_AGE and age > self.max_age_seconds:
                # Give up without another attempt
                if self.backlog_manager.evict(entry, f"older than {self.max_age_seconds:.0f}s"):
                    result.evicted += 1
                continue

            if age > self.retry_threshold_seconds:
                result.retried += 1
                logger.info(f"Retrying file {file_path}")
                try:
                    self.upload_manager.upload_file(str(file_path), directory.name)
                except TransferError as e:
                    result.failed += 1
                    logger.warning(f"Retry failed, keeping in backlog: {e}")
                else:
                    result.uploaded += 1
                    result.bytes_uploaded += stat.st_size
                    self.backlog_manager.remove_uploaded(str(file_path))
                    continue

            remaining.append(entry)

        return remaining
