#!/usr/bin/env python3
"""
Data Transmit - Main Application
Integrates all components for production use

This is the main entry point that wires the spool registry, the event-driven
uploader, the retry sweeper and backlog eviction together.
"""

import signal
import sys
import threading
import time
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from data_transmit.backlog_manager import BacklogManager
from data_transmit.config_manager import ConfigManager, ConfigValidationError, load_node_id
from data_transmit.failure_counters import FailureCounters
from data_transmit.file_monitor import FileMonitor
from data_transmit.models import SpoolRegistry
from data_transmit.retry_manager import RetryManager, SweepResult
from data_transmit.upload_manager import TransferError, UploadManager
from data_transmit.utils import format_bytes

logger = logging.getLogger(__name__)


class DataTransmitSystem:
    """
    Main system coordinator for spool uploads.

    Coordinates:
    - Configuration and node identity (config_manager)
    - Spool directory registry (models)
    - Move notifications (file_monitor)
    - Collector uploads (upload_manager)
    - Periodic retries and backlog eviction (retry_manager, backlog_manager)

    Architecture:
    1. File Monitor reports a file moved into a spool directory
    2. The file is uploaded at once; uploaded files are deleted, failed
       files stay where they are
    3. Retry Manager sweeps every spool on a timer, retrying files older
       than the retry threshold, then evicts the oldest backlog over quota
    4. Both paths share one Upload Manager behind the transfer lock, so
       transfers never overlap

    Example:
        >>> system = DataTransmitSystem('/etc/data-transmit/config.yaml')
        >>> system.start()
        >>> # ... system runs ...
        >>> system.stop()

    Attributes:
        config (ConfigManager): Configuration manager
        registry (SpoolRegistry): Spool directories fixed at startup
        upload_manager (UploadManager): Collector client shared by both paths
        backlog_manager (BacklogManager): Deletions and quota eviction
        retry_manager (RetryManager): Timer-driven sweeper
        file_monitor (FileMonitor): Move event source
        stats (dict): Runtime statistics
    """

    def __init__(self, config_path: Optional[str] = None, collector_url: Optional[str] = None):
        """
        Initialize the system.

        Loads configuration and node identity, discovers spool directories
        and builds all components. Does not start anything - call start().

        Args:
            config_path: Path to configuration file (None for built-in defaults)
            collector_url: Collector URL overriding the configured one

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigValidationError: If config or collector URL is invalid
            IdentityError: If the node id cannot be read
            OSError: If the uploads root cannot be enumerated
        """
        logger.info("Initializing Data Transmit...")

        self.config = ConfigManager(config_path)

        self.collector_url = collector_url or self.config.get("collector.url")
        parsed = urlparse(self.collector_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigValidationError(f"Collector URL must be an http(s) URL, got: {self.collector_url}")

        self.node_id = load_node_id(self.config.get("node_id_file"))
        logger.info(f"Node ID: {self.node_id.decode(errors='backslashreplace')}")

        self.registry = SpoolRegistry.discover(self.config.get("uploads_root"))
        logger.info(f"Spool directories: {', '.join(self.registry.names()) or '(none)'}")

        self.upload_manager = UploadManager(
            collector_url=self.collector_url,
            node_id=self.node_id,
            build_id=self.config.get("collector.build_id"),
            verify_ssl=self.config.get("collector.verify_ssl"),
            connect_timeout=self.config.get("collector.connect_timeout_seconds"),
            read_timeout=self.config.get("collector.read_timeout_seconds"),
        )

        self.failure_counters = FailureCounters(
            self.registry, self.config.get("failures.report_file")
        )
        self.backlog_manager = BacklogManager(
            self.failure_counters, self.config.get("backlog.quota_bytes")
        )

        # Held for each event-driven upload and for each whole sweep
        self._transfer_lock = threading.Lock()

        self.retry_manager = RetryManager(
            registry=self.registry,
            upload_manager=self.upload_manager,
            backlog_manager=self.backlog_manager,
            transfer_lock=self._transfer_lock,
            interval_seconds=self.config.retry_interval_seconds(),
            retry_threshold_seconds=self.config.retry_threshold_seconds(),
            policy=self.config.get("backlog.policy"),
            max_age_seconds=self.config.get("backlog.max_age_seconds"),
            on_sweep=self._on_sweep_complete,
        )

        self.file_monitor = FileMonitor(self.registry.paths(), self._on_file_moved)

        self._running = False
        self._stats_lock = threading.Lock()
        self.stats = {
            "files_detected": 0,
            "files_uploaded": 0,
            "files_failed": 0,
            "files_retried": 0,
            "files_evicted": 0,
            "bytes_uploaded": 0,
            "sweeps": 0,
        }

        logger.info("Initialization complete")

    def start(self):
        """
        Start the system.

        Registers directory watches, then starts the retry sweeper, whose
        first sweep runs immediately and picks up files left from before.

        Raises:
            OSError: If a spool directory cannot be watched
        """
        if self._running:
            logger.warning("Already running")
            return

        logger.info("Starting Data Transmit...")

        backlog = self.backlog_manager.get_backlog_size(self.registry)
        logger.info(f"Existing backlog: {format_bytes(backlog)}")

        self.file_monitor.start()
        self.retry_manager.start()
        self._running = True

        logger.info("System started successfully")
        logger.info(f"Collector: {self.collector_url}")
        logger.info(f"Monitoring directories: {len(self.registry)}")

    def stop(self):
        """
        Stop the system gracefully.

        Stops the event source, waits for an in-progress sweep, closes the
        HTTP session and prints final statistics.
        """
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False

        self.file_monitor.stop()
        self.retry_manager.stop()
        self.upload_manager.close()

        self._print_statistics()
        logger.info("Shutdown complete")

    def is_healthy(self) -> bool:
        """True while the event source is delivering events."""
        return self.file_monitor.is_alive()

    def _on_file_moved(self, filepath: str):
        """
        Event-driven upload of a file moved into a spool directory.

        Uploads once. On success the file is deleted; on failure it is left
        untouched for the retry sweeper.

        Args:
            filepath: Absolute path of the moved-in file
        """
        file_path = Path(filepath)
        directory = self.registry.find_by_path(str(file_path.parent))
        if directory is None:
            logger.warning(f"Not in a spool directory, ignoring: {filepath}")
            return

        with self._stats_lock:
            self.stats["files_detected"] += 1

        with self._transfer_lock:
            try:
                file_size = file_path.stat().st_size
            except FileNotFoundError:
                logger.debug(f"File already handled by sweep: {file_path.name}")
                return
            except OSError as e:
                logger.warning(f"Cannot stat {file_path}: {e}")
                return

            try:
                self.upload_manager.upload_file(str(file_path), directory.name)
            except TransferError as e:
                with self._stats_lock:
                    self.stats["files_failed"] += 1
                logger.warning(f"Upload failed, left for retry: {e}")
                return

            with self._stats_lock:
                self.stats["files_uploaded"] += 1
                self.stats["bytes_uploaded"] += file_size

            self.backlog_manager.remove_uploaded(str(file_path))

    def _on_sweep_complete(self, result: SweepResult):
        """Fold a sweep's counts into the runtime statistics."""
        with self._stats_lock:
            self.stats["sweeps"] += 1
            self.stats["files_retried"] += result.retried
            self.stats["files_uploaded"] += result.uploaded
            self.stats["files_failed"] += result.failed
            self.stats["files_evicted"] += result.evicted
            self.stats["bytes_uploaded"] += result.bytes_uploaded

    def _print_statistics(self):
        """Log runtime statistics."""
        stats = self.get_statistics()
        logger.info("=" * 60)
        logger.info("STATISTICS")
        logger.info("=" * 60)
        logger.info(f"Files detected: {stats['files_detected']}")
        logger.info(f"Files uploaded: {stats['files_uploaded']}")
        logger.info(f"Upload failures: {stats['files_failed']}")
        logger.info(f"Files retried: {stats['files_retried']}")
        logger.info(f"Files evicted: {stats['files_evicted']}")
        logger.info(f"Bytes uploaded: {format_bytes(stats['bytes_uploaded'])}")
        logger.info(f"Sweeps: {stats['sweeps']}")
        for name in self.registry.names():
            logger.info(f"Evicted from {name}: {self.failure_counters.get(name)}")
        logger.info("=" * 60)

    def get_statistics(self) -> dict:
        """Get a copy of the runtime statistics."""
        with self._stats_lock:
            return self.stats.copy()


def signal_handler(signum, frame):
    """
    Handle shutdown signals (SIGTERM, SIGINT).

    SIGHUP is handled by ConfigManager (validate-only reload).
    """
    logger.info(f"Received signal {signum}")
    if "system" in globals():
        system.stop()
    sys.exit(0)


def main():
    """
    Main entry point for Data Transmit.

    Command-line arguments:
        url: Collector URL (overrides the configured one)
        --config: Path to configuration file
        --test-config: Test configuration and exit
        --log-level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    import argparse

    parser = argparse.ArgumentParser(description="Data Transmit spool uploader")
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Collector URL (default: collector.url from config)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration file (default: built-in settings)"
    )
    parser.add_argument(
        "--test-config",
        action="store_true",
        help="Test configuration and exit"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.test_config:
        try:
            config = ConfigManager(args.config)
            node_id = load_node_id(config.get("node_id_file"))
            registry = SpoolRegistry.discover(config.get("uploads_root"))
            logger.info("Configuration valid!")
            logger.info(f"Node ID: {node_id.decode(errors='backslashreplace')}")
            logger.info(f"Collector: {args.url or config.get('collector.url')}")
            logger.info(f"Spool directories: {registry.names()}")
            logger.info(f"Retry interval: {config.retry_interval_seconds():.0f}s")
            logger.info(f"Retry threshold: {config.retry_threshold_seconds():.0f}s")
            logger.info(f"Backlog policy: {config.get('backlog.policy')}")
            logger.info(f"Quota: {format_bytes(config.get('backlog.quota_bytes'))}")
            sys.exit(0)
        except Exception as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    global system

    try:
        system = DataTransmitSystem(args.config, collector_url=args.url)
        system.start()
    except Exception as e:
        logger.error(f"FATAL ERROR: {e}")
        sys.exit(1)

    logger.info("Running... Press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
            if not system.is_healthy():
                logger.error("FATAL ERROR: directory event source stopped")
                system.stop()
                sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        system.stop()


if __name__ == "__main__":
    main()
