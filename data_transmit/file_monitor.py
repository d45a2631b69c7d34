#!/usr/bin/env python3
"""
File Monitor for Data Transmit
Watches spool directories for files moved into them

Producers write a file somewhere else and then move (rename) it into a
spool directory, so a move event means the file is complete. Created and
modified events are ignored: they fire while a file is still being written.

On Linux the inotify observer is run with full move events, so a file
moved in from an unwatched directory is still reported as a move (plain
inotify reporting would turn it into a create event).
"""

import logging
import os
import sys
import traceback
from typing import Callable, List

from watchdog.events import FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


def _create_observer():
    """Pick the watchdog observer for this platform."""
    if sys.platform.startswith("linux"):
        from watchdog.observers.inotify import InotifyObserver

        return InotifyObserver(generate_full_events=True)
    return Observer()


class FileMonitor:
    """
    Monitors spool directories and reports files moved into them.

    Example:
        >>> def on_moved(filepath):
        ...     print(f"File ready: {filepath}")
        >>> monitor = FileMonitor(['/var/spool/data-transmit/http'], on_moved)
        >>> monitor.start()
        >>> # ... events are delivered on watchdog's thread ...
        >>> monitor.stop()

    Attributes:
        directories (List[str]): Absolute paths of the watched directories
        callback (Callable): Called with the absolute path of each moved-in file
    """

    def __init__(self, directories: List[str], callback: Callable[[str], None]):
        """
        Initialize file monitor.

        Args:
            directories: Spool directory paths to watch (non-recursive)
            callback: Function to call with each moved-in file's path
        """
        self.directories = [os.path.abspath(d) for d in directories]
        self.callback = callback

        self.observer = _create_observer()
        self.handler = SpoolEventHandler(self.directories, self._dispatch)

        self._running = False

        logger.info(f"Initialized monitoring {len(self.directories)} directories")

    def start(self):
        """
        Register watches and start delivering events.

        Raises:
            OSError: If a directory cannot be watched
        """
        if self._running:
            logger.warning("Already running")
            return

        for directory in self.directories:
            self.observer.schedule(
                self.handler, directory, recursive=False, event_filter=[FileMovedEvent]
            )

        self.observer.start()
        self._running = True

        logger.info("Started monitoring")

    def stop(self):
        """Stop the observer (safe to call multiple times)."""
        if not self._running:
            return

        self._running = False
        self.observer.stop()
        self.observer.join()

        logger.info("Stopped monitoring")

    def is_alive(self) -> bool:
        """True while the observer thread is delivering events."""
        return self._running and self.observer.is_alive()

    def _dispatch(self, filepath: str):
        """Run the callback, keeping the observer thread alive on errors."""
        try:
            self.callback(filepath)
        except Exception as e:
            logger.error(f"Callback failed for {filepath}: {e}")
            logger.debug(traceback.format_exc())


class SpoolEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler for spool directories.

    Forwards file move events whose destination is directly inside a
    watched directory. Ignores directory events and every other event type.
    """

    def __init__(self, directories: List[str], callback: Callable[[str], None]):
        self.directories = set(directories)
        self.callback = callback

    def on_moved(self, event):
        """
        Called when a file is moved or renamed.

        Args:
            event: FileSystemMovedEvent with src_path and dest_path
        """
        if event.is_directory or not event.dest_path:
            return

        dest_path = os.fsdecode(event.dest_path)
        if os.path.dirname(dest_path) not in self.directories:
            logger.debug(f"Ignoring move out of spool: {event.src_path}")
            return

        logger.info(f"File move detected: {dest_path}")
        self.callback(dest_path)
