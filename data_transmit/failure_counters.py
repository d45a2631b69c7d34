#!/usr/bin/env python3
"""
Failure Counters for Data Transmit
Counts files evicted from each spool directory and persists the report

Report format (one line per spool directory, rewritten in full):
    http 3
    passive 0
"""

import logging
import os
import threading
from pathlib import Path
from typing import Dict

from data_transmit.models import SpoolRegistry

logger = logging.getLogger(__name__)


class FailureCounters:
    """
    Per-directory eviction counters.

    Counters start at zero, only ever go up and are never reset while the
    process runs. A crash between an increment and the next save loses the
    counts since the last successful save.

    Example:
        >>> counters = FailureCounters(registry, '/var/lib/data-transmit/failures')
        >>> counters.increment('http')
        >>> counters.save()

    Attributes:
        report_file (Path): Where the report is written
        counts (Dict[str, int]): Directory name -> evicted file count
    """

    def __init__(self, registry: SpoolRegistry, report_file: str):
        self.registry = registry
        self.report_file = Path(report_file)
        self.counts: Dict[str, int] = {name: 0 for name in registry.names()}
        self._lock = threading.Lock()

        logger.info(f"Failure report: {self.report_file}")

    def increment(self, directory_name: str) -> int:
        """
        Count one evicted file.

        Raises:
            KeyError: If directory_name is not a registered spool directory
        """
        with self._lock:
            if directory_name not in self.counts:
                raise KeyError(f"Unknown spool directory: {directory_name}")
            self.counts[directory_name] += 1
            return self.counts[directory_name]

    def get(self, directory_name: str) -> int:
        return self.counts.get(directory_name, 0)

    def render(self) -> str:
        with self._lock:
            return "".join(f"{name} {self.counts[name]}\n" for name in self.registry.names())

    def save(self) -> bool:
        """
        Rewrite the report file with every directory's count.

        Returns:
            bool: True if the report was written, False if writing failed
        """
        content = self.render()

        try:
            self.report_file.parent.mkdir(parents=True, exist_ok=True)

            # Write atomically using temp file
            temp_file = self.report_file.with_name(self.report_file.name + ".tmp")
            with open(temp_file, "w") as f:
                f.write(content)
            os.replace(temp_file, self.report_file)

            logger.debug(f"Saved failure report: {self.report_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to write failure report {self.report_file}: {e}")
            return False
