#!/usr/bin/env python3
"""
Utility functions for Data Transmit
Byte formatting and file age helpers shared by the upload components
"""

import os


def format_bytes(bytes_value: int, precision: int = 2) -> str:
    """Format bytes as human-readable string with auto-scaling (B/KB/MB/GB)."""
    if bytes_value < 1024:
        return f"{bytes_value} B"
    elif bytes_value < 1024**2:
        return f"{bytes_value / 1024:.{precision}f} KB"
    elif bytes_value < 1024**3:
        return f"{bytes_value / 1024**2:.{precision}f} MB"
    else:
        return f"{bytes_value / 1024**3:.{precision}f} GB"


def spool_age_seconds(stat_result: os.stat_result, now: float) -> float:
    """
    Seconds a file has been sitting in its spool directory.

    Uses the status-change time (ctime): it is bumped whenever the file is
    moved into the spool or touched, and a failed upload never changes it.
    """
    return now - stat_result.st_ctime
