#!/usr/bin/env python3
"""
Tests for File Monitor
"""
import os
import time

import pytest
from watchdog.events import (
    DirMovedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from data_transmit.file_monitor import FileMonitor, SpoolEventHandler


def wait_until(condition, timeout=10, interval=0.1, description="condition"):
    """
    Poll until condition is true or timeout expires

    Args:
        condition: Callable that returns bool
        timeout: Maximum seconds to wait
        interval: Seconds between checks
        description: Description for error message

    Returns:
        bool: True if condition met, False if timeout
    """
    start = time.time()
    while time.time() - start < timeout:
        if condition():
            return True
        time.sleep(interval)

    elapsed = time.time() - start
    print(f"Timeout after {elapsed:.1f}s waiting for: {description}")
    return False


@pytest.fixture
def callback_tracker():
    """Fixture to track callback calls"""
    class CallbackTracker:
        def __init__(self):
            self.called_files = []

        def callback(self, filepath):
            self.called_files.append(filepath)
            print(f"[Test] Callback received: {filepath}")

    return CallbackTracker()


@pytest.fixture
def spool_dirs(spool_root):
    return [str(spool_root / "http"), str(spool_root / "passive")]


@pytest.fixture
def handler(spool_dirs, callback_tracker):
    return SpoolEventHandler(spool_dirs, callback_tracker.callback)


def test_handler_forwards_move_into_spool(handler, callback_tracker, spool_root):
    """Test a rename into a spool directory reaches the callback"""
    dest = str(spool_root / "http" / "1.gz")

    handler.dispatch(FileMovedEvent(str(spool_root / "http" / ".1.gz.tmp"), dest))

    assert callback_tracker.called_files == [dest]


def test_handler_forwards_move_from_outside(handler, callback_tracker, spool_root):
    """Test a move with no known source is still reported"""
    dest = str(spool_root / "passive" / "2.gz")

    handler.dispatch(FileMovedEvent("", dest))

    assert callback_tracker.called_files == [dest]


def test_handler_ignores_move_out_of_spool(handler, callback_tracker, spool_root, temp_dir):
    """Test moves whose destination is not a watched directory are ignored"""
    handler.dispatch(FileMovedEvent(str(spool_root / "http" / "1.gz"), str(temp_dir / "1.gz")))
    handler.dispatch(FileMovedEvent("", str(spool_root / "http" / "nested" / "1.gz")))

    assert callback_tracker.called_files == []


def test_handler_ignores_directory_moves(handler, callback_tracker, spool_root):
    """Test directories moved into a spool are not uploaded"""
    handler.dispatch(DirMovedEvent("", str(spool_root / "http" / "subdir")))

    assert callback_tracker.called_files == []


def test_handler_ignores_create_and_modify(handler, callback_tracker, spool_root):
    """Test files still being written are not reported"""
    path = str(spool_root / "http" / "partial.gz")

    handler.dispatch(FileCreatedEvent(path))
    handler.dispatch(FileModifiedEvent(path))

    assert callback_tracker.called_files == []


def test_handler_ignores_empty_destination(handler, callback_tracker, spool_root):
    """Test a move out of the spool to an unwatched place is ignored"""
    handler.dispatch(FileMovedEvent(str(spool_root / "http" / "1.gz"), ""))

    assert callback_tracker.called_files == []


def test_monitor_initialization(spool_dirs, callback_tracker):
    """Test monitor can be initialized"""
    monitor = FileMonitor(spool_dirs, callback_tracker.callback)

    assert monitor.directories == [os.path.abspath(d) for d in spool_dirs]
    assert not monitor.is_alive()


def test_dispatch_survives_callback_error(spool_dirs):
    """Test a failing callback does not propagate into the observer"""
    def broken(filepath):
        raise RuntimeError("boom")

    monitor = FileMonitor(spool_dirs, broken)

    monitor._dispatch("/var/spool/data-transmit/http/1.gz")


def test_monitor_start_stop(spool_dirs, callback_tracker):
    """Test monitor can start and stop"""
    monitor = FileMonitor(spool_dirs, callback_tracker.callback)

    monitor.start()
    assert monitor.is_alive()

    monitor.stop()
    assert not monitor.is_alive()

    # Second stop is a no-op
    monitor.stop()


def test_monitor_detects_rename_in_spool(spool_root, spool_dirs, callback_tracker):
    """Test a file written to a temp name and renamed is reported once"""
    monitor = FileMonitor(spool_dirs, callback_tracker.callback)
    monitor.start()

    try:
        temp_path = spool_root / "http" / ".1718000000.gz.tmp"
        final_path = spool_root / "http" / "1718000000.gz"
        temp_path.write_bytes(b"payload")
        os.rename(temp_path, final_path)

        assert wait_until(
            lambda: str(final_path) in callback_tracker.called_files,
            timeout=5,
            description="rename event",
        )
        time.sleep(0.5)
        assert callback_tracker.called_files == [str(final_path)]
    finally:
        monitor.stop()


def test_monitor_detects_move_from_unwatched_directory(spool_root, spool_dirs, callback_tracker, temp_dir):
    """Test a file moved in from a directory that is not watched is reported"""
    staging = temp_dir / "staging"
    staging.mkdir()
    source = staging / "report.gz"
    source.write_bytes(b"payload")

    monitor = FileMonitor(spool_dirs, callback_tracker.callback)
    monitor.start()

    try:
        dest = spool_root / "passive" / "report.gz"
        os.rename(source, dest)

        assert wait_until(
            lambda: str(dest) in callback_tracker.called_files,
            timeout=5,
            description="move-in event",
        )
    finally:
        monitor.stop()


def test_monitor_ignores_files_written_in_place(spool_root, spool_dirs, callback_tracker):
    """Test a file created directly in the spool does not trigger an upload"""
    monitor = FileMonitor(spool_dirs, callback_tracker.callback)
    monitor.start()

    try:
        (spool_root / "http" / "direct.gz").write_bytes(b"payload")
        time.sleep(1)

        assert callback_tracker.called_files == []
    finally:
        monitor.stop()
