# tests/conftest.py
"""
Common fixtures for all test types
These are shared across unit and integration tests
"""

import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to Python path so 'data_transmit' can be imported
# This allows tests to run without installing the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from data_transmit.upload_manager import TransferError, UploadManager  # noqa: E402

SPOOL_NAMES = ["http", "passive"]


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def spool_root(temp_dir):
    """Uploads root with two spool directories: http and passive"""
    root = temp_dir / "uploads"
    for name in SPOOL_NAMES:
        (root / name).mkdir(parents=True)
    return root


@pytest.fixture
def node_id_file(temp_dir):
    """Node identity file holding a 14-byte id plus newline"""
    path = temp_dir / "node_id"
    path.write_text("OW0123456789AB\n")
    return path


@pytest.fixture
def report_file(temp_dir):
    return temp_dir / "state" / "failures"


@pytest.fixture
def failing_uploader():
    """Upload manager mock whose every attempt fails"""
    uploader = Mock(spec=UploadManager)
    uploader.upload_file.side_effect = TransferError("collector unreachable")
    return uploader


@pytest.fixture
def working_uploader():
    """Upload manager mock whose every attempt succeeds"""
    uploader = Mock(spec=UploadManager)
    uploader.upload_file.return_value = None
    return uploader


@pytest.fixture
def make_spool_file():
    """Factory creating a file of size bytes, optionally with a given modification time"""
    def _make(directory: Path, name: str, size: int, mtime: float = None) -> Path:
        path = directory / name
        path.write_bytes(b"x" * size)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make
