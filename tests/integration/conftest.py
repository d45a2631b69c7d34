# tests/integration/conftest.py
"""
Fixtures for integration tests (mocked collector)
These tests verify components work together with the HTTP session mocked
"""

from unittest.mock import Mock, patch

import pytest
import yaml


@pytest.fixture
def temp_config_file(temp_dir, spool_root, node_id_file, report_file):
    """Create temporary config file for system tests"""
    config = {
        "uploads_root": str(spool_root),
        "node_id_file": str(node_id_file),
        "collector": {
            "url": "https://collector.test/upload/",
            "build_id": "test-build",
        },
        "retry": {
            "interval_minutes": 60,
            "threshold_seconds": 180,
        },
        "backlog": {
            "policy": "quota",
            "quota_bytes": 1000,
        },
        "failures": {
            "report_file": str(report_file),
        },
    }

    config_file = temp_dir / "config.yaml"
    config_file.write_text(yaml.dump(config))
    return str(config_file)


@pytest.fixture
def mock_session():
    """Mock requests session for integration tests (every PUT succeeds)"""
    with patch("data_transmit.upload_manager.requests.Session") as mock_Session:
        session = Mock()
        session.headers = {}
        session.put.return_value = Mock(status_code=200)
        mock_Session.return_value = session
        yield session
