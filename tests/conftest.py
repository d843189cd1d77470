"""
Pytest configuration and shared fixtures for Ruuvi gateway tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import os
from pathlib import Path
from unittest.mock import Mock

import pytest

# Import the modules we're testing
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from prometheus_client import CollectorRegistry

from ruuvi_gateway.metrics.exposer import RuuviExposer
from ruuvi_gateway.utils.config import Config
from tests.fixtures.sensor_data import SensorDataFixtures
from tests.mocks.mock_transport import FakeTransport
from tests.utils.helpers import RecordCollector


CONFIG_KEYS = [
    "BLE_ADAPTER", "BLE_RETRY_ATTEMPTS", "BLE_RETRY_DELAY", "BLE_BLACKLIST",
    "DECODE_STRICT", "EXPOSER_ADDRESS", "EXPOSER_PORT", "SYSINFO_ENABLED",
    "LOG_LEVEL", "LOG_DIR", "LOG_MAX_FILE_SIZE", "LOG_BACKUP_COUNT",
    "LOG_ENABLE_CONSOLE", "LOG_ENABLE_SYSLOG", "LOG_PACKETS",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every gateway setting from the environment for the test."""
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    # Values loaded from .env files bypass monkeypatch
    for key in CONFIG_KEYS:
        os.environ.pop(key, None)


@pytest.fixture
def mock_config():
    """Create a mock configuration for testing."""
    config = Mock(spec=Config)

    # BLE configuration
    config.ble_adapter = "hci0"
    config.ble_retry_attempts = 2
    config.ble_retry_delay = 0.01
    config.ble_blacklist = []

    # Decoding and exposer
    config.decode_strict = False
    config.exposer_address = "127.0.0.1"
    config.exposer_port = 9105
    config.sysinfo_enabled = False

    # Logging configuration
    config.log_level = "DEBUG"
    config.log_dir = Path("./test_logs")
    config.log_max_file_size = 1024 * 1024  # 1MB
    config.log_backup_count = 2
    config.log_enable_console = False  # Disable console logging in tests
    config.log_enable_syslog = False
    config.log_packets = True

    return config


@pytest.fixture
def fake_transport():
    """In-memory transport."""
    return FakeTransport()


@pytest.fixture
def registry():
    """Private Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def exposer(registry):
    return RuuviExposer(registry)


@pytest.fixture
def fixtures():
    return SensorDataFixtures()


@pytest.fixture
def sample_record():
    """Valid format 5 advertisement."""
    return SensorDataFixtures.record(SensorDataFixtures.FORMAT5_VALID)


@pytest.fixture
def collector():
    return RecordCollector()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_bluetooth: mark test as requiring Bluetooth hardware"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        path = str(item.fspath)

        if f"{os.sep}unit{os.sep}" in path:
            item.add_marker(pytest.mark.unit)

        if f"{os.sep}integration{os.sep}" in path:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)
