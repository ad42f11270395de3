"""
Pytest fixtures and configuration for the OpenOrbit test suite.
"""

import pytest
import pytest_asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records durations and advances a clock."""

    def __init__(self, clock: FakeClock = None):
        self.calls = []
        self.clock = clock

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


# === Time Fixtures ===

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return RecordingSleep(clock)


# === Browser Fixtures ===

@pytest.fixture
def mock_page():
    """Mock Playwright page with a resolvable bounding box."""
    page = MagicMock()
    page.click = AsyncMock()
    page.evaluate = AsyncMock()
    page.keyboard.type = AsyncMock()
    page.mouse.move = AsyncMock()
    page.mouse.click = AsyncMock()
    page.mouse.wheel = AsyncMock()

    element = MagicMock()
    element.bounding_box = AsyncMock(return_value={"x": 100, "y": 200, "width": 80, "height": 40})
    element.scroll_into_view_if_needed = AsyncMock()
    page.locator.return_value.first = element
    return page


# === Database Fixtures ===

@pytest_asyncio.fixture
async def db_path(tmp_path):
    """Fresh initialized database per test."""
    from api.database import init_database

    path = tmp_path / "openorbit_test.db"
    await init_database(path)
    return path


# === Plugin Fixtures ===

@pytest.fixture
def plugin_root(tmp_path):
    """Empty plugin root; tests add candidate directories."""
    root = tmp_path / "plugins"
    root.mkdir()
    return root


# === Test Environment Setup ===

@pytest.fixture(autouse=True)
def setup_test_env(tmp_path, monkeypatch):
    """Keep logs and data of the test run inside tmp_path."""
    monkeypatch.setenv("TESTING", "true")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "default.db"))
    yield


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "pacing: Human behavior and budget tests")
    config.addinivalue_line("markers", "persistence: Tests touching SQLite")
    config.addinivalue_line("markers", "live: Live view tests")
