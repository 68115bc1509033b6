"""Pytest fixtures and configuration for mailpipe tests.

Provides common fixtures for configuration, the SQLite store, mailbox
users and a mocked provider client.
"""

import os
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from mailpipe.config import reset_config
from mailpipe.config_schema import AppConfig
from mailpipe.core.rate_limiter import reset_buckets
from mailpipe.db.models import User
from mailpipe.db.store import DatabaseStore
from mailpipe.provider.models import HistoryPage


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset the config singleton and shared rate buckets around each test."""
    reset_config()
    reset_buckets()
    yield
    reset_config()
    reset_buckets()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

server:
  worker_concurrency: 2
  poll_interval_seconds: 0.01

database:
  path: "data/mailpipe.db"
  claim_mode: "lock"

jobs:
  max_attempts: 3

sync:
  pubsub_topic: "projects/test/topics/gmail"
"""


@pytest.fixture
def sample_config_dict(data_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "server": {"worker_concurrency": 2, "poll_interval_seconds": 0.01},
        "database": {"path": str(data_dir / "mailpipe.db"), "claim_mode": "lock"},
        "jobs": {"max_attempts": 3},
        "sync": {"pubsub_topic": "projects/test/topics/gmail"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILPIPE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILPIPE_CONFIG_PATH")
    os.environ["MAILPIPE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILPIPE_CONFIG_PATH"]
    else:
        os.environ["MAILPIPE_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> DatabaseStore:
    """Create and initialize a DatabaseStore."""
    s = DatabaseStore(db_path)
    await s.initialize()
    return s


@pytest.fixture
async def user(store: DatabaseStore) -> User:
    """An active, onboarded mailbox."""
    return await store.create_user("alice@example.com", display_name="Alice", onboarded=True)


@pytest.fixture
def mock_client() -> MagicMock:
    """A provider client whose change log is empty and whose mailbox is at 5000."""
    client = MagicMock()
    client.list_history = MagicMock(return_value=HistoryPage(history_id="1000"))
    client.list_messages = MagicMock(return_value=[])
    client.get_message = MagicMock(return_value={"id": "m", "threadId": "t"})
    client.get_profile = MagicMock(return_value={"historyId": "5000"})
    client.watch = MagicMock(
        return_value={"historyId": "5000", "expiration": "9999999999999"}
    )
    client.stop_watch = MagicMock(return_value=None)
    return client
