import pytest

from execution.retry_handler import RetryHandler
from storage.local_store import LocalStore


@pytest.fixture
def store(tmp_path):
    """LocalStore on a fresh database with no retry delay."""
    return LocalStore(tmp_path / "xray.db", RetryHandler(base_delay=0))
