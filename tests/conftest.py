import os

# keep test runs from writing log files
os.environ.setdefault("LOG_FILE", "")

import pytest

from opsboard.core.config import Settings
from tests.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ARGUS_TOKEN="",
        ARGUS_RETRY_DELAY_S=0,
        ADMIN_TOKEN="",
        LOG_FILE="",
        APP_BASE_URL="http://dash.local",
        STATUS_ORGANIZATION="VIEIRACRED",
        DEFAULT_ORGANIZATION="VIEIRACRED",
    )
