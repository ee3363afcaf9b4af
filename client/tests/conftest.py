"""
Shared test fixtures and configuration.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing client modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/chavrusa_test_data")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_API_REQUESTS", "false")

from chavrusa.api import ChatReply  # noqa: E402
from chavrusa.config import Settings  # noqa: E402
from chavrusa.core import NoticeCenter  # noqa: E402
from chavrusa.core.session_store import SessionStore  # noqa: E402
from chavrusa.models import Persona  # noqa: E402
from chavrusa.storage import LocalStorage, PersistedRecordStore  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings():
    return Settings(
        rehydration_timeout=0.05,
        auth_ready_timeout=0.1,
        request_timeout=5.0,
        log_api_requests=False,
    )


@pytest.fixture
def records(tmp_path):
    return PersistedRecordStore(LocalStorage(str(tmp_path / "data")))


@pytest.fixture
def notices():
    return NoticeCenter()


@pytest.fixture
def personas():
    return [
        Persona(id="rashi", name="Rashi", display_name="Rashi", specialties=["Peshat"]),
        Persona(id="rambam", name="Rambam", display_name="Rambam (Maimonides)"),
    ]


@pytest.fixture
def api(personas):
    """Chat API double; every call succeeds unless a test overrides it."""
    mock = MagicMock()
    mock.get_personas = AsyncMock(return_value=personas)
    mock.create_session = AsyncMock(return_value="server-session-1")
    mock.get_sessions = AsyncMock(return_value=[])
    mock.get_history = AsyncMock()
    mock.send_message = AsyncMock(return_value=ChatReply(content="Shalom! Let us learn."))
    return mock


@pytest.fixture
def auth():
    """Anonymous, already initialized auth session double."""
    mock = MagicMock()
    mock.initialized = True
    mock.loading = False
    mock.is_authenticated.return_value = False
    mock.get_auth_headers.return_value = {"Content-Type": "application/json"}
    mock.get_user_context.return_value = None
    mock.initialize = AsyncMock()
    mock.wait_until_initialized = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def signed_in_auth(auth):
    auth.is_authenticated.return_value = True
    auth.get_auth_headers.return_value = {
        "Content-Type": "application/json",
        "Authorization": "Bearer test-token",
    }
    return auth


@pytest.fixture
def realtime():
    mock = MagicMock()
    mock.connect = AsyncMock(return_value=True)
    mock.disconnect = AsyncMock()
    mock.join_session = AsyncMock()
    mock.leave_session = AsyncMock()
    return mock


@pytest.fixture
def store(api, auth, realtime, records, notices, test_settings):
    return SessionStore(api, auth, realtime, records, notices, test_settings)
