"""
Tests for client wiring and startup.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chavrusa.auth import AnonymousIdentityBackend, SupabaseIdentityBackend
from chavrusa.main import ChavrusaClient, build_identity_backend
from chavrusa.models import AuthEvent, AuthTokens, StartupPhase
from chavrusa.storage import LocalStorage


@pytest.fixture
def client(tmp_path, test_settings, api, realtime):
    realtime.bind = MagicMock()
    return ChavrusaClient(
        test_settings,
        identity=AnonymousIdentityBackend(),
        storage=LocalStorage(str(tmp_path / "data")),
        realtime=realtime,
        api=api,
    )


def test_identity_backend_selection(test_settings):
    assert isinstance(build_identity_backend(test_settings), AnonymousIdentityBackend)

    configured = test_settings.model_copy(update={
        "supabase_url": "https://project.supabase.co",
        "supabase_anon_key": "anon-key",
    })
    backend = build_identity_backend(configured)
    assert isinstance(backend, SupabaseIdentityBackend)
    assert backend.auth_url == "https://project.supabase.co/auth/v1"


def test_realtime_bound_to_store(client, realtime):
    realtime.bind.assert_called_once_with(client.store)


@pytest.mark.asyncio
async def test_start_reaches_ready(client, realtime):
    await client.start()

    state = client.store.state
    assert state.rehydrated is True
    assert state.initialized is True
    assert state.startup_phase == StartupPhase.READY
    assert client.auth.initialized is True
    assert client.auth.is_authenticated() is False

    await client.close()
    realtime.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_sign_out_clears_sessions(client):
    await client.start()
    await client.store.create_session()

    await client.auth.sign_out()

    assert client.store.state.sessions == {}
    assert client.store.state.current_session_id is None
    await client.close()


@pytest.mark.asyncio
async def test_sign_in_reloads_sessions_once_initialized(client):
    client.store.load_user_sessions = AsyncMock(return_value=True)
    tokens = AuthTokens(access_token="token")

    await client._on_auth_state_change(AuthEvent.SIGNED_IN, tokens)
    client.store.load_user_sessions.assert_not_called()

    await client.start()
    await client._on_auth_state_change(AuthEvent.SIGNED_IN, tokens)
    await client._on_auth_state_change(AuthEvent.TOKEN_REFRESHED, None)

    client.store.load_user_sessions.assert_awaited_once()
    await client.close()
