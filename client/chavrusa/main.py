"""
ChavrusaAI Client - Application wiring.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .api import ChatAPIClient, TranslationService
from .auth import AnonymousIdentityBackend, AuthSession, IdentityBackend, SupabaseIdentityBackend
from .channels import RealtimeChannel
from .config import Settings, settings
from .core import NoticeCenter
from .core.session_store import SessionStore
from .core.logging_config import setup_logging
from .models import AuthEvent, AuthTokens
from .storage import LocalStorage, PersistedRecordStore, StorageInterface

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


def build_identity_backend(config: Settings) -> IdentityBackend:
    if config.supabase_url and config.supabase_anon_key:
        return SupabaseIdentityBackend(
            config.supabase_url,
            config.supabase_anon_key,
            timeout=config.default_timeout,
            log_requests=config.log_api_requests,
        )
    logger.warning("Supabase is not configured, running without authentication")
    return AnonymousIdentityBackend()


class ChavrusaClient:
    """
    Builds the client's collaborators from settings and wires them together.
    The store learns about sign-in and sign-out only through the auth
    listener registered here.
    """

    def __init__(
        self,
        config: Settings = settings,
        identity: Optional[IdentityBackend] = None,
        storage: Optional[StorageInterface] = None,
        realtime: Optional[RealtimeChannel] = None,
        api: Optional[ChatAPIClient] = None,
    ):
        self.settings = config
        self.storage = storage or LocalStorage(config.local_storage_path)
        self.records = PersistedRecordStore(self.storage)
        self.notices = NoticeCenter(config.notice_history_size)

        self.api = api or ChatAPIClient(
            config.api_base_url,
            timeout=config.default_timeout,
            request_timeout=config.request_timeout,
            log_requests=config.log_api_requests,
        )
        self.translation = TranslationService(
            config.api_base_url,
            timeout=config.default_timeout,
            log_requests=config.log_api_requests,
        )
        self.auth = AuthSession(
            identity or build_identity_backend(config),
            self.records,
            api_base_url=config.api_base_url,
            record_name=config.auth_record_name,
            password_reset_redirect_url=config.password_reset_redirect_url,
            timeout=config.default_timeout,
            log_requests=config.log_api_requests,
        )
        self.realtime = realtime or RealtimeChannel(
            config.realtime_url,
            reconnection_attempts=config.realtime_reconnection_attempts,
            reconnection_delay=config.realtime_reconnection_delay,
        )
        self.store = SessionStore(
            self.api, self.auth, self.realtime, self.records, self.notices, config
        )

        self.realtime.bind(self.store)
        self._unsubscribe_auth = self.auth.on_auth_state_change(self._on_auth_state_change)
        self._auth_init: Optional[asyncio.Future] = None

    async def _on_auth_state_change(self, event: AuthEvent, tokens: Optional[AuthTokens]) -> None:
        if event in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.INITIAL_SESSION):
            # Before the store is ready, startup loads the session list itself
            if tokens and self.store.state.initialized:
                await self.store.load_user_sessions()
        elif event == AuthEvent.SIGNED_OUT:
            self.store.clear_all_sessions()

    async def start(self) -> None:
        """Restore both persisted records, validate auth and initialize the store."""
        logger.info(f"Starting {self.settings.app_name} v{self.settings.app_version}")
        logger.info(f"API: {self.settings.api_base_url}, realtime: {self.settings.realtime_url}")
        logger.info(f"Storage path: {self.settings.local_storage_path}")

        rehydration = asyncio.ensure_future(self.store.rehydrate())
        await self.auth.restore()
        self._auth_init = asyncio.ensure_future(self.auth.initialize())

        await self.store.initialize_app()
        await rehydration

    async def close(self) -> None:
        logger.info(f"Shutting down {self.settings.app_name}")
        self._unsubscribe_auth()
        await self.store.close()
        await self.auth.close()
        await self.realtime.disconnect()


@asynccontextmanager
async def lifespan(config: Settings = settings, **kwargs) -> AsyncIterator[ChavrusaClient]:
    """Configure logging, start a client and close it on exit."""
    setup_logging(config)
    logger.info(f"Log level: {config.log_level.upper()}")
    logger.info(f"Debug mode: {config.debug}")

    client = ChavrusaClient(config, **kwargs)
    await client.start()
    try:
        yield client
    finally:
        await client.close()
