# src/streamsnap_app/services.py

import logging
from typing import Any, Callable, Optional

import httpx
from keyring.backend import KeyringBackend

from streamsnap_library.accounts import DriveAccountRegistry, YouTubeAccountRegistry
from streamsnap_library.background_refresher import BackgroundRefresher
from streamsnap_library.clients import DriveClient, YouTubeClient
from streamsnap_library.constants import (
    DRIVE_ACCOUNTS_FILENAME,
    DRIVE_FALLBACK_TOKEN_FILENAME,
    YOUTUBE_ACCOUNTS_FILENAME,
)
from streamsnap_library.credential_vault import CredentialVault, FallbackTokenFile
from streamsnap_library.providers import DriveOAuth, YouTubeOAuth
from streamsnap_library.token_refresher import TokenRefresher
from streamsnap_library.utils.paths import get_data_file, get_vault_dir

from .config import Settings

logger = logging.getLogger(__name__)


class AccountServices:
    """
    Application root: builds every account-core service once and wires them.

    Nothing in the library is a module-level singleton; whoever owns an
    AccountServices instance owns the HTTP client, the registries and the
    background refresher, and must call ``aclose()`` (or use ``async with``).
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        keyring_backend: Optional[KeyringBackend] = None,
        open_browser: Optional[Callable[[str], Any]] = None,
        show_prompt: bool = True,
    ):
        self.settings = settings
        data_dir = settings.data_dir

        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0)
        )

        self.vault = CredentialVault(
            get_vault_dir(data_dir),
            service=settings.keyring_service,
            encryption_key=settings.vault_encryption_key,
            backend=keyring_backend,
        )

        self.drive_oauth = DriveOAuth(
            settings.client_id,
            settings.client_secret,
            self.http,
            timeout=settings.oauth_timeout,
            open_browser=open_browser,
            show_prompt=show_prompt,
        )
        self.youtube_oauth = YouTubeOAuth(
            settings.client_id,
            settings.client_secret,
            self.http,
            timeout=settings.oauth_timeout,
            open_browser=open_browser,
            show_prompt=show_prompt,
        )

        self.drive_accounts = DriveAccountRegistry(
            get_data_file(DRIVE_ACCOUNTS_FILENAME, data_dir),
            self.vault,
            TokenRefresher(self.drive_oauth, self.vault, self.http),
            self.http,
            self.drive_oauth,
            FallbackTokenFile(get_data_file(DRIVE_FALLBACK_TOKEN_FILENAME, data_dir)),
        )
        self.youtube_accounts = YouTubeAccountRegistry(
            get_data_file(YOUTUBE_ACCOUNTS_FILENAME, data_dir),
            self.vault,
            TokenRefresher(self.youtube_oauth, self.vault, self.http),
            self.http,
        )

        self.drive = DriveClient(self.drive_accounts, self.http)
        self.youtube = YouTubeClient(self.youtube_accounts, self.http)

        self.refresher = BackgroundRefresher(
            [self.drive_accounts, self.youtube_accounts],
            interval=settings.refresh_interval,
        )

    async def start(self, background: bool = True) -> None:
        """Migrate, sweep once, kick off profile backfill, then start the refresher."""
        if await self.drive_accounts.migrate_legacy_tokens_if_needed():
            logger.info("Legacy Google Drive sign-in migrated to multi-account storage")

        refreshed = await self.refresher.run_once()
        logger.debug(f"Startup token sweep refreshed {refreshed} account(s)")

        # Listing schedules backfill for incomplete profiles
        await self.drive_accounts.list()
        await self.youtube_accounts.list()

        if background:
            self.refresher.start()

    async def aclose(self) -> None:
        await self.refresher.stop()
        for registry in (self.drive_accounts, self.youtube_accounts):
            await registry.wait_for_backfill()
            if not await registry.flush():
                logger.warning(f"Could not save {registry.path.name} on shutdown")
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "AccountServices":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
