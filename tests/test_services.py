"""
Tests for application startup/shutdown and the periodic refresh loop.
"""

import asyncio
import json

import pytest

from streamsnap_app.services import AccountServices
from streamsnap_library.background_refresher import BackgroundRefresher
from streamsnap_library.constants import KEYRING_SERVICE, LEGACY_DRIVE_VAULT_KEY
from streamsnap_library.models import TokenBundle, now_ms


class CountingRegistry:
    def __init__(self, fail_first=False):
        self.calls = 0
        self.fail_first = fail_first

    async def refresh_all_tokens(self):
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("sweep blew up")
        return 1


class TestBackgroundRefresher:
    @pytest.mark.asyncio
    async def test_run_once_sums_registries(self):
        refresher = BackgroundRefresher([CountingRegistry(), CountingRegistry()])
        assert await refresher.run_once() == 2

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_a_failed_sweep(self):
        registry = CountingRegistry(fail_first=True)
        refresher = BackgroundRefresher([registry], interval=0.01)

        refresher.start()
        assert refresher.is_running
        for _ in range(100):
            if registry.calls >= 3:
                break
            await asyncio.sleep(0.01)
        await refresher.stop()

        assert registry.calls >= 3
        assert not refresher.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await BackgroundRefresher([]).stop()


class TestAccountServices:
    @pytest.mark.asyncio
    async def test_start_migrates_and_sweeps(self, services, keyring_backend, fake_google):
        keyring_backend.store[(KEYRING_SERVICE, LEGACY_DRIVE_VAULT_KEY)] = json.dumps(
            {"accessToken": "old", "refreshToken": "old-r", "expiry": now_ms() + 60_000}
        )

        await services.start()

        assert services.refresher.is_running
        accounts = await services.drive_accounts.list()
        assert len(accounts) == 1
        # Expiring inside the proactive window, so the startup sweep renewed it
        stored = await services.vault.get(accounts[0].vault_key)
        assert stored.access_token == "access-refreshed-1"
        assert stored.refresh_token == "old-r"

        await services.aclose()
        assert not services.refresher.is_running

    @pytest.mark.asyncio
    async def test_start_without_background_loop(self, services):
        await services.start(background=False)
        assert not services.refresher.is_running

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self, settings, keyring_backend):
        async with AccountServices(
            settings, keyring_backend=keyring_backend, show_prompt=False
        ) as svc:
            assert not svc.http.is_closed
        assert svc.http.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self, settings, http_client, keyring_backend):
        svc = AccountServices(settings, http_client=http_client, keyring_backend=keyring_backend)
        await svc.aclose()
        assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_registries_share_one_vault(self, services):
        await services.youtube_accounts.create(
            TokenBundle("a", "r", now_ms() + 3_600_000), "UC-1", "One", "https://t/1"
        )
        assert services.drive_accounts._vault is services.youtube_accounts._vault
        assert (services.settings.data_dir / "youtube-accounts.json").exists()
