"""
Tests for the YouTube account registry: upsert semantics and the one-time
move of inline tokens into the vault.
"""

import json

import pytest

from streamsnap_library.error_handler import DuplicateAccount
from streamsnap_library.models import TokenBundle, now_ms


def fresh_bundle(access="yt-access", refresh="yt-refresh"):
    return TokenBundle(access, refresh, now_ms() + 3_600_000)


class TestUpsert:
    @pytest.mark.asyncio
    async def test_new_channel_is_added(self, services):
        account = await services.youtube_accounts.create(
            fresh_bundle(), "UC-1", "Channel One", "https://thumb/1", "one@example.com"
        )
        assert account.id.startswith("yt_")
        assert account.vault_key == f"youtube_tokens:{account.id}"
        assert (await services.vault.get(account.vault_key)).access_token == "yt-access"

        document = json.loads(services.youtube_accounts.path.read_text())
        assert [a["channelId"] for a in document["accounts"]] == ["UC-1"]
        assert "yt-access" not in json.dumps(document)

    @pytest.mark.asyncio
    async def test_same_channel_updates_in_place(self, services):
        registry = services.youtube_accounts
        first = await registry.create(fresh_bundle(), "UC-1", "Old Name")
        await registry.update(first.id, {"needsReauth": True, "active": False})

        second = await registry.create(
            fresh_bundle("yt-access-2", "yt-refresh-2"), "UC-1", "New Name", "https://thumb/2"
        )

        assert second.id == first.id
        assert second.channel_name == "New Name"
        assert second.thumbnail == "https://thumb/2"
        assert second.active is True
        assert second.needs_reauth is False
        assert second.updated_at > first.updated_at
        assert len(await registry.list()) == 1
        assert (await services.vault.get(first.vault_key)).access_token == "yt-access-2"

    @pytest.mark.asyncio
    async def test_upsert_keeps_refresh_token_when_new_bundle_has_none(self, services):
        registry = services.youtube_accounts
        first = await registry.create(fresh_bundle(), "UC-1", "Name")
        await registry.create(fresh_bundle("yt-access-2", None), "UC-1", "Name")

        stored = await services.vault.get(first.vault_key)
        assert stored.access_token == "yt-access-2"
        assert stored.refresh_token == "yt-refresh"

    @pytest.mark.asyncio
    async def test_matching_email_upserts(self, services):
        registry = services.youtube_accounts
        first = await registry.create(fresh_bundle(), "UC-1", "Name", email="me@example.com")
        second = await registry.create(fresh_bundle(), "UC-2", "Renamed", email="me@example.com")

        assert second.id == first.id
        assert second.channel_id == "UC-2"

    @pytest.mark.asyncio
    async def test_distinct_channels_coexist(self, services):
        registry = services.youtube_accounts
        await registry.create(fresh_bundle(), "UC-1", "One")
        await registry.create(fresh_bundle(), "UC-2", "Two")
        assert {a.channel_id for a in await registry.list()} == {"UC-1", "UC-2"}

    @pytest.mark.asyncio
    async def test_update_cannot_take_another_channel_id(self, services):
        registry = services.youtube_accounts
        await registry.create(fresh_bundle(), "UC-1", "One")
        second = await registry.create(fresh_bundle(), "UC-2", "Two")

        with pytest.raises(DuplicateAccount):
            await registry.update(second.id, {"channelId": "UC-1", "channelName": "Hijack"})

        unchanged = await registry.get(second.id)
        assert unchanged.channel_id == "UC-2"
        assert unchanged.channel_name == "Two"
        document = json.loads(registry.path.read_text())
        assert [a["channelId"] for a in document["accounts"]] == ["UC-1", "UC-2"]


class TestLegacyDocument:
    @pytest.mark.asyncio
    async def test_bare_array_with_inline_tokens_is_migrated(
        self, services, keyring_backend
    ):
        path = services.youtube_accounts.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(
                [
                    {
                        "id": "yt_1_abcdef",
                        "channelId": "UC-legacy",
                        "channelName": "Legacy",
                        "thumbnail": "https://thumb/legacy",
                        "accessToken": "inline-access",
                        "refreshToken": "inline-refresh",
                        "tokenExpiry": 1234,
                        "defaultPrivacy": "unlisted",
                    }
                ]
            )
        )

        accounts = await services.youtube_accounts.list()

        assert len(accounts) == 1
        account = accounts[0]
        assert account.vault_key == "youtube_tokens:yt_1_abcdef"
        assert account.default_privacy == "unlisted"
        assert await services.vault.get(account.vault_key) == TokenBundle(
            "inline-access", "inline-refresh", 1234
        )

        document = json.loads(path.read_text())
        record = document["accounts"][0]
        assert "accessToken" not in record
        assert "refreshToken" not in record
        assert "tokenExpiry" not in record

    @pytest.mark.asyncio
    async def test_inline_tokens_kept_when_vault_refuses(
        self, services, keyring_backend, tmp_path
    ):
        keyring_backend.fail_writes = True
        (tmp_path / "vault").rmdir()
        (tmp_path / "vault").write_text("block")
        path = services.youtube_accounts.path
        path.write_text(
            json.dumps(
                {
                    "accounts": [
                        {
                            "id": "yt_1_abcdef",
                            "channelId": "UC-legacy",
                            "accessToken": "inline-access",
                            "refreshToken": "inline-refresh",
                            "tokenExpiry": 1234,
                        }
                    ]
                }
            )
        )

        accounts = await services.youtube_accounts.list()
        assert accounts[0].extra["accessToken"] == "inline-access"


class TestAuthErrorRecovery:
    @pytest.mark.asyncio
    async def test_successful_refresh_clears_reauth(self, services, fake_google):
        registry = services.youtube_accounts
        account = await registry.create(
            TokenBundle("stale", "yt-refresh", 1), "UC-1", "Name"
        )
        await registry.update(account.id, {"needsReauth": True})

        outcome = await registry.handle_auth_error(account.id)

        assert outcome.success is True
        assert outcome.should_remove is False
        assert outcome.refreshed is True
        assert (await registry.get(account.id)).needs_reauth is False

    @pytest.mark.asyncio
    async def test_failed_refresh_advises_removal_but_keeps_account(
        self, services, fake_google
    ):
        registry = services.youtube_accounts
        account = await registry.create(TokenBundle("stale", "yt-refresh", 1), "UC-1", "Name")
        fake_google.refresh_status = 400

        outcome = await registry.handle_auth_error(account.id)

        assert outcome.success is False
        assert outcome.should_remove is True
        assert "400" in outcome.error
        kept = await registry.get(account.id)
        assert kept is not None
        assert kept.needs_reauth is True

    @pytest.mark.asyncio
    async def test_missing_account_or_refresh_token(self, services):
        registry = services.youtube_accounts
        assert (await registry.handle_auth_error("nope")).should_remove is True

        account = await registry.create(TokenBundle("a", None, 1), "UC-1", "Name")
        outcome = await registry.handle_auth_error(account.id)
        assert outcome.should_remove is True
        assert outcome.refreshed is False


class TestProactiveSweep:
    @pytest.mark.asyncio
    async def test_only_expiring_accounts_with_refresh_tokens_are_refreshed(
        self, services, fake_google
    ):
        registry = services.youtube_accounts
        expiring = await registry.create(
            TokenBundle("a1", "r1", now_ms() + 60_000), "UC-1", "One"
        )
        await registry.create(TokenBundle("a2", "r2", now_ms() + 3_600_000), "UC-2", "Two")
        await registry.create(TokenBundle("a3", None, now_ms() + 60_000), "UC-3", "Three")

        assert await registry.refresh_all_tokens() == 1
        assert fake_google.refresh_calls == 1
        assert (await services.vault.get(expiring.vault_key)).access_token == "access-refreshed-1"

    @pytest.mark.asyncio
    async def test_sweep_swallows_failures(self, services, fake_google):
        registry = services.youtube_accounts
        await registry.create(TokenBundle("a1", "r1", 1), "UC-1", "One")
        fake_google.refresh_status = 500

        assert await registry.refresh_all_tokens() == 0


class TestBackfill:
    @pytest.mark.asyncio
    async def test_unreadable_channel_response_does_not_stop_the_rest(
        self, services, fake_google
    ):
        registry = services.youtube_accounts
        first = await registry.create(fresh_bundle("a1", "r1"), "UC-1", "One")
        second = await registry.create(fresh_bundle("a2", "r2"), "UC-2", "Two")
        fake_google.channel_bodies = [b"<html>Backend Error</html>"]

        await registry.list()
        await registry.wait_for_backfill()

        assert (await registry.get(first.id)).thumbnail is None
        assert (await registry.get(second.id)).thumbnail == "https://yt.example/alice.jpg"
        assert len(fake_google.calls("GET", "/youtube/v3/channels")) == 2
