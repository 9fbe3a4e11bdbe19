# src/streamsnap_library/accounts/youtube_registry.py

import logging
from typing import Any, Dict, Optional

from ..clients.youtube_client import fetch_channel
from ..constants import YOUTUBE_VAULT_PREFIX
from ..error_handler import VaultUnavailable
from ..models import TokenBundle, YouTubeAccount, now_ms
from .registry_base import AccountRegistryBase

lib_logger = logging.getLogger("streamsnap_library")


class YouTubeAccountRegistry(AccountRegistryBase):
    """
    YouTube channels, upserted by channel id.

    Signing in again with a channel that is already linked updates that
    entry in place (fresh tokens, profile, reactivation) instead of failing,
    which is how the user repairs an account flagged for reauthorization.
    """

    ACCOUNT_CLASS = YouTubeAccount
    VAULT_PREFIX = YOUTUBE_VAULT_PREFIX
    PROVIDER_NAME = "YouTube"

    def _load_document(self, data: Any) -> None:
        # Older builds wrote a bare array
        records = data.get("accounts") if isinstance(data, dict) else data
        self._accounts = self._parse_records(records)

    def _to_document(self) -> Dict[str, Any]:
        return {"accounts": [a.to_dict() for a in self._accounts]}

    def _match(self, channel_id: str, email: Optional[str]) -> Optional[YouTubeAccount]:
        for account in self._accounts:
            if account.channel_id == channel_id:
                return account
        if email:
            for account in self._accounts:
                if account.email and account.email.lower() == email.lower():
                    return account
        return None

    async def create(
        self,
        bundle: TokenBundle,
        channel_id: str,
        channel_name: str,
        thumbnail: Optional[str] = None,
        email: Optional[str] = None,
    ) -> YouTubeAccount:
        """
        Register a signed-in channel, or refresh the entry that already has it.

        Raises:
            VaultUnavailable: The tokens could not be stored
        """
        async with self._lock:
            await self._ensure_loaded()
            existing = self._match(channel_id, email)

            if existing is not None:
                if not bundle.refresh_token:
                    previous = await self._vault.get(existing.vault_key)
                    if previous is not None and previous.refresh_token:
                        bundle = TokenBundle(
                            bundle.access_token, previous.refresh_token, bundle.expiry
                        )
                if not await self._vault.put(existing.vault_key, bundle):
                    raise VaultUnavailable(f"Could not store tokens for {channel_name}")

                existing.channel_id = channel_id
                existing.channel_name = channel_name
                existing.thumbnail = thumbnail or existing.thumbnail
                existing.email = email or existing.email
                existing.active = True
                existing.needs_reauth = False
                existing.updated_at = max(now_ms(), existing.updated_at + 1)
                self._persist()
                lib_logger.info(f"Updated existing YouTube account {existing.id} ({channel_name})")
                return self._present(existing)

            account_id = YouTubeAccount.new_id()
            account = YouTubeAccount(
                id=account_id,
                vault_key=self.vault_key_for(account_id),
                channel_id=channel_id,
                channel_name=channel_name,
                thumbnail=thumbnail,
                email=email,
            )
            if not await self._vault.put(account.vault_key, bundle):
                raise VaultUnavailable(f"Could not store tokens for {channel_name}")
            self._accounts.append(account)
            self._persist()
            lib_logger.info(f"Added YouTube account {account_id} ({channel_name})")
            return self._present(account)

    def _needs_backfill(self, account: YouTubeAccount) -> bool:
        return not account.channel_name or not account.thumbnail

    async def _fetch_profile(
        self, account: YouTubeAccount, access_token: str
    ) -> Dict[str, Any]:
        channel = await fetch_channel(self._http, access_token)
        changes: Dict[str, Any] = {}
        if not account.channel_name and channel.channel_name:
            changes["channelName"] = channel.channel_name
        if not account.thumbnail and channel.thumbnail:
            changes["thumbnail"] = channel.thumbnail
        if not account.channel_id:
            changes["channelId"] = channel.channel_id
        return changes
