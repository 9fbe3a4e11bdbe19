# src/streamsnap_library/accounts/drive_registry.py

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx

from ..clients.drive_client import domain_info_from_email, fetch_drive_user
from ..constants import DRIVE_VAULT_PREFIX, LEGACY_DRIVE_VAULT_KEY
from ..credential_vault import CredentialVault, FallbackTokenFile
from ..error_handler import (
    AccountNotFound,
    DuplicateAccount,
    StreamSnapError,
    VaultUnavailable,
    mask_secret,
)
from ..models import DriveAccount, TokenBundle
from ..providers.drive_auth import DriveOAuth
from ..token_refresher import TokenRefresher
from .registry_base import AccountRegistryBase

lib_logger = logging.getLogger("streamsnap_library")


class DriveAccountRegistry(AccountRegistryBase):
    """
    Google Drive accounts, deduplicated by email.

    Document shape: ``{"accounts": [...], "defaultAccountId": <id|null>}``.
    The default (primary) account is the only one that may use the plain
    fallback token file when the vault refuses a write.
    """

    ACCOUNT_CLASS = DriveAccount
    VAULT_PREFIX = DRIVE_VAULT_PREFIX
    PROVIDER_NAME = "Google Drive"

    def __init__(
        self,
        path: Union[str, Path],
        vault: CredentialVault,
        refresher: TokenRefresher,
        http_client: httpx.AsyncClient,
        oauth: DriveOAuth,
        fallback: FallbackTokenFile,
    ):
        super().__init__(path, vault, refresher, http_client)
        self._oauth = oauth
        self._fallback = fallback
        self._default_account_id: Optional[str] = None
        refresher.add_store_failure_listener(self._on_vault_store_failure)

    def _load_document(self, data: Any) -> None:
        if isinstance(data, dict):
            self._accounts = self._parse_records(data.get("accounts"))
            self._default_account_id = data.get("defaultAccountId")
        else:
            self._accounts = self._parse_records(data)
            self._default_account_id = None

        if self._default_account_id and not self._find(self._default_account_id):
            self._default_account_id = None
        if self._default_account_id is None and self._accounts:
            self._default_account_id = self._accounts[0].id

    def _to_document(self) -> Dict[str, Any]:
        return {
            "accounts": [a.to_dict() for a in self._accounts],
            "defaultAccountId": self._default_account_id,
        }

    def _present(self, account: DriveAccount) -> DriveAccount:
        presented = super()._present(account)
        presented.display_name = presented.resolved_display_name()
        return presented

    async def get_default_account_id(self) -> Optional[str]:
        async with self._lock:
            await self._ensure_loaded()
            return self._default_account_id

    async def set_default_account(self, account_id: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            if self._find(account_id) is None:
                raise AccountNotFound(account_id)
            self._default_account_id = account_id
            self._persist()

    # =========================================================================
    # CREATE / MIGRATE
    # =========================================================================

    async def create(self, display_name: Optional[str] = None) -> DriveAccount:
        """
        Link a new Drive account through the browser flow.

        Raises:
            AuthTimeout, OAuthDenied, TokenExchangeFailed: From the flow
            DuplicateAccount: The resolved email is already linked
            VaultUnavailable: The tokens could not be stored anywhere
        """
        bundle = await self._oauth.authorize()

        account_id = DriveAccount.new_id()
        vault_key = self.vault_key_for(account_id)
        stored = await self._vault.put(vault_key, bundle)
        registered = False
        try:
            # The pre-multi-account key must not resurrect on the next start
            await self._vault.delete(LEGACY_DRIVE_VAULT_KEY)

            user: Dict[str, Any] = {}
            try:
                user = await fetch_drive_user(self._http, bundle.access_token)
            except StreamSnapError as e:
                lib_logger.warning(
                    f"Could not read the Drive profile for new account {account_id}: {e}. "
                    "It will be resolved on a later listing."
                )
            email = user.get("emailAddress")

            async with self._lock:
                await self._ensure_loaded()
                if email and any(
                    a.email and a.email.lower() == email.lower() for a in self._accounts
                ):
                    raise DuplicateAccount(email)

                becomes_default = self._default_account_id is None
                if not stored and not becomes_default:
                    raise VaultUnavailable(
                        f"Could not store tokens for {email or account_id}"
                    )

                account = DriveAccount(
                    id=account_id,
                    vault_key=vault_key,
                    email=email,
                    display_name=display_name
                    or user.get("displayName")
                    or DriveAccount.placeholder_name(account_id),
                    avatar_url=user.get("photoLink"),
                )
                if email:
                    info = domain_info_from_email(email)
                    account.domain = info.domain
                    account.is_organizational = info.is_organizational

                self._accounts.append(account)
                registered = True
                if becomes_default:
                    self._default_account_id = account_id
                self._persist()
                # Attempted now; an account without an email stays eligible
                if email:
                    self._backfill_attempted.add(account_id)
                created = self._present(account)
        except BaseException:
            # Nothing references the new vault entry unless it was registered
            if stored and not registered:
                await self._vault.delete(vault_key)
            raise

        if not stored:
            lib_logger.warning(
                f"Vault refused tokens for primary Drive account {account_id}, "
                "keeping a fallback copy on disk"
            )
            await self._fallback.write(account_id, bundle)

        lib_logger.info(f"Added Google Drive account {email or account_id}")
        return created

    async def migrate_legacy_tokens_if_needed(self) -> bool:
        """
        Turn the single pre-multi-account token entry into a registered account.

        Runs only while the registry is empty; returns True exactly once.
        """
        async with self._lock:
            await self._ensure_loaded()
            if self._accounts:
                return False

            legacy = await self._vault.get(LEGACY_DRIVE_VAULT_KEY)
            if legacy is None:
                return False

            account_id = DriveAccount.new_id()
            vault_key = self.vault_key_for(account_id)
            if not await self._vault.put(vault_key, legacy):
                lib_logger.error(
                    f"Legacy Drive tokens could not be moved to {mask_secret(vault_key)}; "
                    "migration will be retried on next start"
                )
                return False
            await self._vault.delete(LEGACY_DRIVE_VAULT_KEY)

            self._accounts.append(
                DriveAccount(
                    id=account_id,
                    vault_key=vault_key,
                    display_name=DriveAccount.placeholder_name(account_id),
                )
            )
            self._default_account_id = account_id
            self._persist()

        lib_logger.info(f"Migrated legacy Google Drive tokens into account {account_id}")
        return True

    # =========================================================================
    # TOKENS AND REMOVAL
    # =========================================================================

    async def load_bundle(self, account: DriveAccount) -> Optional[TokenBundle]:
        bundle = await self._vault.get(account.vault_key)
        if bundle is None and account.id == await self.get_default_account_id():
            bundle = await self._fallback.read(account.id)
            if bundle is not None:
                lib_logger.debug(f"Using fallback token file for {account.id}")
        return bundle

    async def _on_vault_store_failure(self, vault_key: str, bundle: TokenBundle) -> None:
        async with self._lock:
            await self._ensure_loaded()
            default = self._find(self._default_account_id) if self._default_account_id else None
        if default is not None and default.vault_key == vault_key:
            await self._fallback.write(default.id, bundle)

    def _on_removed(self, account: DriveAccount) -> None:
        if self._default_account_id == account.id:
            self._default_account_id = self._accounts[0].id if self._accounts else None

    async def remove(self, account_id: str) -> bool:
        was_primary = account_id == await self.get_default_account_id()
        removed = await super().remove(account_id)
        if removed and was_primary:
            await self._fallback.delete()
        return removed

    # =========================================================================
    # PROFILE BACKFILL
    # =========================================================================

    def _needs_backfill(self, account: DriveAccount) -> bool:
        return not account.email

    async def _fetch_profile(
        self, account: DriveAccount, access_token: str
    ) -> Dict[str, Any]:
        user = await fetch_drive_user(self._http, access_token)
        email = user.get("emailAddress")
        if not email:
            return {}
        info = domain_info_from_email(email)
        changes: Dict[str, Any] = {
            "email": email,
            "domain": info.domain,
            "isOrganizational": info.is_organizational,
        }
        if user.get("photoLink") and not account.avatar_url:
            changes["avatarUrl"] = user["photoLink"]
        account.email = email
        resolved = account.resolved_display_name()
        if resolved != account.display_name:
            changes["displayName"] = resolved
        return changes
