# src/streamsnap_library/accounts/registry_base.py

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

import httpx

from ..constants import PROACTIVE_REFRESH_MARGIN_MS
from ..credential_vault import CredentialVault
from ..error_handler import (
    AccountNotFound,
    DuplicateAccount,
    RefreshFailed,
    StreamSnapError,
    mask_secret,
)
from ..models import (
    INLINE_TOKEN_KEYS,
    AccountRecord,
    AuthErrorOutcome,
    TokenBundle,
    now_ms,
)
from ..token_refresher import TokenRefresher
from ..utils.resilient_io import ResilientStateWriter, safe_read_json

lib_logger = logging.getLogger("streamsnap_library")


def spawn_logged(coro, name: str) -> asyncio.Task:
    """Start a fire-and-forget task whose failure is logged instead of lost."""
    task = asyncio.create_task(coro, name=name)

    def _log_result(t: asyncio.Task):
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            lib_logger.error(f"Background task '{name}' failed: {exc}")

    task.add_done_callback(_log_result)
    return task


class AccountRegistryBase:
    """
    Durable, metadata-only list of linked accounts for one provider.

    The registry owns its JSON document exclusively: one in-memory copy,
    every mutation a serialized read-modify-write followed by a full atomic
    rewrite. Tokens never enter the document; each record only names the
    vault key where its bundle lives.

    Subclasses must override:
        - ACCOUNT_CLASS: The AccountRecord dataclass for this provider
        - VAULT_PREFIX: Namespace for vault keys ("<prefix>:<id>")
        - PROVIDER_NAME: Label for logs
        - _load_document / _to_document: document shape
        - _needs_backfill / _fetch_profile: lazy profile resolution
    """

    ACCOUNT_CLASS = None
    VAULT_PREFIX: str = None
    PROVIDER_NAME: str = None

    def __init__(
        self,
        path: Union[str, Path],
        vault: CredentialVault,
        refresher: TokenRefresher,
        http_client: httpx.AsyncClient,
    ):
        self.path = Path(path)
        self._vault = vault
        self._refresher = refresher
        self._http = http_client
        self._lock = asyncio.Lock()
        self._writer = ResilientStateWriter(self.path, lib_logger)
        self._accounts: List[AccountRecord] = []
        self._loaded = False
        self._backfill_attempted: Set[str] = set()
        self._backfill_task: Optional[asyncio.Task] = None

    def vault_key_for(self, account_id: str) -> str:
        return f"{self.VAULT_PREFIX}:{account_id}"

    # =========================================================================
    # DOCUMENT I/O
    # =========================================================================

    def _load_document(self, data: Any) -> None:
        raise NotImplementedError

    def _to_document(self) -> Any:
        raise NotImplementedError

    def _parse_records(self, records: Any) -> List[AccountRecord]:
        accounts = []
        if not isinstance(records, list):
            return accounts
        for record in records:
            if not isinstance(record, dict) or not record.get("id"):
                lib_logger.warning(
                    f"Skipping malformed {self.PROVIDER_NAME} account record in {self.path.name}"
                )
                continue
            record = dict(record)
            record.setdefault("vaultKey", self.vault_key_for(record["id"]))
            accounts.append(self.ACCOUNT_CLASS.from_dict(record))
        return accounts

    async def _ensure_loaded(self) -> None:
        """Load the document on first use. Caller must hold the lock."""
        if self._loaded:
            return
        data = await asyncio.to_thread(safe_read_json, self.path, lib_logger)
        self._load_document(data)
        self._loaded = True
        lib_logger.debug(
            f"Loaded {len(self._accounts)} {self.PROVIDER_NAME} account(s) from {self.path.name}"
        )
        await self._after_load()

    async def _after_load(self) -> None:
        """Move tokens older documents kept inline on a record into the vault."""
        migrated = 0
        for account in self._accounts:
            inline = {k: account.extra[k] for k in INLINE_TOKEN_KEYS if k in account.extra}
            if not inline:
                continue
            try:
                bundle, _ = TokenBundle.from_stored(inline)
            except ValueError:
                lib_logger.warning(
                    f"Dropping unusable inline tokens from {self.PROVIDER_NAME} account {account.id}"
                )
            else:
                if not await self._vault.put(account.vault_key, bundle):
                    lib_logger.error(
                        f"Inline tokens for {account.id} could not be moved to "
                        f"{mask_secret(account.vault_key)}; will retry on next start"
                    )
                    continue
            for key in inline:
                del account.extra[key]
            migrated += 1

        if migrated:
            self._persist()
            lib_logger.info(
                f"Moved inline tokens of {migrated} {self.PROVIDER_NAME} account(s) into the vault"
            )

    def _persist(self) -> bool:
        return self._writer.write(self._to_document())

    async def flush(self) -> bool:
        """Final write attempt for state that only made it to memory."""
        async with self._lock:
            return self._writer.flush()

    def _find(self, account_id: str) -> Optional[AccountRecord]:
        for account in self._accounts:
            if account.id == account_id:
                return account
        return None

    def _identity_taken(self, candidate: AccountRecord) -> bool:
        """True when another entry already has the candidate's identity."""
        key = candidate.identity_key()
        if not key:
            return False
        return any(
            a.id != candidate.id and a.identity_key() == key for a in self._accounts
        )

    def _replace(self, candidate: AccountRecord) -> None:
        for index, account in enumerate(self._accounts):
            if account.id == candidate.id:
                self._accounts[index] = candidate
                return

    def _present(self, account: AccountRecord) -> AccountRecord:
        """Copy handed to callers so they cannot mutate registry state."""
        return copy.deepcopy(account)

    # =========================================================================
    # QUERIES AND MUTATIONS
    # =========================================================================

    async def list(self) -> List[AccountRecord]:
        """All accounts. Also schedules profile backfill, which this never waits for."""
        async with self._lock:
            await self._ensure_loaded()
            accounts = [self._present(a) for a in self._accounts]
        self._schedule_backfill()
        return accounts

    async def get_active(self) -> List[AccountRecord]:
        return [a for a in await self.list() if a.is_active]

    async def get(self, account_id: str) -> Optional[AccountRecord]:
        async with self._lock:
            await self._ensure_loaded()
            account = self._find(account_id)
            return self._present(account) if account else None

    async def update(self, account_id: str, changes: Dict[str, Any]) -> AccountRecord:
        """
        Merge ``changes`` into the account and persist.

        Raises:
            AccountNotFound: No account has this id
            DuplicateAccount: The patch would give it another entry's identity
        """
        async with self._lock:
            await self._ensure_loaded()
            account = self._find(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            candidate = copy.deepcopy(account)
            skipped = candidate.apply_patch(changes)
            if skipped:
                lib_logger.warning(
                    f"Ignoring protected field(s) {', '.join(skipped)} in update of {account_id}"
                )
            if self._identity_taken(candidate):
                raise DuplicateAccount(candidate.identity)
            candidate.updated_at = max(now_ms(), account.updated_at + 1)
            self._replace(candidate)
            self._persist()
            return self._present(candidate)

    async def remove(self, account_id: str) -> bool:
        """
        Remove the account entry, then delete its vault secret.

        The entry is always removed when present; a vault failure is only logged.
        """
        async with self._lock:
            await self._ensure_loaded()
            account = self._find(account_id)
            if account is None:
                return False
            self._accounts.remove(account)
            self._on_removed(account)
            self._persist()

        if not await self._vault.delete(account.vault_key):
            lib_logger.warning(
                f"Removed {self.PROVIDER_NAME} account {account_id} but its vault entry "
                f"{mask_secret(account.vault_key)} could not be deleted"
            )
        lib_logger.info(f"Removed {self.PROVIDER_NAME} account {account_id}")
        return True

    def _on_removed(self, account: AccountRecord) -> None:
        """Hook run under the lock after an entry left the list."""

    async def _set_needs_reauth(self, account_id: str, value: bool) -> None:
        async with self._lock:
            await self._ensure_loaded()
            account = self._find(account_id)
            if account is None or account.needs_reauth == value:
                return
            account.needs_reauth = value
            account.updated_at = max(now_ms(), account.updated_at + 1)
            self._persist()

    # =========================================================================
    # TOKENS
    # =========================================================================

    async def load_bundle(self, account: AccountRecord) -> Optional[TokenBundle]:
        return await self._vault.get(account.vault_key)

    async def refresh_account(
        self, account: AccountRecord, bundle: TokenBundle
    ) -> TokenBundle:
        """
        Refresh one account's bundle and clear its reauth flag.

        Raises:
            RefreshFailed: The account is flagged as needing reauthorization
        """
        try:
            new_bundle = await self._refresher.refresh(account.vault_key, bundle)
        except RefreshFailed:
            await self._set_needs_reauth(account.id, True)
            raise
        await self._set_needs_reauth(account.id, False)
        return new_bundle

    async def refresh_all_tokens(self) -> int:
        """
        Proactively refresh every bundle that expires within five minutes.

        Returns:
            Number of accounts refreshed. Per-account failures are logged.
        """
        try:
            accounts = await self.list()
        except Exception as e:
            lib_logger.error(f"Could not load {self.PROVIDER_NAME} accounts for refresh: {e}")
            return 0

        refreshed = 0
        for account in accounts:
            try:
                bundle = await self.load_bundle(account)
                if bundle is None or not bundle.refresh_token:
                    continue
                if TokenRefresher.is_valid(bundle, PROACTIVE_REFRESH_MARGIN_MS):
                    continue
                await self.refresh_account(account, bundle)
                refreshed += 1
            except RefreshFailed as e:
                lib_logger.warning(
                    f"Proactive refresh failed for {self.PROVIDER_NAME} account {account.id}: {e}"
                )
            except Exception as e:
                lib_logger.error(
                    f"Error during proactive refresh for {self.PROVIDER_NAME} account {account.id}: {e}"
                )

        if refreshed:
            lib_logger.info(f"Refreshed {refreshed} {self.PROVIDER_NAME} token(s)")
        return refreshed

    async def handle_auth_error(self, account_id: str) -> AuthErrorOutcome:
        """
        Reactive recovery after an API call was rejected.

        Never deletes the account; ``should_remove`` is advice for the caller.
        """
        account = await self.get(account_id)
        if account is None:
            return AuthErrorOutcome(False, True, error="Account not found")

        bundle = await self.load_bundle(account)
        if bundle is None or not bundle.refresh_token:
            await self._set_needs_reauth(account_id, True)
            return AuthErrorOutcome(False, True, error="No refresh token available")

        try:
            await self.refresh_account(account, bundle)
        except RefreshFailed as e:
            return AuthErrorOutcome(False, True, error=str(e))

        return AuthErrorOutcome(True, False, refreshed=True)

    # =========================================================================
    # PROFILE BACKFILL
    # =========================================================================

    def _needs_backfill(self, account: AccountRecord) -> bool:
        raise NotImplementedError

    async def _fetch_profile(
        self, account: AccountRecord, access_token: str
    ) -> Dict[str, Any]:
        """Return the document-keyed changes to merge into ``account``."""
        raise NotImplementedError

    def _schedule_backfill(self) -> None:
        if self._backfill_task is not None and not self._backfill_task.done():
            return
        pending = [
            a.id
            for a in self._accounts
            if a.id not in self._backfill_attempted and self._needs_backfill(a)
        ]
        if not pending:
            return
        self._backfill_attempted.update(pending)
        self._backfill_task = spawn_logged(
            self._run_backfill(pending), f"{self.VAULT_PREFIX}-backfill"
        )

    async def wait_for_backfill(self) -> None:
        if self._backfill_task is not None:
            await asyncio.gather(self._backfill_task, return_exceptions=True)

    async def _run_backfill(self, account_ids: List[str]) -> None:
        for account_id in account_ids:
            account = await self.get(account_id)
            if account is None:
                continue
            bundle = await self.load_bundle(account)
            if not TokenRefresher.is_valid(bundle, 0):
                lib_logger.debug(
                    f"Skipping profile backfill for {account_id}: no valid access token"
                )
                continue
            try:
                changes = await self._fetch_profile(account, bundle.access_token)
            except StreamSnapError as e:
                lib_logger.warning(f"Profile backfill failed for {account_id}: {e}")
                continue
            except Exception as e:
                lib_logger.error(f"Unexpected error during profile backfill for {account_id}: {e}")
                continue
            if not changes:
                continue

            async with self._lock:
                current = self._find(account_id)
                if current is None:
                    continue
                candidate = copy.deepcopy(current)
                candidate.apply_patch(changes)
                if self._identity_taken(candidate):
                    lib_logger.warning(
                        f"Backfilled profile of {account_id} matches another "
                        f"{self.PROVIDER_NAME} account, leaving it unresolved"
                    )
                    continue
                candidate.updated_at = max(now_ms(), current.updated_at + 1)
                self._replace(candidate)
                self._persist()
            lib_logger.info(f"Backfilled {self.PROVIDER_NAME} profile for {account_id}")
