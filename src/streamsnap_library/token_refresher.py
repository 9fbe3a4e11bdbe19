# src/streamsnap_library/token_refresher.py

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from .credential_vault import CredentialVault
from .error_handler import RefreshFailed, mask_secret
from .models import TokenBundle, now_ms
from .providers.google_oauth_base import GoogleOAuthBase

lib_logger = logging.getLogger("streamsnap_library")

StoreFailureHook = Callable[[str, TokenBundle], Awaitable[None]]


class TokenRefresher:
    """
    Decides token staleness and performs refresh-token exchanges.

    There is no retry loop here: a failed exchange raises RefreshFailed and
    the caller decides whether that means "retry later" (sweep) or "ask the
    user to sign in again" (reactive path). Concurrent refreshes of the same
    vault key share a single in-flight request, so a burst of 401s for one
    account costs one round-trip to the token endpoint.
    """

    def __init__(
        self,
        oauth: GoogleOAuthBase,
        vault: CredentialVault,
        http_client: httpx.AsyncClient,
    ):
        self._oauth = oauth
        self._vault = vault
        self._http = http_client
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._store_failure_hooks: List[StoreFailureHook] = []

    @staticmethod
    def is_valid(
        bundle: Optional[TokenBundle], margin_ms: int, now: Optional[int] = None
    ) -> bool:
        """True iff the access token outlives now + margin. The boundary is invalid."""
        if bundle is None or not bundle.access_token:
            return False
        current = now if now is not None else now_ms()
        return bundle.expiry > current + margin_ms

    def add_store_failure_listener(self, hook: StoreFailureHook) -> None:
        """Called with (vault_key, bundle) when a refreshed bundle could not be stored."""
        self._store_failure_hooks.append(hook)

    async def refresh(self, vault_key: str, bundle: TokenBundle) -> TokenBundle:
        """
        Exchange the bundle's refresh token for a new access token.

        The vault is written only after a successful exchange.

        Raises:
            RefreshFailed: No refresh token, transport error or non-2xx response
        """
        task = self._in_flight.get(vault_key)
        if task is None:
            task = asyncio.create_task(self._do_refresh(vault_key, bundle))
            self._in_flight[vault_key] = task
            task.add_done_callback(lambda t, k=vault_key: self._on_refresh_done(k, t))
        else:
            lib_logger.debug(
                f"Joining in-flight refresh for {mask_secret(vault_key)}"
            )
        # Shielded so one cancelled caller doesn't abort the shared request
        return await asyncio.shield(task)

    def _on_refresh_done(self, vault_key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(vault_key) is task:
            del self._in_flight[vault_key]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter was cancelled
            task.exception()

    async def _do_refresh(self, vault_key: str, bundle: TokenBundle) -> TokenBundle:
        if not bundle.refresh_token:
            raise RefreshFailed(f"No refresh token stored for {mask_secret(vault_key)}")

        lib_logger.debug(f"Refreshing access token for {mask_secret(vault_key)}...")

        data = {
            "client_id": self._oauth.client_id,
            "refresh_token": bundle.refresh_token,
            "grant_type": "refresh_token",
        }
        if self._oauth.client_secret:
            data["client_secret"] = self._oauth.client_secret

        try:
            response = await self._http.post(self._oauth.TOKEN_URI, data=data)
        except httpx.HTTPError as e:
            raise RefreshFailed(f"Network error during token refresh: {e}", None, str(e))

        if not response.is_success:
            raise RefreshFailed(
                f"Token refresh failed: {response.status_code}",
                response.status_code,
                response.text,
            )

        try:
            new_bundle = TokenBundle.from_token_response(
                response.json(), previous_refresh_token=bundle.refresh_token
            )
        except ValueError as e:
            raise RefreshFailed(
                f"Token refresh returned an unusable response: {e}",
                response.status_code,
                response.text,
            )

        if not await self._vault.put(vault_key, new_bundle):
            lib_logger.warning(
                f"Refreshed token for {mask_secret(vault_key)} could not be stored in the vault"
            )
            for hook in self._store_failure_hooks:
                await hook(vault_key, new_bundle)

        lib_logger.info(f"Access token refreshed for {mask_secret(vault_key)}")
        return new_bundle
