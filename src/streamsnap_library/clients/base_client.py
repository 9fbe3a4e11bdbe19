# src/streamsnap_library/clients/base_client.py

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

import httpx

from ..constants import REACTIVE_REFRESH_MARGIN_MS
from ..error_handler import (
    AccountNotFound,
    NotAuthenticated,
    RefreshFailed,
    is_auth_failure,
    json_object_from_response,
    provider_error_from_response,
    provider_error_from_transport,
)
from ..models import AccountRecord, TokenBundle
from ..token_refresher import TokenRefresher

if TYPE_CHECKING:
    from ..accounts.registry_base import AccountRegistryBase

lib_logger = logging.getLogger("streamsnap_library")


class AuthorizedClientBase:
    """
    Credential-scoped HTTP calls for one provider.

    Every call resolves the account and its bundle afresh (no token is cached
    across calls), refreshes up front when the token expires within a minute,
    and on a 401/403 forces one refresh and retries exactly once.
    """

    def __init__(self, registry: "AccountRegistryBase", http_client: httpx.AsyncClient):
        self._registry = registry
        self._http = http_client

    async def _resolve(self, account_id: str) -> AccountRecord:
        account = await self._registry.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def _fresh_bundle(self, account: AccountRecord) -> TokenBundle:
        bundle = await self._registry.load_bundle(account)
        if bundle is None:
            raise NotAuthenticated(f"No stored tokens for account {account.id}")
        if TokenRefresher.is_valid(bundle, REACTIVE_REFRESH_MARGIN_MS):
            return bundle
        return await self._refresh_or_fail(account, bundle)

    async def _refresh_or_fail(
        self, account: AccountRecord, bundle: TokenBundle
    ) -> TokenBundle:
        try:
            return await self._registry.refresh_account(account, bundle)
        except RefreshFailed as e:
            raise NotAuthenticated(
                f"Could not refresh access for account {account.id}: {e}"
            )

    async def _send(
        self, method: str, url: str, access_token: str, **kwargs: Any
    ) -> httpx.Response:
        headers: Dict[str, str] = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise provider_error_from_transport(e)

    async def _authorized_request(
        self,
        account_id: str,
        method: str,
        url: str,
        accept_status: Iterable[int] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Perform one authenticated request for ``account_id``.

        Args:
            accept_status: Extra non-2xx statuses the caller handles itself
                (e.g. 308 during a resumable upload)

        Raises:
            AccountNotFound, NotAuthenticated, ProviderApiError
        """
        account = await self._resolve(account_id)
        bundle = await self._fresh_bundle(account)

        response = await self._send(method, url, bundle.access_token, **kwargs)
        if is_auth_failure(response):
            lib_logger.info(
                f"{method} {url} returned {response.status_code} for account "
                f"{account_id}, refreshing and retrying once"
            )
            bundle = await self._refresh_or_fail(account, bundle)
            response = await self._send(method, url, bundle.access_token, **kwargs)

        if response.is_success or response.status_code in tuple(accept_status):
            return response
        raise provider_error_from_response(response)

    async def _authorized_json(
        self, account_id: str, method: str, url: str, **kwargs: Any
    ) -> Optional[Dict[str, Any]]:
        response = await self._authorized_request(account_id, method, url, **kwargs)
        if not response.content:
            return None
        return json_object_from_response(response)
