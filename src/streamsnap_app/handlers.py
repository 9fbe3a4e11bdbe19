# src/streamsnap_app/handlers.py
"""
Boundary handlers for the desktop UI.

Every public coroutine here returns a plain dict that is either
``{"success": True, ...}`` or ``{"success": False, "error": <code>,
"message": <detail>}``. Library exceptions stop at this layer.
"""

import functools
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from streamsnap_library.clients.youtube_client import fetch_channel
from streamsnap_library.constants import YOUTUBE_CREATE_CHANNEL_URL
from streamsnap_library.error_handler import (
    NoChannel,
    StreamSnapError,
    error_code,
    mask_secret,
)

from .services import AccountServices

logger = logging.getLogger(__name__)

Result = Dict[str, Any]


def failure(exc: BaseException) -> Result:
    message = exc.message if isinstance(exc, StreamSnapError) else str(exc)
    return {"success": False, "error": error_code(exc), "message": message}


def boundary(func):
    """Convert a handler's return value or exception into a result dict."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Result:
        try:
            result = await func(*args, **kwargs)
        except NoChannel as e:
            out = failure(e)
            out["needsChannel"] = True
            out["createChannelUrl"] = YOUTUBE_CREATE_CHANNEL_URL
            return out
        except StreamSnapError as e:
            logger.warning(f"{func.__name__} failed: {e.code}: {e.message}")
            return failure(e)
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            return failure(e)

        if isinstance(result, dict) and "success" in result:
            return result
        return {"success": True, **(result or {})}

    return wrapper


def _require_payload(data: Optional[bytes], path: Optional[Union[str, Path]]) -> None:
    if data is None and path is None:
        raise ValueError("Either data or path must be provided")


class DriveHandlers:
    def __init__(self, services: AccountServices):
        self._registry = services.drive_accounts
        self._client = services.drive

    @boundary
    async def list_accounts(self) -> Result:
        accounts = await self._registry.list()
        return {
            "accounts": [a.to_dict() for a in accounts],
            "defaultAccountId": await self._registry.get_default_account_id(),
        }

    @boundary
    async def get_active_accounts(self) -> Result:
        return {"accounts": [a.to_dict() for a in await self._registry.get_active()]}

    @boundary
    async def create_account(self, display_name: Optional[str] = None) -> Result:
        account = await self._registry.create(display_name)
        return {"account": account.to_dict()}

    @boundary
    async def remove_account(self, account_id: str) -> Result:
        return {"removed": await self._registry.remove(account_id)}

    @boundary
    async def update_account(self, account_id: str, changes: Dict[str, Any]) -> Result:
        account = await self._registry.update(account_id, changes)
        return {"account": account.to_dict()}

    @boundary
    async def set_default_account(self, account_id: str) -> Result:
        await self._registry.set_default_account(account_id)
        return {"defaultAccountId": account_id}

    @boundary
    async def list_folders(self, account_id: str) -> Result:
        return {"folders": await self._client.list_folders(account_id)}

    @boundary
    async def list_folders_paged(
        self,
        account_id: str,
        page_size: int = 40,
        page_token: Optional[str] = None,
        name_query: str = "",
        shared_with_me: bool = False,
    ) -> Result:
        return await self._client.list_folders_paged(
            account_id, page_size, page_token, name_query, shared_with_me
        )

    @boundary
    async def create_folder(
        self, account_id: str, name: str, parent_id: Optional[str] = None
    ) -> Result:
        return {"folder": await self._client.create_folder(account_id, name, parent_id)}

    @boundary
    async def upload(
        self,
        account_id: str,
        folder_id: Optional[str],
        file_name: Optional[str] = None,
        data: Optional[bytes] = None,
        path: Optional[Union[str, Path]] = None,
        privacy: str = "restricted",
        mime_type: str = "video/webm",
    ) -> Result:
        _require_payload(data, path)
        if data is not None:
            return await self._client.upload_video(
                account_id, folder_id, data, file_name or "recording.webm", privacy, mime_type
            )
        return await self._client.upload_file(
            account_id, folder_id, path, file_name, privacy, mime_type
        )

    @boundary
    async def get_privacy_options(self, account_id: str) -> Result:
        return {"options": await self._client.get_privacy_options(account_id)}

    @boundary
    async def get_user_domain(self, account_id: str) -> Result:
        return await self._client.get_user_domain(account_id)

    @boundary
    async def handle_auth_error(self, account_id: str) -> Result:
        return (await self._registry.handle_auth_error(account_id)).to_dict()

    @boundary
    async def refresh_all_tokens(self) -> Result:
        return {"refreshed": await self._registry.refresh_all_tokens()}


class YouTubeHandlers:
    def __init__(self, services: AccountServices):
        self._registry = services.youtube_accounts
        self._client = services.youtube
        self._oauth = services.youtube_oauth
        self._http = services.http

    @boundary
    async def list_accounts(self) -> Result:
        return {"accounts": [a.to_dict() for a in await self._registry.list()]}

    @boundary
    async def get_active_accounts(self) -> Result:
        return {"accounts": [a.to_dict() for a in await self._registry.get_active()]}

    @boundary
    async def sign_in(self) -> Result:
        bundle = await self._oauth.authorize()

        email = None
        try:
            email = (await self._oauth.get_user_info(bundle.access_token)).get("email")
        except StreamSnapError as e:
            # The channel id is the identity; email only helps matching
            logger.warning(f"Could not read Google profile during YouTube sign-in: {e}")

        channel = await fetch_channel(self._http, bundle.access_token)
        account = await self._registry.create(
            bundle,
            channel.channel_id,
            channel.channel_name,
            channel.thumbnail,
            email,
        )
        logger.info(
            f"YouTube sign-in complete for channel {mask_secret(channel.channel_id)}"
        )
        return {"account": account.to_dict()}

    @boundary
    async def remove_account(self, account_id: str) -> Result:
        return {"removed": await self._registry.remove(account_id)}

    @boundary
    async def update_account(self, account_id: str, changes: Dict[str, Any]) -> Result:
        account = await self._registry.update(account_id, changes)
        return {"account": account.to_dict()}

    @boundary
    async def upload(
        self,
        account_id: str,
        title: Optional[str] = None,
        data: Optional[bytes] = None,
        path: Optional[Union[str, Path]] = None,
        description: str = "",
        privacy: str = "private",
        playlist_id: Optional[str] = None,
        mime_type: str = "video/webm",
    ) -> Result:
        _require_payload(data, path)
        if data is not None:
            return await self._client.upload_video(
                account_id,
                data,
                title or "StreamSnap recording",
                description,
                privacy,
                playlist_id,
                mime_type,
            )
        return await self._client.upload_file(
            account_id, path, title, description, privacy, playlist_id, mime_type
        )

    @boundary
    async def get_channel_info(self, account_id: str) -> Result:
        return await self._client.get_channel_info(account_id)

    @boundary
    async def get_playlists(self, account_id: str) -> Result:
        return {"playlists": await self._client.get_playlists(account_id)}

    @boundary
    async def handle_auth_error(self, account_id: str) -> Result:
        return (await self._registry.handle_auth_error(account_id)).to_dict()

    @boundary
    async def refresh_all_tokens(self) -> Result:
        return {"refreshed": await self._registry.refresh_all_tokens()}
