# src/streamsnap_library/clients/youtube_client.py

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from ..constants import (
    YOUTUBE_API_BASE,
    YOUTUBE_DEFAULT_CATEGORY_ID,
    YOUTUBE_DEFAULT_DESCRIPTION,
    YOUTUBE_PRIVACY_VALUES,
    YOUTUBE_UPLOAD_CHUNK_SIZE,
    YOUTUBE_UPLOAD_URI,
)
from ..error_handler import (
    NoChannel,
    ProviderApiError,
    StreamSnapError,
    json_object_from_response,
    provider_error_from_response,
    provider_error_from_transport,
)
from ..models import ChannelInfo
from .base_client import AuthorizedClientBase

lib_logger = logging.getLogger("streamsnap_library")

RESUME_INCOMPLETE = 308
# Consecutive 308 replies that keep nothing before the upload is abandoned
MAX_STALLED_CHUNKS = 3


def _best_thumbnail(snippet: Dict[str, Any]) -> Optional[str]:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("default", "medium", "high"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return None


def parse_channel(payload: Dict[str, Any]) -> ChannelInfo:
    """
    Pull the first channel out of a ``channels.list`` response.

    Raises:
        NoChannel: The Google account has not created a channel yet
    """
    items = payload.get("items") or []
    if not items:
        raise NoChannel("This Google account has no YouTube channel")
    channel = items[0] if isinstance(items, list) else None
    if not isinstance(channel, dict) or not channel.get("id"):
        raise ProviderApiError(None, str(items), "YouTube returned a malformed channel list")
    snippet = channel.get("snippet") or {}
    return ChannelInfo(
        channel_id=channel["id"],
        channel_name=snippet.get("title", ""),
        thumbnail=_best_thumbnail(snippet),
    )


async def fetch_channel(http_client: httpx.AsyncClient, access_token: str) -> ChannelInfo:
    """Resolve the caller's own channel with a raw access token (sign-in, backfill)."""
    try:
        response = await http_client.get(
            f"{YOUTUBE_API_BASE}/channels",
            params={"part": "snippet", "mine": "true"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
    except httpx.HTTPError as e:
        raise provider_error_from_transport(e)
    if not response.is_success:
        raise provider_error_from_response(response)
    return parse_channel(json_object_from_response(response))


class YouTubeClient(AuthorizedClientBase):
    """YouTube Data API v3 calls on behalf of a registered channel."""

    async def upload_video(
        self,
        account_id: str,
        data: bytes,
        title: str,
        description: str = "",
        privacy: str = "private",
        playlist_id: Optional[str] = None,
        mime_type: str = "video/webm",
    ) -> Dict[str, Any]:
        """
        Upload through a resumable session in 8 MiB chunks.

        Returns:
            {"videoId", "videoUrl"}
        """
        if privacy not in YOUTUBE_PRIVACY_VALUES:
            raise ValueError(
                f"Invalid privacy '{privacy}', expected one of {YOUTUBE_PRIVACY_VALUES}"
            )

        metadata = {
            "snippet": {
                "title": title,
                "description": description or YOUTUBE_DEFAULT_DESCRIPTION,
                "categoryId": YOUTUBE_DEFAULT_CATEGORY_ID,
            },
            "status": {"privacyStatus": privacy, "selfDeclaredMadeForKids": False},
        }
        total = len(data)

        session = await self._authorized_request(
            account_id,
            "POST",
            YOUTUBE_UPLOAD_URI,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={
                "X-Upload-Content-Length": str(total),
                "X-Upload-Content-Type": mime_type,
            },
            json=metadata,
        )
        session_url = session.headers.get("Location")
        if not session_url:
            raise ProviderApiError(
                session.status_code, session.text, "YouTube did not return an upload session"
            )

        lib_logger.info(f"Uploading '{title}' ({total} bytes) to YouTube for {account_id}")
        offset = 0
        stalled = 0
        while True:
            end = min(offset + YOUTUBE_UPLOAD_CHUNK_SIZE, total)
            headers = {"Content-Type": mime_type}
            if total:
                headers["Content-Range"] = f"bytes {offset}-{end - 1}/{total}"
            response = await self._authorized_request(
                account_id,
                "PUT",
                session_url,
                accept_status=(RESUME_INCOMPLETE,),
                headers=headers,
                content=data[offset:end],
            )
            if response.status_code != RESUME_INCOMPLETE:
                break
            # Range reports what the server has; no Range means nothing was kept
            received = response.headers.get("Range")
            next_offset = int(received.rsplit("-", 1)[-1]) + 1 if received else 0
            stalled = stalled + 1 if next_offset <= offset else 0
            if stalled > MAX_STALLED_CHUNKS:
                raise ProviderApiError(
                    response.status_code, response.text, "YouTube upload is not making progress"
                )
            offset = next_offset
            lib_logger.debug(f"YouTube upload progress: {offset}/{total} bytes")

        video = json_object_from_response(response)
        video_id = video.get("id")
        if not video_id:
            raise ProviderApiError(
                response.status_code, response.text, "YouTube upload returned no video id"
            )

        if playlist_id:
            await self._add_to_playlist(account_id, playlist_id, video_id)

        return {
            "videoId": video_id,
            "videoUrl": f"https://www.youtube.com/watch?v={video_id}",
        }

    async def upload_file(
        self,
        account_id: str,
        path: Union[str, Path],
        title: Optional[str] = None,
        description: str = "",
        privacy: str = "private",
        playlist_id: Optional[str] = None,
        mime_type: str = "video/webm",
    ) -> Dict[str, Any]:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        return await self.upload_video(
            account_id, data, title or path.stem, description, privacy, playlist_id, mime_type
        )

    async def _add_to_playlist(
        self, account_id: str, playlist_id: str, video_id: str
    ) -> None:
        try:
            await self._authorized_request(
                account_id,
                "POST",
                f"{YOUTUBE_API_BASE}/playlistItems",
                params={"part": "snippet"},
                json={
                    "snippet": {
                        "playlistId": playlist_id,
                        "resourceId": {"kind": "youtube#video", "videoId": video_id},
                    }
                },
            )
        except StreamSnapError as e:
            # The video is already uploaded
            lib_logger.warning(
                f"Could not add video {video_id} to playlist {playlist_id}: {e}"
            )

    async def get_playlists(self, account_id: str) -> List[Dict[str, Any]]:
        data = await self._authorized_json(
            account_id,
            "GET",
            f"{YOUTUBE_API_BASE}/playlists",
            params={"part": "snippet", "mine": "true", "maxResults": 50},
        ) or {}
        return [
            {
                "id": item.get("id"),
                "title": (item.get("snippet") or {}).get("title", ""),
                "thumbnail": _best_thumbnail(item.get("snippet") or {}),
            }
            for item in data.get("items", [])
        ]

    async def get_channel_info(self, account_id: str) -> Dict[str, Any]:
        data = await self._authorized_json(
            account_id,
            "GET",
            f"{YOUTUBE_API_BASE}/channels",
            params={"part": "snippet", "mine": "true"},
        ) or {}
        return parse_channel(data).to_dict()
