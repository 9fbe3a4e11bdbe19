# src/streamsnap_library/clients/drive_client.py

import asyncio
import json
import logging
import secrets
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

from ..constants import (
    DRIVE_API_BASE,
    DRIVE_FOLDER_MIME_TYPE,
    DRIVE_ROOT_FOLDER,
    DRIVE_UPLOAD_URI,
    PERSONAL_EMAIL_DOMAINS,
    PRIVACY_OPTIONS,
)
from ..error_handler import (
    ProviderApiError,
    StreamSnapError,
    json_object_from_response,
    provider_error_from_response,
    provider_error_from_transport,
)
from ..models import DomainInfo
from .base_client import AuthorizedClientBase

lib_logger = logging.getLogger("streamsnap_library")

FOLDER_FIELDS = "nextPageToken,files(id,name,webViewLink,parents)"
DEFAULT_PAGE_SIZE = 40
FULL_LISTING_PAGE_SIZE = 100


def domain_info_from_email(email: str) -> DomainInfo:
    domain = email.split("@")[-1].lower() if "@" in email else ""
    return DomainInfo(
        email=email,
        domain=domain,
        is_organizational=bool(domain) and domain not in PERSONAL_EMAIL_DOMAINS,
    )


async def fetch_drive_user(
    http_client: httpx.AsyncClient, access_token: str
) -> Dict[str, Any]:
    """
    Read ``about?fields=user`` with a raw access token.

    Used while an account is being created (before it has a registry entry)
    and by profile backfill.
    """
    try:
        response = await http_client.get(
            f"{DRIVE_API_BASE}/about",
            params={"fields": "user"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
    except httpx.HTTPError as e:
        raise provider_error_from_transport(e)
    if not response.is_success:
        raise provider_error_from_response(response)
    user = json_object_from_response(response).get("user")
    return user if isinstance(user, dict) else {}


def escape_query_value(value: str) -> str:
    """Escape a literal for a Drive ``q`` string expression."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def permission_for_privacy(
    privacy: str, domain: Optional[str] = None, is_organizational: bool = False
) -> Optional[Dict[str, Any]]:
    """
    Map a privacy choice to a Drive permission body.

    Returns None when no permission should be created (restricted, or a
    domain share for an account that has no organization).
    """
    if privacy == "anyone":
        return {"role": "reader", "type": "anyone"}
    if privacy == "anyoneWithLink":
        return {"role": "reader", "type": "anyone", "allowFileDiscovery": False}
    if privacy == "domain" and is_organizational and domain:
        return {"role": "reader", "type": "domain", "domain": domain}
    return None


class DriveClient(AuthorizedClientBase):
    """Google Drive v3 calls on behalf of a registered account."""

    async def list_folders_paged(
        self,
        account_id: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
        name_query: str = "",
        shared_with_me: bool = False,
    ) -> Dict[str, Any]:
        """
        One page of folders. Page size and token are passed through unchanged.

        Returns:
            {"files": [...], "nextPageToken": str | None}
        """
        query = f"mimeType='{DRIVE_FOLDER_MIME_TYPE}' and trashed=false"
        if name_query:
            query += f" and name contains '{escape_query_value(name_query)}'"
        if shared_with_me:
            query += " and sharedWithMe = true"

        params: Dict[str, Any] = {
            "q": query,
            "fields": FOLDER_FIELDS,
            "pageSize": page_size,
            "orderBy": "name",
            "includeItemsFromAllDrives": "true",
            "supportsAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token

        data = await self._authorized_json(
            account_id, "GET", f"{DRIVE_API_BASE}/files", params=params
        ) or {}
        return {
            "files": data.get("files", []),
            "nextPageToken": data.get("nextPageToken"),
        }

    async def iter_folders(
        self,
        account_id: str,
        page_size: int = FULL_LISTING_PAGE_SIZE,
        name_query: str = "",
        shared_with_me: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield folders across all pages; stops between pages once cancelled."""
        page_token = None
        while True:
            page = await self.list_folders_paged(
                account_id, page_size, page_token, name_query, shared_with_me
            )
            for folder in page["files"]:
                yield folder
            page_token = page["nextPageToken"]
            if not page_token:
                return
            if cancel_event is not None and cancel_event.is_set():
                lib_logger.info(f"Folder listing for {account_id} cancelled")
                return

    async def list_folders(
        self, account_id: str, cancel_event: Optional[asyncio.Event] = None
    ) -> List[Dict[str, Any]]:
        """Every folder, with the synthetic My Drive root first."""
        folders = [dict(DRIVE_ROOT_FOLDER)]
        async for folder in self.iter_folders(account_id, cancel_event=cancel_event):
            folders.append(folder)
        return folders

    async def create_folder(
        self, account_id: str, name: str, parent_id: Optional[str] = None
    ) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": name, "mimeType": DRIVE_FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        data = await self._authorized_json(
            account_id,
            "POST",
            f"{DRIVE_API_BASE}/files",
            params={"fields": "id,name,webViewLink", "supportsAllDrives": "true"},
            json=metadata,
        ) or {}
        lib_logger.info(f"Created Drive folder '{name}' for {account_id}")
        return {
            "id": data.get("id"),
            "name": data.get("name", name),
            "webViewLink": data.get("webViewLink"),
        }

    async def upload_video(
        self,
        account_id: str,
        folder_id: Optional[str],
        data: bytes,
        file_name: str,
        privacy: str = "restricted",
        mime_type: str = "video/webm",
    ) -> Dict[str, Any]:
        """
        Upload a recording with a single multipart/related request.

        Returns:
            {"fileId", "fileName", "webViewLink", "privacy"}
        """
        metadata: Dict[str, Any] = {"name": file_name, "mimeType": mime_type}
        if folder_id and folder_id != "root":
            metadata["parents"] = [folder_id]

        boundary = f"streamsnap_{secrets.token_hex(12)}"
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode("utf-8"),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {mime_type}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--".encode(),
            ]
        )

        lib_logger.info(
            f"Uploading '{file_name}' ({len(data)} bytes) to Drive for {account_id}"
        )
        result = await self._authorized_json(
            account_id,
            "POST",
            DRIVE_UPLOAD_URI,
            params={
                "uploadType": "multipart",
                "fields": "id,name,webViewLink",
                "supportsAllDrives": "true",
            },
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        ) or {}

        file_id = result.get("id")
        if not file_id:
            raise ProviderApiError(None, json.dumps(result), "Drive upload returned no file id")

        if privacy != "restricted":
            await self._apply_privacy(account_id, file_id, privacy)

        return {
            "fileId": file_id,
            "fileName": result.get("name", file_name),
            "webViewLink": result.get("webViewLink")
            or f"https://drive.google.com/file/d/{file_id}/view",
            "privacy": privacy,
        }

    async def upload_file(
        self,
        account_id: str,
        folder_id: Optional[str],
        path: Union[str, Path],
        file_name: Optional[str] = None,
        privacy: str = "restricted",
        mime_type: str = "video/webm",
    ) -> Dict[str, Any]:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        return await self.upload_video(
            account_id, folder_id, data, file_name or path.name, privacy, mime_type
        )

    async def _apply_privacy(self, account_id: str, file_id: str, privacy: str) -> None:
        # The upload itself succeeded; sharing can be fixed in Drive
        try:
            account = await self._resolve(account_id)
            permission = permission_for_privacy(
                privacy, account.domain, account.is_organizational
            )
            if permission is None:
                lib_logger.warning(
                    f"Privacy '{privacy}' is not available for {account_id}, file stays restricted"
                )
                return
            await self._authorized_request(
                account_id,
                "POST",
                f"{DRIVE_API_BASE}/files/{file_id}/permissions",
                params={"supportsAllDrives": "true"},
                json=permission,
            )
        except StreamSnapError as e:
            lib_logger.warning(f"Could not set '{privacy}' sharing on {file_id}: {e}")

    async def get_user_domain(self, account_id: str) -> Dict[str, Any]:
        account = await self._resolve(account_id)
        email = account.email
        if not email:
            data = await self._authorized_json(
                account_id, "GET", f"{DRIVE_API_BASE}/about", params={"fields": "user"}
            ) or {}
            email = (data.get("user") or {}).get("emailAddress") or ""
        info = domain_info_from_email(email)
        return {
            "email": info.email,
            "domain": info.domain,
            "isOrganizational": info.is_organizational,
        }

    async def get_privacy_options(self, account_id: str) -> List[Dict[str, str]]:
        options = [dict(option) for option in PRIVACY_OPTIONS]
        info = await self.get_user_domain(account_id)
        if info["isOrganizational"]:
            options.append(
                {
                    "value": "domain",
                    "label": f"Anyone at {info['domain']}",
                    "description": f"Anyone in your organization ({info['domain']}) can view",
                }
            )
        return options
