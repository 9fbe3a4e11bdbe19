# src/streamsnap_library/clients/__init__.py

from .base_client import AuthorizedClientBase
from .drive_client import DriveClient, fetch_drive_user, permission_for_privacy
from .youtube_client import YouTubeClient, fetch_channel

__all__ = [
    "AuthorizedClientBase",
    "DriveClient",
    "fetch_drive_user",
    "permission_for_privacy",
    "YouTubeClient",
    "fetch_channel",
]
