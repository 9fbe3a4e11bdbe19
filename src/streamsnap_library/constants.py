# src/streamsnap_library/constants.py

"""
Fixed Google endpoints, scopes and storage names shared by the account core.

Only the OAuth client id/secret vary per installation; everything here is a
well-known public value.
"""

from typing import Dict, List

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_USER_INFO_URI = "https://www.googleapis.com/oauth2/v1/userinfo"

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URI = "https://www.googleapis.com/upload/drive/v3/files"
DRIVE_FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DRIVE_ROOT_FOLDER = {
    "id": "root",
    "name": "My Drive (Root)",
    "webViewLink": "https://drive.google.com/drive/my-drive",
}

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
YOUTUBE_UPLOAD_URI = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_CREATE_CHANNEL_URL = "https://www.youtube.com/create_channel"
YOUTUBE_UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024
YOUTUBE_DEFAULT_CATEGORY_ID = "22"
YOUTUBE_DEFAULT_DESCRIPTION = "Uploaded with StreamSnap"

DRIVE_SCOPES: List[str] = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]

YOUTUBE_SCOPES: List[str] = [
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Secret store naming. The bare account name is the pre-multi-account key.
KEYRING_SERVICE = "StreamSnap"
DRIVE_VAULT_PREFIX = "drive_tokens"
YOUTUBE_VAULT_PREFIX = "youtube_tokens"
LEGACY_DRIVE_VAULT_KEY = DRIVE_VAULT_PREFIX

DRIVE_ACCOUNTS_FILENAME = "drive_accounts.json"
YOUTUBE_ACCOUNTS_FILENAME = "youtube-accounts.json"
DRIVE_FALLBACK_TOKEN_FILENAME = "drive_tokens.json"

OAUTH_CALLBACK_PATH = "/oauth2callback"
OAUTH_DEFAULT_TIMEOUT_SECONDS = 60.0

# Safety margins (milliseconds) for token validity checks
PROACTIVE_REFRESH_MARGIN_MS = 5 * 60 * 1000
REACTIVE_REFRESH_MARGIN_MS = 60 * 1000

PERSONAL_EMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})

PRIVACY_OPTIONS: List[Dict[str, str]] = [
    {
        "value": "restricted",
        "label": "Private (only me)",
        "description": "Only you can access this video",
    },
    {
        "value": "anyoneWithLink",
        "label": "Anyone with the link",
        "description": "Anyone with the link can view",
    },
    {
        "value": "anyone",
        "label": "Public",
        "description": "Anyone can find and view this video",
    },
]

YOUTUBE_PRIVACY_VALUES = ("private", "unlisted", "public")
