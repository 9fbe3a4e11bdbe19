# src/streamsnap_library/providers/drive_auth.py

from .google_oauth_base import GoogleOAuthBase
from ..constants import DRIVE_SCOPES


class DriveOAuth(GoogleOAuthBase):
    """Authorization flow for Google Drive uploads."""

    OAUTH_SCOPES = DRIVE_SCOPES
    PROVIDER_NAME = "Google Drive"
