# src/streamsnap_library/providers/youtube_auth.py

from .google_oauth_base import GoogleOAuthBase
from ..constants import YOUTUBE_SCOPES


class YouTubeOAuth(GoogleOAuthBase):
    """Authorization flow for YouTube uploads and playlist access."""

    OAUTH_SCOPES = YOUTUBE_SCOPES
    PROVIDER_NAME = "YouTube"
