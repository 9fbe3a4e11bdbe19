# src/streamsnap_library/providers/__init__.py

from .google_oauth_base import GoogleOAuthBase, generate_pkce_pair
from .drive_auth import DriveOAuth
from .youtube_auth import YouTubeOAuth

__all__ = ["GoogleOAuthBase", "generate_pkce_pair", "DriveOAuth", "YouTubeOAuth"]
