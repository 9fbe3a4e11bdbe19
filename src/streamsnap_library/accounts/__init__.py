# src/streamsnap_library/accounts/__init__.py

from .registry_base import AccountRegistryBase, spawn_logged
from .drive_registry import DriveAccountRegistry
from .youtube_registry import YouTubeAccountRegistry

__all__ = [
    "AccountRegistryBase",
    "spawn_logged",
    "DriveAccountRegistry",
    "YouTubeAccountRegistry",
]
