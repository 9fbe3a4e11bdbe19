from typing import TYPE_CHECKING

from .error_handler import StreamSnapError
from .models import TokenBundle, DriveAccount, YouTubeAccount, AuthErrorOutcome

# For type checkers, import the heavier pieces statically.
# At runtime, they're lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .credential_vault import CredentialVault
    from .token_refresher import TokenRefresher
    from .accounts import DriveAccountRegistry, YouTubeAccountRegistry
    from .clients import DriveClient, YouTubeClient

__all__ = [
    "StreamSnapError",
    "TokenBundle",
    "DriveAccount",
    "YouTubeAccount",
    "AuthErrorOutcome",
    "CredentialVault",
    "TokenRefresher",
    "DriveAccountRegistry",
    "YouTubeAccountRegistry",
    "DriveClient",
    "YouTubeClient",
]


def __getattr__(name):
    """Lazy-load the vault, registries and clients to keep `import` cheap."""
    if name == "CredentialVault":
        from .credential_vault import CredentialVault

        return CredentialVault
    if name == "TokenRefresher":
        from .token_refresher import TokenRefresher

        return TokenRefresher
    if name in ("DriveAccountRegistry", "YouTubeAccountRegistry"):
        from . import accounts

        return getattr(accounts, name)
    if name in ("DriveClient", "YouTubeClient"):
        from . import clients

        return getattr(clients, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
