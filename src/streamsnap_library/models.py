# src/streamsnap_library/models.py

import json
import time
import uuid
import random
import string
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Tuple


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# TOKEN BUNDLE
# =============================================================================


@dataclass
class TokenBundle:
    """
    Access/refresh token pair plus the absolute access-token expiry.

    Lives only in the credential vault, never in a registry document.
    ``expiry`` is epoch milliseconds; 0 means "unknown" and is never valid.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expiry: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiry": self.expiry,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        previous_refresh_token: Optional[str] = None,
        issued_at_ms: Optional[int] = None,
    ) -> "TokenBundle":
        """
        Build a bundle from an OAuth token-endpoint JSON response.

        A response without ``refresh_token`` keeps ``previous_refresh_token``.
        """
        if not isinstance(data, dict):
            raise ValueError("Token response is not a JSON object")
        access_token = data.get("access_token")
        if not access_token:
            raise ValueError("Token response did not contain an access_token")
        issued = issued_at_ms if issued_at_ms is not None else now_ms()
        expires_in = data.get("expires_in") or 0
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expiry=issued + int(float(expires_in) * 1000),
        )

    @classmethod
    def from_stored(cls, data: Dict[str, Any]) -> Tuple["TokenBundle", bool]:
        """
        Parse a stored bundle, accepting the older field spellings.

        Returns:
            (bundle, is_legacy) - is_legacy is True when the blob used any
            non-canonical key and should be rewritten once.
        """
        if not isinstance(data, dict):
            raise ValueError("Stored token bundle is not an object")

        canonical = {"accessToken", "refreshToken", "expiry"}
        is_legacy = not set(data.keys()) <= canonical

        access_token = data.get("accessToken") or data.get("access_token")
        if not access_token:
            raise ValueError("Stored token bundle has no access token")
        refresh_token = data.get("refreshToken") or data.get("refresh_token")

        expiry = data.get("expiry")
        if expiry is None:
            expiry = data.get("tokenExpiry", data.get("expiry_date"))
        try:
            expiry_ms = int(float(expiry)) if expiry is not None else 0
        except (TypeError, ValueError):
            expiry_ms = 0
            is_legacy = True

        return cls(access_token, refresh_token, expiry_ms), is_legacy


# =============================================================================
# ACCOUNT RECORDS
# =============================================================================

# Token fields older documents stored inline on each record. They belong in
# the vault only, so patches may never set them.
INLINE_TOKEN_KEYS = frozenset(
    {
        "accessToken",
        "refreshToken",
        "tokenExpiry",
        "expiry",
        "access_token",
        "refresh_token",
        "expiry_date",
    }
)


class AccountRecord:
    """
    Mixin giving account dataclasses their camelCase JSON mapping.

    Subclasses declare ``JSON_FIELDS`` (attribute -> document key). Keys the
    record does not know are kept in ``extra`` so arbitrary preference
    patches survive a load/save cycle.
    """

    JSON_FIELDS: ClassVar[Dict[str, str]] = {}
    PROTECTED: ClassVar[FrozenSet[str]] = frozenset({"id", "vault_key", "created_at"})

    @classmethod
    def _attr_for_key(cls, key: str) -> Optional[str]:
        if key in cls.JSON_FIELDS:
            return key
        for attr, json_key in cls.JSON_FIELDS.items():
            if json_key == key:
                return attr
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            attr = cls._attr_for_key(key)
            if attr is None:
                extra[key] = value
            else:
                kwargs[attr] = value
        record = cls(**kwargs)
        record.extra = extra
        return record

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        for attr, json_key in self.JSON_FIELDS.items():
            out[json_key] = getattr(self, attr)
        return out

    def apply_patch(self, changes: Dict[str, Any]) -> Tuple[str, ...]:
        """
        Merge a partial update into the record.

        Accepts document keys or attribute names. Protected fields and raw
        token fields are skipped and reported back so the caller can log them.
        """
        skipped = []
        for key, value in changes.items():
            if key in INLINE_TOKEN_KEYS:
                skipped.append(key)
                continue
            attr = self._attr_for_key(key)
            if attr is None:
                self.extra[key] = value
            elif attr in self.PROTECTED:
                skipped.append(key)
            else:
                setattr(self, attr, value)
        return tuple(skipped)

    def identity_key(self) -> Optional[str]:
        """Value that must be unique per provider, normalized for comparison."""
        return self.identity


@dataclass
class DriveAccount(AccountRecord):
    JSON_FIELDS: ClassVar[Dict[str, str]] = {
        "id": "id",
        "email": "email",
        "domain": "domain",
        "is_organizational": "isOrganizational",
        "display_name": "displayName",
        "avatar_url": "avatarUrl",
        "vault_key": "vaultKey",
        "is_active": "isActive",
        "default_folder_id": "defaultFolderId",
        "default_folder_name": "defaultFolderName",
        "needs_reauth": "needsReauth",
        "created_at": "createdAt",
        "updated_at": "updatedAt",
    }

    id: str
    vault_key: str
    email: Optional[str] = None
    domain: Optional[str] = None
    is_organizational: bool = False
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool = True
    default_folder_id: Optional[str] = None
    default_folder_name: Optional[str] = None
    needs_reauth: bool = False
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def identity(self) -> Optional[str]:
        return self.email

    def identity_key(self) -> Optional[str]:
        # Google treats emails case-insensitively
        return self.email.lower() if self.email else None

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def placeholder_name(account_id: str) -> str:
        return f"Account {account_id[:6]}"

    def resolved_display_name(self) -> Optional[str]:
        """Email local part replaces an empty or placeholder display name."""
        if self.email and (
            not self.display_name or self.display_name.startswith("Account ")
        ):
            return self.email.split("@")[0]
        return self.display_name


@dataclass
class YouTubeAccount(AccountRecord):
    JSON_FIELDS: ClassVar[Dict[str, str]] = {
        "id": "id",
        "email": "email",
        "channel_id": "channelId",
        "channel_name": "channelName",
        "thumbnail": "thumbnail",
        "vault_key": "vaultKey",
        "active": "active",
        "default_privacy": "defaultPrivacy",
        "selected_playlist_id": "selectedPlaylistId",
        "needs_reauth": "needsReauth",
        "created_at": "createdAt",
        "updated_at": "updatedAt",
    }

    id: str
    vault_key: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    email: Optional[str] = None
    thumbnail: Optional[str] = None
    active: bool = True
    default_privacy: str = "private"
    selected_playlist_id: Optional[str] = None
    needs_reauth: bool = False
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def identity(self) -> Optional[str]:
        return self.channel_id

    @property
    def is_active(self) -> bool:
        # Older documents omit the flag; only an explicit False deactivates.
        return self.active is not False

    @staticmethod
    def new_id() -> str:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"yt_{now_ms()}_{suffix}"


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class AuthErrorOutcome:
    """
    Result of reactive recovery after an API call saw an auth failure.

    ``should_remove`` is advice for the UI; the registry never deletes the
    account on its own.
    """

    success: bool
    should_remove: bool
    refreshed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "shouldRemove": self.should_remove,
            "refreshed": self.refreshed,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class DomainInfo:
    email: str
    domain: str
    is_organizational: bool


@dataclass
class ChannelInfo:
    channel_id: str
    channel_name: str
    thumbnail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "channelName": self.channel_name,
            "thumbnail": self.thumbnail,
        }
