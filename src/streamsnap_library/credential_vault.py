# src/streamsnap_library/credential_vault.py

import asyncio
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Optional, Union

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from .constants import KEYRING_SERVICE
from .error_handler import VaultUnavailable, mask_secret
from .models import TokenBundle
from .utils.resilient_io import (
    atomic_write_text,
    safe_read_json,
    safe_unlink,
    safe_write_json,
)

lib_logger = logging.getLogger("streamsnap_library")

FERNET_KEY_FILENAME = ".vault_key"


class CredentialVault:
    """
    Stores one serialized TokenBundle per opaque key.

    The OS secret store (via ``keyring``) is the primary backing. When no
    usable keyring backend exists, or a call into it fails, entries go to a
    per-key file under ``fallback_dir`` encrypted with Fernet. None of the
    public methods raise: failures are logged and reported via the return
    value, so a broken secret store never takes an API call down with it.

    Bundles written in an older shape are normalized on first read and
    rewritten canonically.
    """

    def __init__(
        self,
        fallback_dir: Union[str, Path],
        service: str = KEYRING_SERVICE,
        encryption_key: Optional[str] = None,
        backend: Optional[KeyringBackend] = None,
    ):
        self.service = service
        self.fallback_dir = Path(fallback_dir)
        self._encryption_key = encryption_key
        self._backend = backend
        self._fernet: Optional[Fernet] = None
        self._fernet_lock = threading.Lock()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def put(self, key: str, bundle: TokenBundle) -> bool:
        return await asyncio.to_thread(self._put_sync, key, bundle.to_json())

    async def get(self, key: str) -> Optional[TokenBundle]:
        raw = await asyncio.to_thread(self._get_raw_sync, key)
        if raw is None:
            return None

        try:
            data = json.loads(raw)
            bundle, is_legacy = TokenBundle.from_stored(data)
        except (json.JSONDecodeError, ValueError) as e:
            lib_logger.warning(
                f"Vault entry {mask_secret(key)} is corrupt, ignoring it: {e}"
            )
            return None

        if is_legacy:
            lib_logger.info(
                f"Migrating vault entry {mask_secret(key)} to the canonical token shape"
            )
            await self.put(key, bundle)

        return bundle

    async def delete(self, key: str) -> bool:
        """Idempotent: deleting a missing entry counts as success."""
        return await asyncio.to_thread(self._delete_sync, key)

    # =========================================================================
    # KEYRING BACKING
    # =========================================================================

    def _keyring(self) -> KeyringBackend:
        return self._backend or keyring.get_keyring()

    def _put_sync(self, key: str, payload: str) -> bool:
        try:
            self._keyring().set_password(self.service, key, payload)
            # Drop any copy left by an earlier keyring outage
            self._file_path(key).unlink(missing_ok=True)
            return True
        except KeyringError as e:
            lib_logger.debug(
                f"Keyring unavailable for {mask_secret(key)} ({e}), using encrypted file"
            )
        except OSError as e:
            lib_logger.debug(f"Could not remove stale vault file: {e}")
            return True

        try:
            self._write_file(key, payload)
            return True
        except (OSError, ValueError) as e:
            err = VaultUnavailable(f"Could not store {mask_secret(key)}: {e}")
            lib_logger.error(f"{err.code}: {err.message}")
            return False

    def _get_raw_sync(self, key: str) -> Optional[str]:
        try:
            raw = self._keyring().get_password(self.service, key)
            if raw is not None:
                return raw
        except KeyringError as e:
            lib_logger.debug(f"Keyring read failed for {mask_secret(key)}: {e}")

        try:
            return self._read_file(key)
        except (OSError, ValueError) as e:
            err = VaultUnavailable(f"Could not read {mask_secret(key)}: {e}")
            lib_logger.error(f"{err.code}: {err.message}")
            return None

    def _delete_sync(self, key: str) -> bool:
        ok = True
        try:
            self._keyring().delete_password(self.service, key)
        except PasswordDeleteError:
            # Already absent
            pass
        except KeyringError as e:
            lib_logger.warning(f"Keyring delete failed for {mask_secret(key)}: {e}")
            ok = False

        if not safe_unlink(self._file_path(key), lib_logger):
            ok = False
        return ok

    # =========================================================================
    # ENCRYPTED FILE BACKING
    # =========================================================================

    def _file_path(self, key: str) -> Path:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.fallback_dir / f"{safe_name}.tok"

    def _get_fernet(self) -> Fernet:
        # Worker threads from asyncio.to_thread race here on first use
        with self._fernet_lock:
            if self._fernet is None:
                if self._encryption_key:
                    # Fernet expects the key as base64-encoded bytes
                    self._fernet = Fernet(self._encryption_key.encode())
                else:
                    self._fernet = Fernet(self._load_or_create_key())
            return self._fernet

    def _load_or_create_key(self) -> bytes:
        key_path = self.fallback_dir / FERNET_KEY_FILENAME
        if key_path.exists():
            return key_path.read_text(encoding="utf-8").strip().encode()

        self.fallback_dir.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        try:
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Another process created it first; every writer must share its key
            return key_path.read_text(encoding="utf-8").strip().encode()
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key.decode())
        lib_logger.info(f"Generated a new vault encryption key at {key_path}")
        return key

    def _write_file(self, key: str, payload: str) -> None:
        token = self._get_fernet().encrypt(payload.encode("utf-8"))
        atomic_write_text(
            self._file_path(key), token.decode("ascii"), secure_permissions=True
        )

    def _read_file(self, key: str) -> Optional[str]:
        path = self._file_path(key)
        if not path.exists():
            return None
        token = path.read_text(encoding="utf-8").strip()
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken:
            lib_logger.warning(
                f"Vault file for {mask_secret(key)} could not be decrypted, ignoring it"
            )
            return None


class FallbackTokenFile:
    """
    Plain 0600 JSON copy of the primary Drive account's bundle.

    Written only when the vault refused a put for the primary account, read
    only when the vault has nothing for it.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def write(self, account_id: str, bundle: TokenBundle) -> bool:
        data = {"accountId": account_id, **bundle.to_dict()}
        return await asyncio.to_thread(
            safe_write_json, self.path, data, lib_logger, 2, True
        )

    async def read(self, account_id: str) -> Optional[TokenBundle]:
        data = await asyncio.to_thread(safe_read_json, self.path, lib_logger)
        if not isinstance(data, dict):
            return None
        stored_for = data.pop("accountId", None)
        if stored_for is not None and stored_for != account_id:
            return None
        try:
            bundle, _ = TokenBundle.from_stored(data)
        except ValueError:
            return None
        return bundle

    async def delete(self) -> bool:
        return await asyncio.to_thread(safe_unlink, self.path, lib_logger)
