# src/streamsnap_app/config.py

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from streamsnap_library.constants import KEYRING_SERVICE, OAUTH_DEFAULT_TIMEOUT_SECONDS
from streamsnap_library.utils.paths import get_default_root

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 600


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class Settings:
    client_id: str
    client_secret: Optional[str]
    data_dir: Path
    oauth_timeout: float = OAUTH_DEFAULT_TIMEOUT_SECONDS
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    vault_encryption_key: Optional[str] = None
    keyring_service: str = KEYRING_SERVICE
    log_level: str = "INFO"


def _read_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}'. Falling back to {default:g}.")
        return default
    if value <= 0:
        logger.warning(f"{name} must be positive, got '{raw}'. Falling back to {default:g}.")
        return default
    return value


def load_env_files(data_dir: Path) -> None:
    """Load .env from the data dir, then the working directory, without overriding."""
    for env_file in (data_dir / ".env", Path.cwd() / ".env"):
        if env_file.is_file():
            load_dotenv(env_file, override=False)
            logger.debug(f"Loaded environment from {env_file}")


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment (and .env files).

    Raises:
        ConfigValidationError: GOOGLE_CLIENT_ID is missing
    """
    env_dir = os.getenv("STREAMSNAP_DATA_DIR")
    base = Path(data_dir or env_dir or get_default_root()).expanduser()
    load_env_files(base)

    client_id = os.getenv("GOOGLE_CLIENT_ID", "").strip()
    if not client_id:
        raise ConfigValidationError(
            "GOOGLE_CLIENT_ID is not set. Add it to your environment or a .env file."
        )

    return Settings(
        client_id=client_id,
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
        data_dir=base,
        oauth_timeout=_read_number("OAUTH_TIMEOUT", OAUTH_DEFAULT_TIMEOUT_SECONDS),
        refresh_interval=_read_number("OAUTH_REFRESH_INTERVAL", DEFAULT_REFRESH_INTERVAL),
        vault_encryption_key=os.getenv("VAULT_ENCRYPTION_KEY") or None,
        keyring_service=os.getenv("KEYRING_SERVICE") or KEYRING_SERVICE,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
