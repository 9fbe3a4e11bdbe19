# src/streamsnap_library/utils/resilient_io.py
"""
Resilient I/O utilities for the account documents and secret files.

Provides three patterns:
1. ResilientStateWriter - For registry documents that are authoritative in
   memory and retried on disk failure (next write or explicit flush()).
2. safe_write_json / safe_read_json - For small standalone files (fallback
   token copy) where a failure is logged and reported, never raised.
3. atomic_write_text - The tempfile + move primitive both of the above use.
"""

import json
import os
import shutil
import tempfile
import threading
import time
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union


def atomic_write_text(
    path: Union[str, Path], content: str, secure_permissions: bool = False
) -> None:
    """
    Write text atomically: temp file in the same directory, then move.

    Raises OSError on failure; the temp file is always cleaned up.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_fd = None
    tmp_path = None
    try:
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=path.parent, prefix=".tmp_", suffix=path.suffix or ".tmp", text=True
        )
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            f.write(content)
            tmp_fd = None  # fdopen closes the fd

        # Set secure permissions before the move so the final file is never
        # world-readable, even briefly
        if secure_permissions:
            try:
                os.chmod(tmp_path, 0o600)
            except (OSError, AttributeError):
                # Windows may not support chmod, ignore
                pass

        shutil.move(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_fd is not None:
            try:
                os.close(tmp_fd)
            except OSError:
                pass
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError:
                pass


# =============================================================================
# RESILIENT STATE WRITER
# =============================================================================


class ResilientStateWriter:
    """
    Manages resilient writes for a registry document.

    Design:
    - Caller hands off data via write() - always succeeds (memory update)
    - Attempts disk write immediately
    - If disk fails, the next write() after retry_interval tries again
    - flush() forces a final attempt (called on shutdown)
    - On recovery, writes full current state (not just new data)

    Usage:
        writer = ResilientStateWriter("drive_accounts.json", logger)
        writer.write({"accounts": []})  # Always succeeds
        # ... on shutdown ...
        writer.flush()
    """

    def __init__(
        self,
        path: Union[str, Path],
        logger: logging.Logger,
        retry_interval: float = 30.0,
        serializer: Optional[Callable[[Any], str]] = None,
        secure_permissions: bool = False,
    ):
        self.path = Path(path)
        self.logger = logger
        self.retry_interval = retry_interval
        self.secure_permissions = secure_permissions
        self._serializer = serializer or (lambda d: json.dumps(d, indent=2))

        self._current_state: Optional[Any] = None
        self._disk_healthy = True
        self._last_attempt: float = 0
        self._last_success: Optional[float] = None
        self._failure_count = 0
        self._lock = threading.Lock()

    def write(self, data: Any) -> bool:
        """
        Update state and attempt disk write.

        Returns:
            True if disk write succeeded, False if failed (data still in memory)
        """
        with self._lock:
            self._current_state = data

            # If disk is unhealthy, only retry after retry_interval has passed
            if not self._disk_healthy:
                now = time.time()
                if now - self._last_attempt < self.retry_interval:
                    return False

            return self._try_disk_write()

    def flush(self) -> bool:
        """Write the current state now, ignoring the retry interval."""
        with self._lock:
            if self._disk_healthy:
                return True
            return self._try_disk_write()

    def _try_disk_write(self) -> bool:
        if self._current_state is None:
            return True

        self._last_attempt = time.time()

        try:
            content = self._serializer(self._current_state)
            atomic_write_text(self.path, content, self.secure_permissions)

            if not self._disk_healthy:
                self.logger.info(
                    f"Disk writes to {self.path.name} recovered after "
                    f"{self._failure_count} failure(s)"
                )
            self._disk_healthy = True
            self._last_success = time.time()
            self._failure_count = 0
            return True

        except (OSError, TypeError, ValueError) as e:
            self._disk_healthy = False
            self._failure_count += 1

            # Log warning (rate-limited to avoid flooding)
            if self._failure_count == 1 or self._failure_count % 10 == 0:
                self.logger.warning(
                    f"Failed to write {self.path.name}: {e}. "
                    f"Data retained in memory (failure #{self._failure_count})."
                )
            return False

    @property
    def is_healthy(self) -> bool:
        """Check if disk writes are currently working."""
        return self._disk_healthy

    @property
    def current_state(self) -> Optional[Any]:
        return self._current_state

    def get_health_info(self) -> Dict[str, Any]:
        return {
            "healthy": self._disk_healthy,
            "failure_count": self._failure_count,
            "last_success": self._last_success,
            "last_attempt": self._last_attempt,
            "path": str(self.path),
        }


def safe_write_json(
    path: Union[str, Path],
    data: Any,
    logger: logging.Logger,
    indent: int = 2,
    secure_permissions: bool = False,
) -> bool:
    """
    Write JSON data to file atomically with error handling.

    Returns:
        True on success, False on failure (never raises)
    """
    path = Path(path)
    try:
        atomic_write_text(
            path, json.dumps(data, indent=indent), secure_permissions=secure_permissions
        )
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write JSON to {path}: {e}")
        return False


def safe_read_json(path: Union[str, Path], logger: logging.Logger) -> Optional[Any]:
    """
    Read a JSON file, returning None when it is missing or unreadable.

    A corrupt file is logged at WARNING; a missing one is silent.
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read JSON from {path}: {e}")
        return None


def safe_unlink(path: Union[str, Path], logger: logging.Logger) -> bool:
    """
    Delete a file if it exists.

    Returns:
        True if the file is gone afterwards, False on failure (never raises)
    """
    try:
        Path(path).unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.warning(f"Failed to delete {path}: {e}")
        return False
