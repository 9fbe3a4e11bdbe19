# src/streamsnap_library/utils/paths.py
"""
Centralized path management for the account core.

Supports two runtime modes:
1. PyInstaller EXE -> files in the directory containing the executable
2. Script/Library  -> files in ~/.streamsnap (overridable)

Library users can override by passing ``data_dir`` to AccountServices.
"""

import sys
from pathlib import Path
from typing import Optional, Union


def get_default_root() -> Path:
    """
    Get the default root directory for data files.

    - EXE mode (PyInstaller): directory containing the executable
    - Otherwise: ~/.streamsnap
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.home() / ".streamsnap"


def _base(root: Optional[Union[Path, str]]) -> Path:
    return Path(root).expanduser() if root else get_default_root()


def get_logs_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """Get the logs directory, creating it if needed."""
    logs_dir = _base(root) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_vault_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the encrypted-file vault directory, creating it if needed.

    Only used when the OS secret store is unavailable.
    """
    vault_dir = _base(root) / "vault"
    vault_dir.mkdir(parents=True, exist_ok=True)
    return vault_dir


def get_data_file(filename: str, root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the path to a data file in the root directory.

    Args:
        filename: Name of the file (e.g., "drive_accounts.json", ".env")
        root: Optional root directory. If None, uses get_default_root().

    Returns:
        Path to the file (does not create the file)
    """
    return _base(root) / filename
