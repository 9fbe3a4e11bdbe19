# src/streamsnap_library/utils/__init__.py

from .headless_detection import is_headless_environment
from .paths import (
    get_default_root,
    get_logs_dir,
    get_vault_dir,
    get_data_file,
)
from .resilient_io import (
    ResilientStateWriter,
    atomic_write_text,
    safe_write_json,
    safe_read_json,
    safe_unlink,
)

__all__ = [
    "is_headless_environment",
    "get_default_root",
    "get_logs_dir",
    "get_vault_dir",
    "get_data_file",
    "ResilientStateWriter",
    "atomic_write_text",
    "safe_write_json",
    "safe_read_json",
    "safe_unlink",
]
