"""
Shared utility functions for BrewFi.

Contains path helpers, time helpers and common utilities used across packages.
"""

import os
import sys
import time
from datetime import datetime, timezone, timedelta
from pathlib import Path


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def get_app_dir() -> Path:
    """Get the application data directory."""
    override = os.environ.get("BREWFI_DATA_DIR")
    if override:
        app_dir = Path(override)
    elif getattr(sys, 'frozen', False):
        # Running as compiled
        app_dir = Path(sys.executable).parent / "data"
    else:
        # Running as script
        app_dir = Path(__file__).parent.parent / "data"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_wallet_dir() -> Path:
    """Get the seed vault storage directory."""
    return get_app_dir() / "wallets"


def get_sessions_dir() -> Path:
    """Get the payment session storage directory."""
    return get_app_dir() / "sessions"


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def set_secure_permissions(filepath: Path) -> None:
    """Set file to mode 0600 on Unix. No-op elsewhere."""
    if os.name == 'posix':
        try:
            os.chmod(filepath, 0o600)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


# ============================================
# Time
# ============================================

def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def ms_to_iso(value: int) -> str:
    """Epoch milliseconds -> ISO-8601 UTC string."""
    return (EPOCH + timedelta(milliseconds=value)).isoformat()


def iso_to_ms(value: str) -> int:
    """ISO-8601 string -> epoch milliseconds (naive values are treated as UTC)."""
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
