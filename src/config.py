"""
Configuration - Runtime settings for BrewFi services.

Settings are read from ``settings.json`` in the app data directory and then
overridden by environment variables, so deployments can keep secrets
(webhook token) out of the settings file.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

from networks import DEFAULT_NETWORK, DEFAULT_TRANSFER_MAX_FEE
from utils import get_settings_path

logger = logging.getLogger(__name__)


SESSION_TTL_MS = 15 * 60 * 1000  # Fixed QR payment session lifetime
POLL_INTERVAL_SECONDS = 2.0
CONFIRMATION_TIMEOUT_SECONDS = 30.0

# Environment variable -> AppConfig field
ENV_OVERRIDES = {
    "BREWFI_CHAIN_ID": "chain_id",
    "BREWFI_RPC_URL": "rpc_url",
    "BREWFI_WEBHOOK_URL": "webhook_url",
    "BREWFI_WEBHOOK_TOKEN": "webhook_token",
    "BREWFI_LOG_LEVEL": "log_level",
    "BREWFI_LOG_RETENTION_DAYS": "log_retention_days",
    "BREWFI_CONFIRMATION_TIMEOUT": "confirmation_timeout",
    "BREWFI_DATA_DIR": "data_dir",
}


@dataclass
class AppConfig:
    """Resolved runtime configuration."""
    chain_id: int = DEFAULT_NETWORK
    rpc_url: Optional[str] = None            # None = network default
    webhook_url: Optional[str] = None        # Settlement endpoint (qr-payment-webhook)
    webhook_token: Optional[str] = None      # Bearer token for the endpoint
    session_ttl_ms: int = SESSION_TTL_MS
    poll_interval: float = POLL_INTERVAL_SECONDS
    confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS
    transfer_max_fee: int = DEFAULT_TRANSFER_MAX_FEE  # wei
    webhook_max_attempts: int = 3
    log_level: str = "INFO"
    log_retention_days: int = 0              # 0 = console only
    data_dir: Optional[str] = None           # None = utils.get_app_dir()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        """Build from a settings dict, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.debug(f"Ignoring unknown setting: {key}")
                continue
            values[key] = _coerce(known[key].type, value, key)
        return cls(**values)


def _coerce(type_hint, value, key: str):
    """Coerce a settings/env value to the field's declared type."""
    if value is None:
        return None
    hint = type_hint if isinstance(type_hint, str) else getattr(type_hint, "__name__", str(type_hint))
    try:
        if "int" in hint:
            return int(value)
        if "float" in hint:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {key}: {value!r}") from e
    return value


def load_config(settings_path: Optional[Path] = None, environ: Optional[dict] = None) -> AppConfig:
    """
    Load configuration from settings file and environment.

    Args:
        settings_path: Path to settings JSON (default: app data settings.json)
        environ: Environment mapping (default: os.environ)
    """
    settings_path = settings_path or get_settings_path()
    environ = os.environ if environ is None else environ

    data = {}
    if settings_path.exists():
        try:
            with open(settings_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load settings: {e}")

    for env_name, field_name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            data[field_name] = environ[env_name]

    return AppConfig.from_dict(data)
