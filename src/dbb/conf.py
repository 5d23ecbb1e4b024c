"""Client settings and config persistence.

Config is stored at ~/.config/dbb/config.json (XDG-compliant).

Usage:
    from dbb.conf import settings

    settings.backend            # 'hidapi' or 'pyusb'
    settings.read_timeout_ms    # per-frame read timeout, 0 = wait forever

    # Low-level config access
    from dbb.conf import load_config, save_config
"""
from __future__ import annotations

import json
import logging
import os

from .constants import DEFAULT_READ_TIMEOUT_MS

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'dbb')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')

SUPPORTED_BACKENDS = ('hidapi', 'pyusb')
DEFAULT_BACKEND = 'hidapi'


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Read timeout
# =========================================================================

def get_saved_read_timeout() -> int:
    """Per-frame read timeout in ms; 0 disables it. Defaults to 60 s."""
    value = load_config().get('read_timeout_ms', DEFAULT_READ_TIMEOUT_MS)
    try:
        value = int(value)
    except (TypeError, ValueError):
        log.warning("Invalid read_timeout_ms in config: %r", value)
        return DEFAULT_READ_TIMEOUT_MS
    return max(value, 0)


def save_read_timeout(timeout_ms: int):
    config = load_config()
    config['read_timeout_ms'] = int(timeout_ms)
    save_config(config)


# =========================================================================
# HID backend
# =========================================================================

def get_saved_backend() -> str:
    backend = load_config().get('backend', DEFAULT_BACKEND)
    if backend not in SUPPORTED_BACKENDS:
        log.warning("Unknown backend in config: %r, using %s", backend, DEFAULT_BACKEND)
        return DEFAULT_BACKEND
    return backend


def save_backend(backend: str):
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(f"Unknown HID backend: {backend}")
    config = load_config()
    config['backend'] = backend
    save_config(config)


# =========================================================================
# Settings singleton
# =========================================================================

class Settings:
    """Application-wide settings, loaded once from config."""

    def __init__(self) -> None:
        self._read_timeout_ms = get_saved_read_timeout()
        self._backend = get_saved_backend()

    @property
    def read_timeout_ms(self) -> int:
        return self._read_timeout_ms

    @property
    def backend(self) -> str:
        return self._backend

    def set_read_timeout(self, timeout_ms: int, persist: bool = True) -> None:
        if timeout_ms < 0:
            raise ValueError("timeout must be >= 0")
        self._read_timeout_ms = timeout_ms
        if persist:
            save_read_timeout(timeout_ms)

    def set_backend(self, backend: str, persist: bool = True) -> None:
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unknown HID backend: {backend}")
        log.info("Settings: backend %s → %s", self._backend, backend)
        self._backend = backend
        if persist:
            save_backend(backend)


# Module-level singleton -- import and use directly
settings = Settings()
