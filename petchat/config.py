"""
Configuration for petchat.

Values come from the process environment, falling back to
~/.petchat/petchat.env. They are read once at import; call
``importlib.reload`` on this module to pick up changes.
"""

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict

logger = logging.getLogger("petchat")

PETCHAT_DIR = Path.home() / ".petchat"
ENV_FILE = PETCHAT_DIR / "petchat.env"


def parse_env_file(file_path: Path) -> Dict[str, str]:
    """Parse an environment file and return a dictionary of key-value pairs."""
    config = {}
    if not file_path.exists():
        return config

    with open(file_path, 'r') as f:
        for line in f:
            line = line.strip()
            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue
            match = re.match(r'^([A-Z][A-Z0-9_]*)=(.*)$', line)
            if match:
                key, value = match.groups()
                value = value.strip('"').strip("'")
                config[key] = value

    return config


_file_config = parse_env_file(ENV_FILE)


def _get(name: str, default: str) -> str:
    """Environment first, then petchat.env, then the default."""
    value = os.environ.get(name)
    if value is None:
        value = _file_config.get(name, default)
    return value.strip()


def env_bool(name: str, default: bool = False) -> bool:
    return _get(name, "true" if default else "false").lower() in ("true", "1", "yes", "on")


def env_int(name: str, default: int) -> int:
    raw = _get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def env_float(name: str, default: float) -> float:
    raw = _get(name, str(default))
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {raw!r}, using {default}")
        return default


# Server
SERVER_URL = _get("PETCHAT_SERVER_URL", "https://pet.kervanbey.com")
TRANSPORTS = [t.strip() for t in _get("PETCHAT_TRANSPORTS", "websocket,polling").split(",") if t.strip()]
CONNECT_TIMEOUT = env_float("PETCHAT_CONNECT_TIMEOUT", 20.0)

# Reconnection and liveness
RECONNECT_MAX_ATTEMPTS = env_int("PETCHAT_RECONNECT_MAX_ATTEMPTS", 5)
RECONNECT_BASE_DELAY_MS = env_int("PETCHAT_RECONNECT_BASE_DELAY_MS", 1000)
LIVENESS_INTERVAL = env_float("PETCHAT_LIVENESS_INTERVAL", 30.0)

# Credentials
TOKEN = _get("PETCHAT_TOKEN", "") or None
CREDENTIAL_STORE = _get("PETCHAT_CREDENTIAL_STORE", "plaintext").lower()

DEBUG = env_bool("PETCHAT_DEBUG", False)


def setup_logging() -> logging.Logger:
    """Attach a stderr handler to the petchat logger.

    Safe to call more than once; only the first call adds a handler.
    """
    level = logging.DEBUG if DEBUG else logging.INFO
    log = logging.getLogger("petchat")
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        log.addHandler(handler)
    log.setLevel(level)
    return log
