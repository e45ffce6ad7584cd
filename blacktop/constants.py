"""Global constants for the Blacktop Blackout API."""

import os
from pathlib import Path

# Directory paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve(path_value: str) -> Path:
    """Resolve relative paths against the project root."""
    path = Path(path_value)
    return path if path.is_absolute() else (PROJECT_ROOT / path).resolve()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
PORT = int(os.getenv("PORT", "3000"))
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:4200")

# Plugin system
PLUGIN_DIRECTORY = _resolve(os.getenv("PLUGIN_DIRECTORY", "plugins/installed"))
BUNDLED_PLUGINS_DIR = _resolve(os.getenv("BUNDLED_PLUGINS_DIR", "plugins/bundled"))
PLUGIN_CONFIG_FILE = _resolve(os.getenv("PLUGIN_CONFIG_FILE", "plugins/config.json"))

_catalog_env = os.getenv("PLUGIN_CATALOG_FILE", "")
PLUGIN_CATALOG_FILE = _resolve(_catalog_env) if _catalog_env else None

# Trust checks are on by default in production only
PLUGIN_SANDBOX = _env_flag("PLUGIN_SANDBOX", APP_ENV == "production")
PLUGIN_TRUSTED_SOURCES = [
    s.strip()
    for s in os.getenv(
        "PLUGIN_TRUSTED_SOURCES", "github.com/NXConner,@blacktop-blackout,blacktop-"
    ).split(",")
    if s.strip()
]
PLUGIN_TRUSTED_KEYS_DIR = _resolve(os.getenv("PLUGIN_TRUSTED_KEYS_DIR", "plugins/keys"))
PLUGIN_REQUIRE_SIGNATURE = _env_flag("PLUGIN_REQUIRE_SIGNATURE", False)

# Advisory limits, reported in statistics but not enforced
PLUGIN_MAX_MEMORY_MB = int(os.getenv("PLUGIN_MAX_MEMORY_MB", "512"))
PLUGIN_MAX_EXECUTION_MS = int(os.getenv("PLUGIN_MAX_EXECUTION_MS", "30000"))

# Messaging
MESSAGING_HISTORY_LIMIT = int(os.getenv("MESSAGING_HISTORY_LIMIT", "100"))
MESSAGING_REQUEST_TIMEOUT_MS = int(os.getenv("MESSAGING_REQUEST_TIMEOUT_MS", "5000"))

# Client
BLACKTOP_API_URL = os.getenv("BLACKTOP_API_URL", "http://localhost:3000")
CLIENT_STATE_FILE = _resolve(os.getenv("BLACKTOP_CLIENT_STATE_FILE", "data/client_state.json"))
TERMINOLOGY_STORAGE_KEY = "blacktop-terminology-mode"
