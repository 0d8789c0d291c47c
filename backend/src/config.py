# config.py - Environment-based configuration for the scrape service
# All values are loaded from environment variables (.env file for local dev)

import os
import re
from typing import List, Any, Callable
from dotenv import load_dotenv
from .logging_setup import logger

# Dictionary to track config values and their sources
CONFIG_SOURCES = {}

# Load environment variables (for local dev only)
load_dotenv()


def get_config_value(key: str, default: Any, cast_func: Callable = str) -> Any:
    value = os.getenv(key)
    if value is not None:
        try:
            casted_value = cast_func(value)
        except Exception:
            casted_value = default
        CONFIG_SOURCES[key] = {"value": casted_value, "source": "env"}
        return casted_value
    else:
        CONFIG_SOURCES[key] = {"value": default, "source": "default"}
        return default


def get_env_bool(key: str, default: bool = False) -> bool:
    def cast_bool(val):
        return val.strip().lower() in ('true', '1', 'yes', 'on')
    return get_config_value(key, default, cast_bool)

def get_env_int(key: str, default: int) -> int:
    def cast_int(val):
        try:
            return int(val)
        except ValueError:
            logger.warning(f"Invalid integer value for {key}, using default: {default}")
            return default
    return get_config_value(key, default, cast_int)

def get_env_list(key: str, default: List[str] = None, separator: str = ',') -> List[str]:
    if default is None:
        default = []
    def cast_list(val):
        return [item.strip() for item in val.split(separator) if item.strip()]
    return get_config_value(key, default, cast_list)

_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024 ** 2, "gb": 1024 ** 3}

def parse_size(val: str) -> int:
    """Parse "1mb", "512kb" or a plain byte count into bytes."""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*", str(val).lower())
    if not match:
        raise ValueError(f"Invalid size: {val}")
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2) or "b"])

def get_env_size(key: str, default: str) -> int:
    return get_config_value(key, parse_size(default), parse_size)

# =============================================================================
# SERVER
# =============================================================================

APP_ENV = get_config_value("APP_ENV", "development")
PORT = get_env_int("PORT", 3000)

# =============================================================================
# BROWSER AND SCRAPING
# =============================================================================

HEADLESS = get_env_bool("HEADLESS", True)
SCRAPE_NAV_TIMEOUT_MS = get_env_int("SCRAPE_NAV_TIMEOUT_MS", 45000)
SCRAPE_MAX_CONCURRENCY = get_env_int("SCRAPE_MAX_CONCURRENCY", 5)
SCRAPE_DEFAULT_CONCURRENCY = get_env_int("SCRAPE_DEFAULT_CONCURRENCY", 3)
ALLOW_MARKDOWN = get_env_bool("ALLOW_MARKDOWN", True)
USER_AGENT = get_config_value("USER_AGENT", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")

# =============================================================================
# SECURITY: API KEYS, RATE LIMITING, CORS
# =============================================================================

# API_KEYS (comma-separated) wins over a single API_KEY; empty disables auth
API_KEYS = get_env_list("API_KEYS", [])
if not API_KEYS and os.getenv("API_KEY"):
    API_KEYS = [os.getenv("API_KEY").strip()]

RATE_LIMIT_WINDOW_MS = get_env_int("RATE_LIMIT_WINDOW_MS", 60000)
RATE_LIMIT_MAX = get_env_int("RATE_LIMIT_MAX", 60)
CORS_ALLOW_ORIGINS = get_env_list("CORS_ALLOW_ORIGINS", [])
# Bodies above this size are rejected with 413
REQUEST_BODY_LIMIT = get_env_size("REQUEST_BODY_LIMIT", "1mb")

# =============================================================================
# SCREENSHOT STORAGE
# =============================================================================

SCREENSHOT_DIR = get_config_value("SCREENSHOT_DIR", "screenshots")
# When set, file-mode screenshots are uploaded to this GCS bucket instead of disk
SCREENSHOT_GCS_BUCKET = get_config_value("SCREENSHOT_GCS_BUCKET", "")
SCREENSHOT_PUBLIC_BASE_URL = get_config_value("SCREENSHOT_PUBLIC_BASE_URL", "")

# =============================================================================
# LOGGING AND DEBUGGING
# =============================================================================

LOG_LEVEL = get_config_value("LOG_LEVEL", "INFO")


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config():
    """Validate critical configuration values."""
    errors = []
    warnings = []

    if SCRAPE_MAX_CONCURRENCY <= 0:
        errors.append("SCRAPE_MAX_CONCURRENCY must be positive")
    if SCRAPE_DEFAULT_CONCURRENCY <= 0:
        errors.append("SCRAPE_DEFAULT_CONCURRENCY must be positive")
    elif SCRAPE_DEFAULT_CONCURRENCY > SCRAPE_MAX_CONCURRENCY:
        warnings.append("SCRAPE_DEFAULT_CONCURRENCY exceeds SCRAPE_MAX_CONCURRENCY and will be clamped")
    if SCRAPE_NAV_TIMEOUT_MS <= 0:
        errors.append("SCRAPE_NAV_TIMEOUT_MS must be positive")
    if not API_KEYS:
        warnings.append("No API_KEYS configured - authentication is disabled")

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
    if warnings:
        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    return len(errors) == 0

# Validate configuration on import
config_valid = validate_config()

logger.debug("config.py loaded with environment-based configuration")

__all__ = [
    'APP_ENV', 'PORT',
    'HEADLESS', 'SCRAPE_NAV_TIMEOUT_MS', 'SCRAPE_MAX_CONCURRENCY', 'SCRAPE_DEFAULT_CONCURRENCY',
    'ALLOW_MARKDOWN', 'USER_AGENT',
    'API_KEYS', 'RATE_LIMIT_WINDOW_MS', 'RATE_LIMIT_MAX', 'CORS_ALLOW_ORIGINS', 'REQUEST_BODY_LIMIT',
    'SCREENSHOT_DIR', 'SCREENSHOT_GCS_BUCKET', 'SCREENSHOT_PUBLIC_BASE_URL',
    'LOG_LEVEL',
]
