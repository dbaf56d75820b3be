"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.pixelclient/config.yaml). Values are resolved once
into a ClientSettings object at process start.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".pixelclient"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

PRODUCTION_DOMAIN = "pixelperfectapi.net"
PRODUCTION_API_URL = "https://api.pixelperfectapi.net"
LOCAL_API_URL = "http://localhost:8000"

DEFAULT_TIMEOUT_MS = 30000
# Effective default retry budget: 3 attempts in total (first try plus 2 retries).
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_INITIAL_DELAY_MS = 800
DEFAULT_RETRY_MAX_DELAY_MS = 6000
DEFAULT_RETRY_BACKOFF_MULTIPLIER = 1.6
DEFAULT_PROBE_ATTEMPTS = 6
DEFAULT_PROBE_INITIAL_DELAY_MS = 600
DEFAULT_POLL_INTERVAL_MS = 450
DEFAULT_POLL_MAX_ATTEMPTS = 6
DEFAULT_HISTORY_TTL_MS = 30000

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: ENV VARS take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _coerce_env_value(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _lookup_yaml(key: str) -> Any:
    if key in _config:
        return _config[key]
    # Dotted keys resolve into nested mappings, e.g. 'api.base_url'
    node: Any = _config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable
    3. YAML config
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper()
    if env_key in os.environ:
        return _coerce_env_value(os.environ[env_key])

    value = _lookup_yaml(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed Settings ---

def _get_number(key: str, default: Any, cast: type, minimum: float) -> Any:
    raw = get_config(key, default)
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {key}: {raw!r}. Using default {default}.")
        return default
    if value < minimum:
        logger.warning(f"Value for {key} below {minimum}: {value}. Using default {default}.")
        return default
    return value


def _get_str(*keys: str) -> Optional[str]:
    for key in keys:
        value = get_config(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def resolve_base_url() -> str:
    """Resolves the API base URL.

    An explicit override wins. Otherwise a frontend hosted on the production
    domain (or a subdomain of it) talks to the production API, and anything
    else falls back to the local development server.
    """
    override = _get_str('PIXELCLIENT_API_URL', 'API_BASE_URL', 'api.base_url')
    if override:
        return override.rstrip('/')

    host = (_get_str('PIXELCLIENT_HOSTING_DOMAIN', 'hosting.domain') or '').lower()
    if host == PRODUCTION_DOMAIN or host.endswith('.' + PRODUCTION_DOMAIN):
        return PRODUCTION_API_URL

    return LOCAL_API_URL


@dataclass(frozen=True)
class ClientSettings:
    """Resolved runtime options for the request layer."""
    base_url: str = LOCAL_API_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_initial_delay_ms: int = DEFAULT_RETRY_INITIAL_DELAY_MS
    retry_max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS
    retry_backoff_multiplier: float = DEFAULT_RETRY_BACKOFF_MULTIPLIER
    probe_attempts: int = DEFAULT_PROBE_ATTEMPTS
    probe_initial_delay_ms: int = DEFAULT_PROBE_INITIAL_DELAY_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    history_ttl_ms: int = DEFAULT_HISTORY_TTL_MS
    auth_token: Optional[str] = None
    username: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_client_settings() -> ClientSettings:
    """Builds ClientSettings from the loaded configuration sources."""
    load_configuration()

    initial_delay = _get_number('PIXELCLIENT_RETRY_INITIAL_DELAY_MS', DEFAULT_RETRY_INITIAL_DELAY_MS, int, 0)
    max_delay = _get_number('PIXELCLIENT_RETRY_MAX_DELAY_MS', DEFAULT_RETRY_MAX_DELAY_MS, int, 0)
    if max_delay < initial_delay:
        logger.warning(f"Retry max delay {max_delay}ms is below initial delay {initial_delay}ms. Raising it.")
        max_delay = initial_delay

    multiplier = _get_number('PIXELCLIENT_RETRY_BACKOFF_MULTIPLIER', DEFAULT_RETRY_BACKOFF_MULTIPLIER, float, 0)
    if multiplier <= 1:
        logger.warning(f"Backoff multiplier must be > 1, got {multiplier}. Using default.")
        multiplier = DEFAULT_RETRY_BACKOFF_MULTIPLIER

    settings = ClientSettings(
        base_url=resolve_base_url(),
        timeout_ms=_get_number('PIXELCLIENT_API_TIMEOUT_MS', DEFAULT_TIMEOUT_MS, int, 1),
        retry_attempts=_get_number('PIXELCLIENT_RETRY_ATTEMPTS', DEFAULT_RETRY_ATTEMPTS, int, 1),
        retry_initial_delay_ms=initial_delay,
        retry_max_delay_ms=max_delay,
        retry_backoff_multiplier=multiplier,
        probe_attempts=_get_number('PIXELCLIENT_PROBE_ATTEMPTS', DEFAULT_PROBE_ATTEMPTS, int, 1),
        poll_interval_ms=_get_number('PIXELCLIENT_POLL_INTERVAL_MS', DEFAULT_POLL_INTERVAL_MS, int, 0),
        poll_max_attempts=_get_number('PIXELCLIENT_POLL_MAX_ATTEMPTS', DEFAULT_POLL_MAX_ATTEMPTS, int, 1),
        history_ttl_ms=_get_number('PIXELCLIENT_HISTORY_TTL_MS', DEFAULT_HISTORY_TTL_MS, int, 0),
        # New token key first, then the legacy one
        auth_token=_get_str('PIXELCLIENT_AUTH_TOKEN', 'PIXELCLIENT_TOKEN', 'auth.token'),
        username=_get_str('PIXELCLIENT_USERNAME', 'auth.username'),
        log_level=str(get_config('logging.level', get_config('LOGGING_LEVEL', 'INFO'))).upper(),
        log_file=_get_str('LOGGING_FILE', 'logging.file'),
    )
    logger.debug(f"Client settings resolved: base_url={settings.base_url}, retry_attempts={settings.retry_attempts}")
    return settings
