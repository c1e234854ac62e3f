"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a YAML
configuration file (~/.atsgate/config.yaml). GovernanceSettings gathers
every tunable of the rate limiter, cache, client and recorder in one place.
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
DEFAULT_CONFIG_DIR = Path.home() / ".atsgate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "ATSGATE_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested YAML mappings into dotted keys ({'a': {'b': 1}} -> {'a.b': 1})."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to get_config

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
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (override=False: real env vars take precedence)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    _loaded = True
    logger.info("Configuration loading process completed.")

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except ValueError:
        return value

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (ATSGATE_<KEY> or <KEY>, dots as underscores)
    3. YAML config
    4. Default value

    Args:
        key: The configuration key, e.g. 'rate_limit.max_requests'
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    for candidate in (f"{ENV_PREFIX}{env_key}", env_key):
        if candidate in os.environ:
            return _coerce(os.environ[candidate])

    if key in _config:
        return _config[key]

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

# --- Convenience Functions ---

def get_gemini_api_key() -> Optional[str]:
    """Convenience function to get the Gemini API key."""
    # Checks ENV GEMINI_API_KEY first, then yaml gemini.api_key
    key = get_config('GEMINI_API_KEY') or get_config('gemini.api_key')
    return str(key) if key else None

def is_configured() -> bool:
    """True when the upstream API key is available."""
    return bool(get_gemini_api_key())

def safe_config() -> Dict[str, Any]:
    """Configuration summary that is safe to display (no secrets)."""
    return {
        "has_api_key": is_configured(),
        "model": get_config('gemini.model'),
        "environment": get_config('environment', 'development'),
    }

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")

# --- Typed Settings ---

@dataclass(frozen=True)
class CallSettings:
    """Attempt budget and per-attempt timeout for one kind of upstream call."""
    max_retries: int
    timeout_seconds: float

@dataclass(frozen=True)
class GovernanceSettings:
    """Every tunable of the governance layer."""
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 10
    rate_limit_sweep_interval_seconds: float = 60.0
    cache_ttl_seconds: float = 30 * 60.0
    cache_sweep_interval_seconds: float = 5 * 60.0
    keywords_call: CallSettings = CallSettings(max_retries=3, timeout_seconds=30.0)
    suggestions_call: CallSettings = CallSettings(max_retries=2, timeout_seconds=45.0)
    recorder_capacity: int = 1000
    gemini_model: Optional[str] = None
    gemini_base_url: Optional[str] = None

    @classmethod
    def from_config(cls) -> "GovernanceSettings":
        """Builds settings from the layered configuration, falling back to defaults."""
        d = cls()
        return cls(
            rate_limit_window_seconds=float(get_config('rate_limit.window_seconds', d.rate_limit_window_seconds)),
            rate_limit_max_requests=int(get_config('rate_limit.max_requests', d.rate_limit_max_requests)),
            rate_limit_sweep_interval_seconds=float(
                get_config('rate_limit.sweep_interval_seconds', d.rate_limit_sweep_interval_seconds)
            ),
            cache_ttl_seconds=float(get_config('cache.ttl_seconds', d.cache_ttl_seconds)),
            cache_sweep_interval_seconds=float(
                get_config('cache.sweep_interval_seconds', d.cache_sweep_interval_seconds)
            ),
            keywords_call=CallSettings(
                max_retries=int(get_config('client.keywords.max_retries', d.keywords_call.max_retries)),
                timeout_seconds=float(get_config('client.keywords.timeout_seconds', d.keywords_call.timeout_seconds)),
            ),
            suggestions_call=CallSettings(
                max_retries=int(get_config('client.suggestions.max_retries', d.suggestions_call.max_retries)),
                timeout_seconds=float(
                    get_config('client.suggestions.timeout_seconds', d.suggestions_call.timeout_seconds)
                ),
            ),
            recorder_capacity=int(get_config('recorder.capacity', d.recorder_capacity)),
            gemini_model=get_config('gemini.model'),
            gemini_base_url=get_config('gemini.base_url'),
        )
