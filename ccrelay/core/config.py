"""Configuration management

Settings come from field defaults, an optional YAML file, environment
variables (a .env file is honoured) and finally explicit overrides such as CLI
flags, in increasing order of precedence.
"""
import os
import re
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

from ccrelay.models.config import AppConfig

load_dotenv()

# AppConfig field -> environment variable
ENV_VARS = {
    "host": "HOST",
    "port": "PORT",
    "debug": "DEBUG",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "verify_ssl": "VERIFY_SSL",
    "request_timeout_secs": "REQUEST_TIMEOUT_SECS",
    "require_explicit_base_url": "REQUIRE_EXPLICIT_BASE_URL",
    "default_base_url": "DEFAULT_BASE_URL",
    "anthropic_version": "ANTHROPIC_VERSION",
    "emit_done_event": "EMIT_DONE_EVENT",
    "cors_enabled": "CORS_ENABLED",
    "enable_metrics": "ENABLE_METRICS",
}

BOOL_FIELDS = {
    "debug",
    "verify_ssl",
    "require_explicit_base_url",
    "emit_done_event",
    "cors_enabled",
    "enable_metrics",
}


def expand_env_vars(value: str) -> str:
    """Expand environment variables in string. Supports ${VAR}, ${VAR:-default}, ${VAR:default}"""
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}:]+)(?::?-?([^}]*))?\}'
    return re.sub(pattern, lambda m: os.environ.get(m.group(1), m.group(2) or ''), value)


def expand_config_env_vars(config: Any) -> Any:
    """Recursively expand environment variables in config"""
    if isinstance(config, dict):
        return {k: expand_config_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [expand_config_env_vars(item) for item in config]
    elif isinstance(config, str):
        return expand_env_vars(config)
    return config


def str_to_bool(value: Any) -> bool:
    """Convert string representation of boolean to actual boolean"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def read_config_file(config_path: str) -> dict:
    """Read a YAML config file and expand environment variables in it"""
    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return expand_config_env_vars(raw_config)


def read_env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Collect config values set through environment variables"""
    environ = os.environ if environ is None else environ
    values = {}
    for field, env_name in ENV_VARS.items():
        if env_name in environ:
            values[field] = environ[env_name]
    return values


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Build the application configuration

    Args:
        config_path: YAML file to read; defaults to $CONFIG_PATH when set
        overrides: Highest-precedence values (CLI flags); None entries are ignored
        environ: Environment mapping, os.environ by default
    """
    environ = os.environ if environ is None else environ
    config_path = config_path or environ.get('CONFIG_PATH')

    values: dict = {}
    if config_path:
        values.update(read_config_file(config_path))
    values.update(read_env_overrides(environ))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    for field in BOOL_FIELDS & values.keys():
        values[field] = str_to_bool(values[field])

    return AppConfig(**values)
