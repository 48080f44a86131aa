from pathlib import Path
from typing import Optional

import yaml

from phabreport_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "max_concurrency": 8,  # simultaneous in-flight lookups per revision
    "timeout": 30.0,  # seconds per HTTP request
    "date_format": "%Y-%m-%d",
    "timezone": "local",  # "local" or "utc"
    "empty_diffs": "blank",  # "blank" | "skip" | "error"
    "on_error": "halt",  # "halt" | "skip" | "annotate"
    "list_separator": ",",
}

EMPTY_DIFF_POLICIES = ("blank", "skip", "error")
ERROR_POLICIES = ("halt", "skip", "annotate")
TIMEZONES = ("local", "utc")


def load_config(config_path: str = ".phabreport.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .phabreport.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        try:
            with open(path) as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}")
        if not isinstance(file_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    validate_config(config)
    return config


def validate_config(config: dict) -> None:
    """Raise ConfigError if a policy or limit has an unusable value."""
    if config.get("empty_diffs") not in EMPTY_DIFF_POLICIES:
        raise ConfigError(
            f"Unknown empty_diffs policy: {config.get('empty_diffs')!r}. Choose one of {', '.join(EMPTY_DIFF_POLICIES)}."
        )
    if config.get("on_error") not in ERROR_POLICIES:
        raise ConfigError(
            f"Unknown on_error policy: {config.get('on_error')!r}. Choose one of {', '.join(ERROR_POLICIES)}."
        )
    if config.get("timezone") not in TIMEZONES:
        raise ConfigError(f"Unknown timezone: {config.get('timezone')!r}. Choose 'local' or 'utc'.")

    concurrency = config.get("max_concurrency")
    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ConfigError(f"max_concurrency must be a positive integer, got {concurrency!r}.")

    timeout = config.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"timeout must be a positive number of seconds, got {timeout!r}.")

    for key in ("date_format", "list_separator"):
        if not isinstance(config.get(key), str):
            raise ConfigError(f"{key} must be a string, got {config.get(key)!r}.")
