# -*- coding: utf-8 -*-
"""
Exchange Settings (Dataclass-based)

Runtime configuration for one venue client.

Sources, lowest to highest precedence:
1. dataclass defaults
2. YAML file (yaml.safe_load)
3. EXCHANGE_CORE_* environment variables (optionally from a .env file)

Credential values written as "${VAR}" are substituted from the environment.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "EXCHANGE_CORE_"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
CREDENTIAL_FIELDS = ("api_key", "secret", "uid", "password")


class ConfigError(Exception):
    """Invalid or unreadable configuration"""
    pass


def _substitute_env(value):
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], value)
    return value


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean (got {raw!r})")


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r})") from None


@dataclass(frozen=True)
class TokenBucketSettings:
    """Throttle bucket settings (tokens)"""
    capacity: float = 1.0
    default_cost: float = 1.0
    max_capacity: float = 1000.0

    def __post_init__(self):
        if self.max_capacity <= 0:
            raise ConfigError(f"token_bucket.max_capacity must be > 0 (got {self.max_capacity})")
        if not 0 <= self.capacity <= self.max_capacity:
            raise ConfigError(
                f"token_bucket.capacity ({self.capacity}) must be within [0, {self.max_capacity}]"
            )
        if not 0 <= self.default_cost <= self.max_capacity:
            raise ConfigError(
                f"token_bucket.default_cost ({self.default_cost}) must be within [0, {self.max_capacity}]"
            )


@dataclass(frozen=True)
class ExchangeSettings:
    """Venue client settings"""

    exchange_id: str = "deribit"
    rate_limit: float = 2000.0  # ms per token
    enable_rate_limit: bool = True
    timeout: float = 10000.0  # ms, REST and websocket waits
    token_bucket: TokenBucketSettings = field(default_factory=TokenBucketSettings)
    log_level: str = "INFO"

    # Credentials ("${VAR}" substituted from the environment)
    api_key: Optional[str] = None
    secret: Optional[str] = None
    uid: Optional[str] = None
    password: Optional[str] = None

    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        for attr_name in CREDENTIAL_FIELDS:
            object.__setattr__(self, attr_name, _substitute_env(getattr(self, attr_name)))

        if self.rate_limit <= 0:
            raise ConfigError(f"rate_limit must be > 0 ms (got {self.rate_limit})")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0 ms (got {self.timeout})")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {VALID_LOG_LEVELS} (got {self.log_level!r})")

    def to_exchange_config(self) -> Dict[str, Any]:
        """User configuration dict for BaseExchange(config)"""
        config: Dict[str, Any] = {
            "rate_limit": self.rate_limit,
            "enable_rate_limit": self.enable_rate_limit,
            "timeout": self.timeout,
            "token_bucket": {
                "capacity": self.token_bucket.capacity,
                "default_cost": self.token_bucket.default_cost,
                "max_capacity": self.token_bucket.max_capacity,
            },
            "options": dict(self.options),
        }
        for attr_name in CREDENTIAL_FIELDS:
            value = getattr(self, attr_name)
            if value is not None:
                config[attr_name] = value
        return config


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    raw = os.getenv(ENV_PREFIX + "RATE_LIMIT")
    if raw is not None:
        overrides["rate_limit"] = _parse_float(ENV_PREFIX + "RATE_LIMIT", raw)
    raw = os.getenv(ENV_PREFIX + "ENABLE_RATE_LIMIT")
    if raw is not None:
        overrides["enable_rate_limit"] = _parse_bool(ENV_PREFIX + "ENABLE_RATE_LIMIT", raw)
    raw = os.getenv(ENV_PREFIX + "TIMEOUT")
    if raw is not None:
        overrides["timeout"] = _parse_float(ENV_PREFIX + "TIMEOUT", raw)
    raw = os.getenv(ENV_PREFIX + "LOG_LEVEL")
    if raw is not None:
        overrides["log_level"] = raw.strip().upper()
    return overrides


def load_settings(
    path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> ExchangeSettings:
    """
    Build ExchangeSettings from YAML + environment.

    Args:
        path: YAML file (optional; missing file is an error when given)
        env_file: .env file loaded before reading the environment (optional)

    Returns:
        ExchangeSettings

    Raises:
        ConfigError: unreadable file, unknown keys or invalid values

    Example YAML:
        exchange_id: deribit
        rate_limit: 2000
        timeout: 10000
        token_bucket:
          capacity: 1
          max_capacity: 1000
        api_key: ${DERIBIT_API_KEY}
        secret: ${DERIBIT_SECRET}
    """
    if env_file is not None:
        if Path(env_file).exists():
            load_dotenv(env_file)
            logger.info(f"[CONFIG] Loaded .env file: {env_file}")
        else:
            logger.warning(f"[CONFIG] .env file not found: {env_file}")

    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config not found: {config_path}")
        try:
            with config_path.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")

    data.update(_env_overrides())

    bucket = data.pop("token_bucket", None) or {}
    try:
        settings = ExchangeSettings(token_bucket=TokenBucketSettings(**bucket), **data)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration keys: {e}") from e

    logger.info(
        f"[CONFIG] Settings loaded: exchange={settings.exchange_id}, "
        f"rate_limit={settings.rate_limit}ms, timeout={settings.timeout}ms"
    )
    return settings
