"""
Configuration

Usage:
    from exchange_core.config import load_settings

    settings = load_settings("config/deribit.yml")
    configure_logging(settings.log_level)
    exchange = Deribit(settings.to_exchange_config())
"""

from exchange_core.config.settings import (
    ConfigError,
    ExchangeSettings,
    TokenBucketSettings,
    load_settings,
)

__all__ = [
    "ConfigError",
    "ExchangeSettings",
    "TokenBucketSettings",
    "load_settings",
]
