"""
Settings Loader Tests

- YAML file -> ExchangeSettings
- EXCHANGE_CORE_* environment overrides (and .env files)
- ${VAR} credential substitution
- ConfigError on bad input
"""

import os

import pytest

from exchange_core.config import ConfigError, ExchangeSettings, TokenBucketSettings, load_settings
from exchange_core.exchanges.deribit import Deribit

YAML_CONFIG = """
exchange_id: deribit
rate_limit: 500
timeout: 7000
token_bucket:
  capacity: 5
  max_capacity: 50
api_key: ${TEST_DERIBIT_KEY}
secret: plain-secret
options:
  testnet: true
"""


class TestExchangeSettings:
    """Dataclass validation"""

    def test_defaults(self):
        settings = ExchangeSettings()

        assert settings.exchange_id == "deribit"
        assert settings.rate_limit == 2000.0
        assert settings.token_bucket == TokenBucketSettings()

    @pytest.mark.parametrize("kwargs", [
        {"rate_limit": 0},
        {"timeout": -1},
        {"log_level": "LOUD"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            ExchangeSettings(**kwargs)

    def test_invalid_bucket(self):
        with pytest.raises(ConfigError, match="capacity"):
            TokenBucketSettings(capacity=10, max_capacity=5)

    def test_env_substitution(self, monkeypatch):
        monkeypatch.setenv("TEST_DERIBIT_KEY", "from-env")

        settings = ExchangeSettings(api_key="${TEST_DERIBIT_KEY}")

        assert settings.api_key == "from-env"

    def test_unresolved_placeholder_kept(self, monkeypatch):
        monkeypatch.delenv("TEST_MISSING_VAR", raising=False)
        assert ExchangeSettings(secret="${TEST_MISSING_VAR}").secret == "${TEST_MISSING_VAR}"

    def test_to_exchange_config(self):
        settings = ExchangeSettings(rate_limit=100, api_key="k", options={"a": 1})

        config = settings.to_exchange_config()

        assert config["rate_limit"] == 100
        assert config["api_key"] == "k"
        assert "secret" not in config
        assert config["token_bucket"] == {"capacity": 1.0, "default_cost": 1.0, "max_capacity": 1000.0}
        assert config["options"] == {"a": 1}

    def test_config_feeds_exchange(self):
        settings = ExchangeSettings(rate_limit=100, timeout=3000, enable_rate_limit=False)

        exchange = Deribit(settings.to_exchange_config())

        assert exchange.rate_limit == 100
        assert exchange.timeout == 3000
        assert exchange.enable_rate_limit is False
        assert exchange.throttle.refill_rate == pytest.approx(0.01)


class TestLoadSettings:
    """load_settings()"""

    def test_yaml_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_DERIBIT_KEY", "yaml-key")
        path = tmp_path / "deribit.yml"
        path.write_text(YAML_CONFIG, encoding="utf-8")

        settings = load_settings(path)

        assert settings.rate_limit == 500
        assert settings.timeout == 7000
        assert settings.token_bucket.capacity == 5
        assert settings.token_bucket.max_capacity == 50
        assert settings.api_key == "yaml-key"
        assert settings.secret == "plain-secret"
        assert settings.options == {"testnet": True}

    def test_no_file_uses_defaults(self):
        assert load_settings() == ExchangeSettings()

    def test_env_overrides_yaml(self, tmp_path):
        path = tmp_path / "deribit.yml"
        path.write_text(YAML_CONFIG, encoding="utf-8")
        os.environ["EXCHANGE_CORE_RATE_LIMIT"] = "250"
        os.environ["EXCHANGE_CORE_ENABLE_RATE_LIMIT"] = "false"
        os.environ["EXCHANGE_CORE_LOG_LEVEL"] = "debug"

        settings = load_settings(path)

        assert settings.rate_limit == 250.0
        assert settings.enable_rate_limit is False
        assert settings.log_level == "DEBUG"
        assert settings.timeout == 7000

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("EXCHANGE_CORE_TIMEOUT=1234\n", encoding="utf-8")

        settings = load_settings(env_file=env_file)

        assert settings.timeout == 1234.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Config not found"):
            load_settings(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("rate_limit: [1, 2\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="must be a mapping"):
            load_settings(path)

    def test_unknown_keys(self, tmp_path):
        path = tmp_path / "extra.yml"
        path.write_text("rate_limit: 100\nbogus: 1\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid configuration keys"):
            load_settings(path)

    def test_bad_env_number(self):
        os.environ["EXCHANGE_CORE_TIMEOUT"] = "soon"

        with pytest.raises(ConfigError, match="EXCHANGE_CORE_TIMEOUT must be a number"):
            load_settings()
