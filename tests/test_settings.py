"""
Tests — Settings loading, env substitution and startup validation.

Run:
  pytest tests/test_settings.py -v
"""
import textwrap

import pytest

from config.settings import (
    BackendConfig, ConfigError, DeliveryConfig, Settings, WorkerConfig, load_settings, validate_settings,
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(textwrap.dedent("""
        app_name: TestRelay
        discord:
          token: ${TEST_DISCORD_TOKEN}
          client_id: "123"
          guild_id: 999
        backend:
          type: rest
          base_url: ${TEST_NEXUS_URL}
          api_key: ${TEST_NEXUS_KEY}
          unknown_key: ignored
        worker:
          poll_interval_s: 5
          status_retry_max_attempts: 12
        delivery:
          chunk_limit: 1500
    """))
    return path


def _valid_settings() -> Settings:
    settings = Settings()
    settings.discord.token = "tok"
    settings.discord.client_id = "123"
    settings.discord.guild_id = "999"
    settings.backend.base_url = "https://nexus.example/api"
    settings.backend.api_key = "key"
    return settings


class TestLoadSettings:

    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.yaml"))

        assert settings.worker == WorkerConfig()
        assert settings.worker.poll_interval_s == 30.0
        assert settings.worker.max_backoff_s == 300.0
        assert settings.worker.status_backoff_base_s == 10.0
        assert settings.worker.queue_fetch_limit == 20
        assert settings.delivery == DeliveryConfig(chunk_limit=1900, max_attempts=3)

    def test_yaml_with_env_substitution(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_DISCORD_TOKEN", "bot-token")
        monkeypatch.setenv("TEST_NEXUS_URL", "https://nexus.example/api")
        monkeypatch.setenv("TEST_NEXUS_KEY", "secret-key")

        settings = load_settings(str(config_file))

        assert settings.app_name == "TestRelay"
        assert settings.discord.token == "bot-token"
        assert settings.discord.guild_id == "999"
        assert settings.backend.base_url == "https://nexus.example/api"
        assert settings.backend.api_key == "secret-key"
        assert settings.worker.poll_interval_s == 5
        assert settings.worker.status_retry_max_attempts == 12
        assert settings.worker.queue_fetch_limit == 20
        assert settings.delivery.chunk_limit == 1500

    def test_unset_env_leaves_placeholder(self, config_file, monkeypatch):
        monkeypatch.delenv("TEST_DISCORD_TOKEN", raising=False)
        settings = load_settings(str(config_file))
        assert settings.discord.token == "${TEST_DISCORD_TOKEN}"

    def test_env_var_selects_file(self, config_file, monkeypatch):
        monkeypatch.setenv("NEXUS_RELAY_CONFIG", str(config_file))
        assert load_settings().app_name == "TestRelay"


class TestValidateSettings:

    def test_valid(self):
        validate_settings(_valid_settings())

    def test_lists_every_missing_value(self):
        settings = _valid_settings()
        settings.discord.token = "${DISCORD_BOT_TOKEN}"
        settings.backend.api_key = ""

        with pytest.raises(ConfigError) as exc_info:
            validate_settings(settings)

        message = str(exc_info.value)
        assert "DISCORD_BOT_TOKEN" in message
        assert "NEXUS_API_KEY" in message
        assert "DISCORD_GUILD_ID" not in message

    def test_mock_backend_needs_no_api(self):
        settings = _valid_settings()
        settings.backend = BackendConfig(type="mock")
        validate_settings(settings)

    def test_rejects_non_positive_intervals(self):
        settings = _valid_settings()
        settings.worker.poll_interval_s = 0
        with pytest.raises(ConfigError, match="intervals"):
            validate_settings(settings)

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)
