import os

import pytest

from pixelclient.infrastructure.config import settings
from pixelclient.infrastructure.config.settings import (
    LOCAL_API_URL, PRODUCTION_API_URL, get_config, load_client_settings, load_configuration,
    resolve_base_url, set_config_for_testing,
)


def test_defaults():
    resolved = load_client_settings()

    assert resolved.base_url == LOCAL_API_URL
    assert resolved.timeout_ms == 30000
    assert resolved.retry_attempts == 3
    assert resolved.retry_initial_delay_ms == 800
    assert resolved.retry_max_delay_ms == 6000
    assert resolved.retry_backoff_multiplier == 1.6
    assert resolved.probe_attempts == 6
    assert resolved.poll_interval_ms == 450
    assert resolved.poll_max_attempts == 6
    assert resolved.history_ttl_ms == 30000
    assert resolved.auth_token is None


def test_explicit_url_wins_and_is_trimmed(monkeypatch):
    monkeypatch.setenv("PIXELCLIENT_API_URL", "https://staging.example.com/")
    monkeypatch.setenv("PIXELCLIENT_HOSTING_DOMAIN", "pixelperfectapi.net")
    assert resolve_base_url() == "https://staging.example.com"


def test_legacy_url_key(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "http://10.0.0.5:9000")
    assert resolve_base_url() == "http://10.0.0.5:9000"


@pytest.mark.parametrize("domain,expected", [
    ("pixelperfectapi.net", PRODUCTION_API_URL),
    ("www.pixelperfectapi.net", PRODUCTION_API_URL),
    ("notpixelperfectapi.net", LOCAL_API_URL),
    ("localhost", LOCAL_API_URL),
])
def test_hosting_domain_mapping(monkeypatch, domain, expected):
    monkeypatch.setenv("PIXELCLIENT_HOSTING_DOMAIN", domain)
    assert resolve_base_url() == expected


def test_env_values_are_coerced(monkeypatch):
    monkeypatch.setenv("PIXELCLIENT_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("PIXELCLIENT_POLL_INTERVAL_MS", "100")
    resolved = load_client_settings()
    assert resolved.retry_attempts == 5
    assert resolved.poll_interval_ms == 100


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("PIXELCLIENT_RETRY_ATTEMPTS", "lots")
    set_config_for_testing({"PIXELCLIENT_POLL_MAX_ATTEMPTS": 0})
    resolved = load_client_settings()
    assert resolved.retry_attempts == 3
    assert resolved.poll_max_attempts == 6


def test_new_token_key_preferred_over_legacy(monkeypatch):
    monkeypatch.setenv("PIXELCLIENT_TOKEN", "legacy")
    assert load_client_settings().auth_token == "legacy"

    monkeypatch.setenv("PIXELCLIENT_AUTH_TOKEN", "current")
    assert load_client_settings().auth_token == "current"


def test_yaml_dotted_keys(monkeypatch):
    monkeypatch.setattr(settings, "_config", {"api": {"base_url": "https://yaml.example.com"}, "logging": {"level": "debug"}})
    assert get_config("api.base_url") == "https://yaml.example.com"
    resolved = load_client_settings()
    assert resolved.base_url == "https://yaml.example.com"
    assert resolved.log_level == "DEBUG"


def test_test_config_has_priority(monkeypatch):
    monkeypatch.setenv("PIXELCLIENT_USERNAME", "from-env")
    set_config_for_testing({"PIXELCLIENT_USERNAME": "from-test"})
    assert get_config("PIXELCLIENT_USERNAME") == "from-test"


def test_load_configuration_reads_yaml_and_dotenv(monkeypatch, tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("api:\n  base_url: https://file.example.com\n", encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text("PIXELCLIENT_USERNAME=dotenv-user\n", encoding="utf-8")
    monkeypatch.setattr(settings, "_loaded", False)

    try:
        load_configuration(config_file=config_file, env_file=env_file)

        assert get_config("api.base_url") == "https://file.example.com"
        assert get_config("PIXELCLIENT_USERNAME") == "dotenv-user"
    finally:
        os.environ.pop("PIXELCLIENT_USERNAME", None)
