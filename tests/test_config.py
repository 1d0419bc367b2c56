import logging
from pathlib import Path

import pytest

from goldsilver.api_server import get_settings
from goldsilver.config import DEFAULT_API_URL, Settings

ENV_VARS = [
    "METALS_API_KEY",
    "METALPRICEAPI_KEY",
    "GOLDSILVER_API_URL",
    "GOLDSILVER_CACHE_DIR",
    "GOLDSILVER_PRICE_FILE",
    "GOLDSILVER_REQUEST_TIMEOUT",
    "GOLDSILVER_DEBUG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a stray .env in the working directory out of the way
    monkeypatch.chdir(tmp_path)


def test_defaults_without_environment():
    settings = Settings()

    assert settings.api_key is None
    assert settings.api_url == DEFAULT_API_URL
    assert settings.request_timeout == 30.0
    assert settings.debug is False


@pytest.mark.parametrize("name", ["METALS_API_KEY", "METALPRICEAPI_KEY"])
def test_api_key_read_from_either_variable(monkeypatch, name):
    monkeypatch.setenv(name, " secret ")

    assert Settings().api_key == "secret"


def test_blank_api_key_counts_as_missing(monkeypatch):
    monkeypatch.setenv("METALS_API_KEY", "   ")

    assert Settings().api_key is None


def test_prefixed_variables_are_applied(monkeypatch, tmp_path):
    monkeypatch.setenv("GOLDSILVER_API_URL", "http://localhost:9000/timeframe")
    monkeypatch.setenv("GOLDSILVER_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("GOLDSILVER_PRICE_FILE", str(tmp_path / "prices.xlsx"))
    monkeypatch.setenv("GOLDSILVER_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("GOLDSILVER_DEBUG", "true")

    settings = Settings()

    assert settings.api_url == "http://localhost:9000/timeframe"
    assert settings.cache_dir == Path(tmp_path / "cache")
    assert settings.price_file == Path(tmp_path / "prices.xlsx")
    assert settings.request_timeout == 5.0
    assert settings.debug is True


def test_non_positive_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("GOLDSILVER_REQUEST_TIMEOUT", "0")

    with pytest.raises(ValueError):
        Settings()


def test_explicit_values_win_over_environment(monkeypatch):
    monkeypatch.setenv("GOLDSILVER_API_URL", "http://env.example/timeframe")

    settings = Settings(api_url="http://explicit.example/timeframe", api_key="key")

    assert settings.api_url == "http://explicit.example/timeframe"
    assert settings.api_key == "key"


def test_debug_setting_raises_package_log_level(monkeypatch):
    package_logger = logging.getLogger("goldsilver")
    previous = package_logger.level
    monkeypatch.setenv("GOLDSILVER_DEBUG", "1")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.debug is True
        assert package_logger.level == logging.DEBUG
    finally:
        get_settings.cache_clear()
        package_logger.setLevel(previous)
