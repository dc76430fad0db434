"""Tests for database location configuration."""

from pathlib import Path

import pytest

from src.utils import config as config_module
from src.utils.config import Config, get_config, reset_config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.delenv(config_module.ENV_VAR_ENVIRONMENT, raising=False)
    monkeypatch.delenv(config_module.ENV_VAR_DATABASE_URL, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:
    """Tests for Config path and URL resolution."""

    def test_production_uses_home_directory(self):
        config = Config("production")
        assert config.database_path == Path.home() / ".central_kitchen" / "central_kitchen.db"
        assert config.database_url.startswith("sqlite:///")
        assert config.database_url.endswith("/.central_kitchen/central_kitchen.db")

    def test_development_uses_project_data_directory(self):
        config = Config("development")
        assert config.database_path.parent.name == "data"

    def test_override_url_wins(self):
        config = Config(database_url="postgresql://kitchen@db/ledger")
        assert config.database_url == "postgresql://kitchen@db/ledger"
        assert config.database_exists() is True

    def test_sqlite_file_presence(self, tmp_path, monkeypatch):
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        config = Config()
        assert config.database_exists() is False

        config.database_path.parent.mkdir(parents=True)
        config.database_path.touch()
        assert config.database_exists() is True


class TestGetConfig:
    """Tests for the process-wide configuration."""

    def test_reads_environment_variables(self, monkeypatch):
        monkeypatch.setenv(config_module.ENV_VAR_ENVIRONMENT, "development")
        monkeypatch.setenv(config_module.ENV_VAR_DATABASE_URL, "sqlite:///:memory:")

        config = get_config()
        assert config.environment == "development"
        assert config.database_url == "sqlite:///:memory:"

    def test_environment_fixed_after_first_call(self, caplog):
        first = get_config("production")

        with caplog.at_level("WARNING"):
            second = get_config("development")

        assert second is first
        assert second.environment == "production"
        assert "already configured" in caplog.text

    def test_reset_rereads_environment(self, monkeypatch):
        get_config()
        monkeypatch.setenv(config_module.ENV_VAR_ENVIRONMENT, "development")
        reset_config()
        assert get_config().environment == "development"
