"""Unit tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from homeapi.config import Settings, _find_config_file, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("HOMEAPI_DYNAMODB__TABLE", raising=False)
        settings = Settings()

        assert settings.dynamodb.table == "homeapi"
        assert settings.dynamodb.owner_index == "user_email-index"
        assert settings.access.write_policy == "authenticated"
        assert settings.access.require_registered_user is True
        assert settings.pagination.default_page_size == 20
        assert settings.pagination.max_page_size == 100
        assert settings.oauth.client_id is None

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("HOMEAPI_DYNAMODB__TABLE", "home-prod")
        monkeypatch.setenv("HOMEAPI_ACCESS__WRITE_POLICY", "allowlist")
        monkeypatch.setenv("HOMEAPI_PAGINATION__MAX_PAGE_SIZE", "50")

        settings = Settings()

        assert settings.dynamodb.table == "home-prod"
        assert settings.access.write_policy == "allowlist"
        assert settings.pagination.max_page_size == 50

    def test_invalid_write_policy(self, monkeypatch):
        monkeypatch.setenv("HOMEAPI_ACCESS__WRITE_POLICY", "everyone")
        with pytest.raises(ValueError):
            Settings()


class TestConfigFile:
    @pytest.fixture
    def config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "homeapi.yaml"
        path.write_text(
            "dynamodb:\n"
            "  table: from-file\n"
            "  region: eu-west-1\n"
            "oauth:\n"
            "  client_id: abc.apps.googleusercontent.com\n"
        )
        monkeypatch.setenv("HOMEAPI_CONFIG_FILE", str(path))
        monkeypatch.delenv("HOMEAPI_DYNAMODB__TABLE", raising=False)
        return path

    def test_load_from_env_path(self, config_file):
        assert _find_config_file() == config_file

        settings = Settings()

        assert settings.dynamodb.table == "from-file"
        assert settings.oauth.client_id == "abc.apps.googleusercontent.com"

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("HOMEAPI_DYNAMODB__TABLE", "from-env")

        settings = Settings()

        assert settings.dynamodb.table == "from-env"
        # Keys the env leaves unset still come from the file
        assert settings.dynamodb.region == "eu-west-1"
        assert settings.oauth.client_id == "abc.apps.googleusercontent.com"

    def test_get_settings_prefers_env(self, config_file, monkeypatch):
        monkeypatch.setenv("HOMEAPI_DYNAMODB__TABLE", "from-env")
        get_settings.cache_clear()
        try:
            assert get_settings().dynamodb.table == "from-env"
        finally:
            get_settings.cache_clear()

    def test_empty_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        monkeypatch.setenv("HOMEAPI_CONFIG_FILE", str(config_file))
        monkeypatch.delenv("HOMEAPI_DYNAMODB__TABLE", raising=False)

        assert Settings().dynamodb.table == "homeapi"

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOMEAPI_CONFIG_FILE", str(tmp_path / "absent.yaml"))

        if not Path("/etc/homeapi/config.yaml").exists():
            assert _find_config_file() is None
