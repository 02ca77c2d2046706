"""Tests for configuration loading and token lookup."""

from __future__ import annotations

import json

import pytest

from donorhub import config as config_module
from donorhub.config import get_auth_token, load_upload_config, set_auth_token
from donorhub.models import UploadConfig


class TestAuthToken:
    """Keyring first, then DONORHUB_TOKEN."""

    def test_keyring_wins(self, monkeypatch):
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: "from-keyring")
        monkeypatch.setenv("DONORHUB_TOKEN", "from-env")
        assert get_auth_token() == "from-keyring"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: None)
        monkeypatch.setenv("DONORHUB_TOKEN", "from-env")
        assert get_auth_token() == "from-env"

    def test_missing_everywhere(self, monkeypatch):
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: None)
        monkeypatch.delenv("DONORHUB_TOKEN", raising=False)
        with pytest.raises(RuntimeError, match="config set-token"):
            get_auth_token()

    def test_set_token_uses_service_and_key(self, monkeypatch):
        stored = {}
        monkeypatch.setattr(
            config_module.keyring,
            "set_password",
            lambda service, key, value: stored.update({(service, key): value}),
        )
        set_auth_token("  abc  ")
        assert stored == {("donorhub", "auth_token"): "abc"}

    def test_set_empty_token_rejected(self):
        with pytest.raises(ValueError):
            set_auth_token("   ")


class TestLoadUploadConfig:
    """JSON config merged over defaults."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_upload_config(tmp_path / "absent.json")
        assert config == UploadConfig()
        assert config.max_concurrent_uploads == 4
        assert config.transfer_timeout_seconds == 30.0

    def test_known_fields_loaded_unknown_ignored(self, tmp_path):
        path = tmp_path / "upload_config.json"
        path.write_text(
            json.dumps(
                {
                    "origin_url": "https://api.example.org",
                    "max_concurrent_uploads": 8,
                    "retry_attempts": 3,
                    "api_key": "should-be-ignored",
                }
            )
        )
        config = load_upload_config(path)
        assert config.origin_url == "https://api.example.org"
        assert config.max_concurrent_uploads == 8
        assert config.retry_attempts == 3
        assert not hasattr(config, "api_key")

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "upload_config.json"
        path.write_text(json.dumps({"max_concurrent_uploads": 0}))
        with pytest.raises(ValueError):
            load_upload_config(path)
