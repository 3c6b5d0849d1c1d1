"""
Unit tests for SyncConfig validation and settings.toml loading.
"""

import dataclasses
from unittest.mock import patch

import pytest

from couchconfig.errors import ConfigValidationError
from couchconfig.settings import (
    SyncConfig,
    load_config,
    resolve_extra_options,
    sync_config_from_settings,
)


def _valid(**overrides):
    values = {
        "host": "couch.local",
        "port": 5984,
        "database_name": "sites",
        "query_path": "sites/all",
    }
    values.update(overrides)
    return values


# ---------------------------------------------------------------------------
# SyncConfig
# ---------------------------------------------------------------------------


class TestSyncConfigValidation:
    def test_minimal_config(self):
        config = SyncConfig(**_valid())
        assert config.list_name is None
        assert config.keys is None
        assert config.uses_list is False
        assert dict(config.extra) == {}

    @pytest.mark.parametrize("field,value", [
        ("host", ""),
        ("host", "http://couch.local:5984"),
        ("host", "couch.local:5984"),
        ("port", "5984"),
        ("port", 0),
        ("port", 70000),
        ("port", True),
        ("database_name", ""),
        ("query_path", ""),
        ("query_path", "all"),
        ("query_path", "sites/"),
        ("list_name", ""),
        ("filter", ""),
        ("keys", "web"),
    ])
    def test_invalid_values_raise(self, field, value):
        with pytest.raises(ConfigValidationError) as excinfo:
            SyncConfig(**_valid(**{field: value}))
        assert isinstance(excinfo.value, ValueError)

    @pytest.mark.parametrize("host", ["couch.local", "https://couch.local", "http://127.0.0.1/"])
    def test_host_without_port_is_accepted(self, host):
        assert SyncConfig(**_valid(host=host)).host == host

    def test_host_with_port_names_host_option(self):
        with pytest.raises(ConfigValidationError) as excinfo:
            SyncConfig(**_valid(host="http://couch.local:5984"))
        assert excinfo.value.option == "host"

    def test_missing_required_option_raises(self):
        with pytest.raises(ConfigValidationError) as excinfo:
            SyncConfig(**_valid(database_name=None))
        assert excinfo.value.option == "database_name"

    def test_is_frozen(self):
        config = SyncConfig(**_valid())
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.query_path = "other/view"

    def test_extra_is_read_only_copy(self):
        extra = {"timeout": 5}
        config = SyncConfig(**_valid(extra=extra))
        extra["timeout"] = 99
        assert config.extra["timeout"] == 5
        with pytest.raises(TypeError):
            config.extra["timeout"] = 1

    def test_keys_become_tuple(self):
        config = SyncConfig(**_valid(keys=["web", "api"]))
        assert config.keys == ("web", "api")

    def test_list_name_selects_list(self):
        assert SyncConfig(**_valid(list_name="enabled")).uses_list is True


class TestFromMapping:
    def test_host_option_names(self):
        config = SyncConfig.from_mapping(
            {
                "host": "couch.local",
                "port": 5984,
                "databaseName": "sites",
                "view": "sites/all",
                "extraConf": {
                    "list": "enabled",
                    "keys": ["web"],
                    "filter": "sites/by_app",
                    "username": "reader",
                },
            }
        )
        assert config.database_name == "sites"
        assert config.query_path == "sites/all"
        assert config.list_name == "enabled"
        assert config.keys == ("web",)
        assert config.filter == "sites/by_app"
        assert dict(config.extra) == {"username": "reader"}

    def test_toml_section_names(self):
        config = SyncConfig.from_mapping(
            {
                "host": "couch.local",
                "port": "5984",
                "database": "sites",
                "view": "sites/all",
                "list": "enabled",
            }
        )
        assert config.port == 5984
        assert config.list_name == "enabled"

    def test_missing_view_raises(self):
        with pytest.raises(ConfigValidationError):
            SyncConfig.from_mapping({"host": "couch.local", "port": 5984, "database": "sites"})

    def test_none_raises(self):
        with pytest.raises(ConfigValidationError):
            SyncConfig.from_mapping(None)


# ---------------------------------------------------------------------------
# settings.toml
# ---------------------------------------------------------------------------


SETTINGS = """
[couchdb]
host = "http://127.0.0.1"
port = 5984
database = "sites"
view = "sites/all"
keys = ["web"]

[couchdb.extra]
username = "reader"
password_secret = "couchdb-password"
"""


class TestLoadConfig:
    def test_loads_toml(self, tmp_path):
        path = tmp_path / "settings.toml"
        path.write_text(SETTINGS)
        config = load_config(path)
        assert config["couchdb"]["database"] == "sites"

    def test_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.toml"
        path.write_text(SETTINGS)
        monkeypatch.setenv("COUCHCONFIG_CONFIG", str(path))
        assert load_config()["couchdb"]["view"] == "sites/all"

    def test_missing_section(self, tmp_path):
        path = tmp_path / "settings.toml"
        path.write_text('[audit]\nlog_path = "/tmp/audit.log"\n')
        with pytest.raises(KeyError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_sync_config_resolves_password_secret(self, tmp_path):
        path = tmp_path / "settings.toml"
        path.write_text(SETTINGS)
        with patch("couchconfig.settings.get_secret", return_value="s3cret") as get_secret:
            config = sync_config_from_settings(load_config(path))

        get_secret.assert_called_once_with("couchdb-password")
        assert config.extra["password"] == "s3cret"
        assert "password_secret" not in config.extra
        assert config.keys == ("web",)

    def test_resolve_without_secret_is_copy(self):
        extra = {"username": "reader"}
        resolved = resolve_extra_options(extra)
        assert resolved == extra
        assert resolved is not extra
