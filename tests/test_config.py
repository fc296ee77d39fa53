"""Tests for the YAML config store."""

import os
import stat

import pytest
import yaml

from gssh.config import (
    AppConfig, AuthConfig, ConfigError, ConfigStore, Server, SyncConfig,
    format_timestamp,
)
from gssh.session.base import AuthMethod


def server(name, **kwargs):
    kwargs.setdefault("hostname", f"{name}.example.com")
    kwargs.setdefault("user", "deploy")
    return Server(name=name, **kwargs)


@pytest.fixture
def store(tmp_path):
    return ConfigStore(tmp_path / "gssh" / "config.yaml")


def mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class TestStore:

    def test_missing_file_created_with_defaults(self, store):
        config = store.config
        assert config.servers == []
        assert store.path.exists()
        assert mode(store.path) == 0o600

    def test_round_trip(self, store):
        store.config.add_server(server(
            "web", port=2222, tags=["prod", "eu"], group="frontend",
            auth=AuthConfig(type="password", password="s3cret"),
        ))
        store.save()

        loaded = ConfigStore(store.path).config
        web = loaded.get_server("web")
        assert web.port == 2222
        assert web.tags == ["prod", "eu"]
        assert web.auth.password == "s3cret"
        assert web.created_at

    def test_save_keeps_backup(self, store):
        store.config.add_server(server("one"))
        store.save()
        store.config.add_server(server("two"))
        store.save()

        backup = yaml.safe_load(store.backup_path.read_text())
        assert [s["name"] for s in backup["servers"]] == ["one"]
        assert mode(store.backup_path) == 0o600

    def test_invalid_yaml(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("servers: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            store.load()

    def test_env_override(self, tmp_path, monkeypatch):
        target = tmp_path / "elsewhere.yaml"
        monkeypatch.setenv("GSSH_CONFIG", str(target))
        assert ConfigStore().path == target

    def test_empty_file_is_default_config(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("")
        assert store.load().servers == []


class TestFromDict:

    def test_unknown_keys_ignored(self):
        config = AppConfig.from_dict({
            "version": "1.0",
            "extra": True,
            "servers": [{"name": "a", "hostname": "h", "user": "u", "colour": "red"}],
        })
        assert config.servers[0].name == "a"
        assert config.servers[0].port == 22

    def test_nulls_and_string_tags(self):
        config = AppConfig.from_dict({
            "servers": [{
                "name": "a", "hostname": "h", "user": "u",
                "port": "2200", "tags": "x, y", "auth": None, "description": None,
            }],
            "sync": None,
        })
        a = config.servers[0]
        assert a.port == 2200
        assert a.tags == ["x", "y"]
        assert a.auth.type == "auto"
        assert a.description == ""
        assert config.sync == SyncConfig()

    def test_missing_required_field(self):
        with pytest.raises(ConfigError, match="hostname"):
            AppConfig.from_dict({"servers": [{"name": "a", "user": "u"}]})

    def test_bad_port(self):
        with pytest.raises(ConfigError, match="port"):
            AppConfig.from_dict({"servers": [{"name": "a", "hostname": "h", "user": "u", "port": "ssh"}]})

    def test_inventory_excludes_sync(self):
        config = AppConfig(sync=SyncConfig(enabled=True, password="x"), servers=[server("a")])
        assert set(config.inventory_dict()) == {"version", "servers"}


class TestInventory:

    @pytest.fixture
    def config(self):
        config = AppConfig()
        config.add_server(server("web-1", group="frontend", tags=["prod", "eu"], description="nginx"))
        config.add_server(server("web-2", group="frontend", tags=["staging"]))
        config.add_server(server("db", hostname="10.0.0.9", user="postgres", group="data", tags=["prod"]))
        return config

    def test_duplicate_name_rejected(self, config):
        with pytest.raises(ConfigError, match="already exists"):
            config.add_server(server("db"))

    def test_get_missing(self, config):
        with pytest.raises(ConfigError, match="not found"):
            config.get_server("nope")

    def test_filter_by_tag_and_group(self, config):
        assert [s.name for s in config.filter_servers(tags=["prod"])] == ["web-1", "db"]
        assert [s.name for s in config.filter_servers(group="frontend")] == ["web-1", "web-2"]
        assert [s.name for s in config.filter_servers(tags=["prod"], group="frontend")] == ["web-1"]

    def test_filter_matches_any_tag(self, config):
        assert [s.name for s in config.filter_servers(tags=["staging", "prod"])] == ["web-1", "web-2", "db"]
        assert [s.name for s in config.filter_servers(tags=["eu", "staging"], group="frontend")] == [
            "web-1", "web-2",
        ]
        assert config.filter_servers(tags=["nope"]) == []

    @pytest.mark.parametrize("term, names", [
        ("web", ["web-1", "web-2"]),
        ("NGINX", ["web-1"]),
        ("postgres", ["db"]),
        ("10.0.0", ["db"]),
        ("staging", ["web-2"]),
        ("", ["web-1", "web-2", "db"]),
    ])
    def test_search(self, config, term, names):
        assert [s.name for s in config.search(term)] == names

    def test_groups_and_tags(self, config):
        assert config.groups() == ["data", "frontend"]
        assert config.tags() == ["eu", "prod", "staging"]

    def test_delete(self, config):
        config.delete_server("web-2")
        assert not config.has_server("web-2")
        with pytest.raises(ConfigError):
            config.delete_server("web-2")

    def test_replace_keeps_history(self, config):
        config.touch_last_used("db")
        original = config.get_server("db")

        config.replace_server("db", server("db-primary", hostname="10.0.0.10"))

        renamed = config.get_server("db-primary")
        assert renamed.created_at == original.created_at
        assert renamed.last_used == original.last_used
        assert not config.has_server("db")

    def test_replace_rename_collision(self, config):
        with pytest.raises(ConfigError, match="already exists"):
            config.replace_server("db", server("web-1"))

    def test_touch_last_used(self, config):
        config.touch_last_used("web-1")
        assert config.get_server("web-1").last_used


def test_auth_config_descriptor():
    descriptor = AuthConfig(type="key", password="x", identity_file="~/.ssh/id").to_descriptor()
    assert descriptor.method is AuthMethod.KEY_ONLY
    assert descriptor.identity_path == "~/.ssh/id"
    assert not descriptor.sends_password


def test_format_timestamp():
    assert format_timestamp("") == ""
    assert format_timestamp("garbage") == "garbage"
    assert format_timestamp("2026-01-02T03:04:05+00:00", "%Y") == "2026"
