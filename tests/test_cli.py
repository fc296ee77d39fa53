"""Tests for the click command-line interface."""

import json

import pytest
from click.testing import CliRunner

from gssh import cli as cli_module
from gssh.cli import cli, server_table
from gssh.config import AuthConfig, ConfigStore, Server
from gssh.session.base import SessionOutcome
from gssh.session.interactive import SessionResult


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    store = ConfigStore(path)
    store.config.add_server(Server(
        name="web", hostname="10.0.0.5", user="deploy", group="frontend", tags=["prod"],
        auth=AuthConfig(type="password", password='p$[x]"q'),
    ))
    store.config.add_server(Server(
        name="db", hostname="10.0.0.9", user="postgres", tags=["prod", "data"],
        auth=AuthConfig(type="key", identity_file="~/.ssh/id_db"),
    ))
    store.save()
    return path


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, config_path, *args, **kwargs):
    return runner.invoke(cli, ["--config", str(config_path), *args], obj={}, **kwargs)


class RecordingDriver:
    """Replaces InteractiveSessionDriver."""

    logins = []
    outcome = SessionOutcome.LOGGED_IN

    def __init__(self, *args, **kwargs):
        pass

    def login(self, hostname, user, port, descriptor, handoff=None):
        RecordingDriver.logins.append((hostname, user, port, descriptor))
        message = "" if self.outcome is SessionOutcome.LOGGED_IN else "Permission denied (publickey)."
        return SessionResult(self.outcome, 0, message)


@pytest.fixture
def fake_driver(monkeypatch):
    RecordingDriver.logins = []
    RecordingDriver.outcome = SessionOutcome.LOGGED_IN
    monkeypatch.setattr(cli_module, "InteractiveSessionDriver", RecordingDriver)
    return RecordingDriver


def test_version(runner, config_path):
    result = invoke(runner, config_path, "version")
    assert result.exit_code == 0
    assert result.output.startswith("gssh ")


def test_list(runner, config_path):
    result = invoke(runner, config_path, "list")
    assert result.exit_code == 0
    assert "web" in result.output
    assert "2 server(s)" in result.output


def test_server_table_numbers_and_truncates():
    servers = [
        Server(name="a" * 30, hostname="10.0.0.1", user="root", tags=["prod", "eu"]),
        Server(name="b", hostname="10.0.0.2", user="deploy", port=2222),
    ]
    lines = server_table(servers, numbered=True).splitlines()

    assert lines[0].startswith("#   NAME")
    assert set(lines[1]) == {"-"}
    assert lines[2].startswith("1   " + "a" * 19 + " 10.0.0.1")
    assert "prod,eu" in lines[2]
    assert lines[3].startswith("2   b ")
    assert "2222" in lines[3]
    assert server_table([]) == "No matching servers."


def test_list_filters_and_json(runner, config_path):
    result = invoke(runner, config_path, "list", "-t", "data", "--json")
    data = json.loads(result.output)
    assert [s["name"] for s in data] == ["db"]

    result = invoke(runner, config_path, "list", "-t", "data", "-t", "prod", "--json")
    data = json.loads(result.output)
    assert [s["name"] for s in data] == ["web", "db"]

    result = invoke(runner, config_path, "list", "-g", "frontend", "--json")
    data = json.loads(result.output)
    assert [s["name"] for s in data] == ["web"]
    assert data[0]["auth"]["password"] == "***"


def test_show(runner, config_path):
    result = invoke(runner, config_path, "show", "db")
    assert result.exit_code == 0
    assert "postgres" in result.output
    assert "~/.ssh/id_db" in result.output


def test_show_unknown_server(runner, config_path):
    result = invoke(runner, config_path, "show", "nope")
    assert result.exit_code == 1
    assert "error: server 'nope' not found" in result.output


def test_name_falls_through_to_login(runner, config_path, fake_driver):
    result = invoke(runner, config_path, "web")

    assert result.exit_code == 0
    hostname, user, port, descriptor = fake_driver.logins[0]
    assert (hostname, user, port) == ("10.0.0.5", "deploy", 22)
    assert descriptor.password == 'p$[x]"q'
    assert ConfigStore(config_path).config.get_server("web").last_used


def test_failed_login_exits_nonzero(runner, config_path, fake_driver):
    fake_driver.outcome = SessionOutcome.AUTH_FAILED
    result = invoke(runner, config_path, "connect", "db")

    assert result.exit_code == 1
    assert "Permission denied" in result.output
    assert not ConfigStore(config_path).config.get_server("db").last_used


def test_picker_filters_then_connects(runner, config_path, fake_driver):
    result = invoke(runner, config_path, input="post\n1\n")

    assert result.exit_code == 0
    assert "Filter: post" in result.output
    assert fake_driver.logins[0][0] == "10.0.0.9"


def test_picker_quit(runner, config_path, fake_driver):
    result = invoke(runner, config_path, input="q\n")
    assert result.exit_code == 0
    assert fake_driver.logins == []


def test_add(runner, config_path):
    answers = "\n".join([
        "cache", "10.0.0.20", "redis", "6379", "redis box", "data", "prod, cache",
        "auto", "secret", "~/.ssh/id_cache",
    ]) + "\n"
    result = invoke(runner, config_path, "add", input=answers)

    assert result.exit_code == 0, result.output
    cache = ConfigStore(config_path).config.get_server("cache")
    assert cache.port == 6379
    assert cache.tags == ["prod", "cache"]
    assert cache.auth.password == "secret"
    assert cache.auth.identity_file == "~/.ssh/id_cache"
    assert cache.created_at


def test_add_duplicate(runner, config_path):
    answers = "\n".join(["web", "h", "u", "22", "", "", "", "key", "~/.ssh/id_rsa"]) + "\n"
    result = invoke(runner, config_path, "add", input=answers)
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_edit_keeps_unchanged_fields(runner, config_path):
    # accept every default except the port
    answers = "\n".join(["", "", "", "2200", "", "", "", "", ""]) + "\n"
    result = invoke(runner, config_path, "edit", "web", input=answers)

    assert result.exit_code == 0, result.output
    web = ConfigStore(config_path).config.get_server("web")
    assert web.port == 2200
    assert web.hostname == "10.0.0.5"
    assert web.auth.password == 'p$[x]"q'


def test_rm(runner, config_path):
    result = invoke(runner, config_path, "rm", "db", "-y")
    assert result.exit_code == 0
    assert not ConfigStore(config_path).config.has_server("db")


def test_rm_declined(runner, config_path):
    result = invoke(runner, config_path, "rm", "db", input="n\n")
    assert "Aborted" in result.output
    assert ConfigStore(config_path).config.has_server("db")


def test_script_escapes_password(runner, config_path):
    result = invoke(runner, config_path, "script", "web")
    assert result.exit_code == 0
    assert 'set password "p\\$\\[x\\]\\"q"' in result.output
    assert "deploy@10.0.0.5" in result.output


def test_init_with_sync(runner, tmp_path):
    path = tmp_path / "new.yaml"
    answers = "\n".join(["y", "sync.example.com", "me", "", "key", "~/.ssh/id_sync", "n"]) + "\n"
    result = runner.invoke(cli, ["--config", str(path), "init"], input=answers, obj={})

    assert result.exit_code == 0, result.output
    sync = ConfigStore(path).config.sync
    assert sync.enabled
    assert sync.ssh_host == "sync.example.com"
    assert sync.ssh_path == "~/.gssh/config.yaml"
    assert sync.ssh_key == "~/.ssh/id_sync"


def test_init_refuses_to_overwrite(runner, config_path):
    result = invoke(runner, config_path, "init", input="n\n")
    assert "Aborted" in result.output
    assert ConfigStore(config_path).config.has_server("web")


def test_pull_without_sync_prints_diagnostics(runner, config_path):
    result = invoke(runner, config_path, "pull")
    assert result.exit_code == 1
    assert "sync is not enabled" in result.output
    assert "Sync settings:" in result.output
