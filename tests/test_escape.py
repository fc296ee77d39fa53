"""Tests for script and shell escaping."""

import pytest

from gssh.session.escape import (
    EXPECT_RESERVED,
    escape_expect_string,
    escape_shell_arg,
    join_shell_args,
    remote_path_arg,
)
from gssh.session.paths import agent_socket, expand_home


def tcl_unescape(value: str) -> str:
    """Backslash-char -> char, as Tcl does for the reserved set."""
    out = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            out.append(next(chars))
        else:
            out.append(ch)
    return "".join(out)


AWKWARD = [
    "",
    "plain",
    "p@ss",
    'a"b',
    "it's",
    "$HOME",
    "[exec rm -rf ~]",
    "{braces}",
    "back\\slash",
    "\\\\",
    "trailing\\",
    "mix $[{\"'\\}]",
    "ünïcødé $",
]


@pytest.mark.parametrize("value", AWKWARD)
def test_expect_escape_round_trips(value):
    escaped = escape_expect_string(value)
    assert tcl_unescape(escaped) == value
    assert len(escaped) >= len(value)


def test_every_reserved_character_is_prefixed():
    for ch in EXPECT_RESERVED:
        assert escape_expect_string(ch) == "\\" + ch


def test_unreserved_text_untouched():
    assert escape_expect_string("user@host:22") == "user@host:22"


def test_shell_arg_quotes_metacharacters():
    assert escape_shell_arg("a b") == "'a b'"
    assert escape_shell_arg("safe") == "safe"
    assert join_shell_args(["ssh", "-p", "22", "a;b"]) == "ssh -p 22 'a;b'"


@pytest.mark.parametrize("path, expected", [
    ("~", '"$HOME"'),
    ("~/.gssh/config.yaml", '"$HOME"/.gssh/config.yaml'),
    ("~/dir with space/c.yaml", "\"$HOME\"/'dir with space/c.yaml'"),
    ("/etc/gssh.yaml", "/etc/gssh.yaml"),
    ("/tmp/$(reboot)", "'/tmp/$(reboot)'"),
])
def test_remote_path_arg(path, expected):
    assert remote_path_arg(path) == expected


def test_expand_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert expand_home("~/.ssh/id_rsa") == str(tmp_path / ".ssh" / "id_rsa")
    assert expand_home("/abs/key") == "/abs/key"
    assert expand_home("") == ""


def test_agent_socket():
    assert agent_socket({"SSH_AUTH_SOCK": "/run/agent"}) == "/run/agent"
    assert agent_socket({"SSH_AUTH_SOCK": ""}) is None
    assert agent_socket({}) is None
