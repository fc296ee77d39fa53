"""
Escaping for strings that end up inside generated scripts or shell commands.

Host names, paths and passwords come from a user-editable YAML file, so
they are treated as untrusted whenever they are embedded in an expect(1)
script or a remote shell command line.
"""

from __future__ import annotations
import shlex

# Characters with meaning inside a double-quoted Tcl word. Backslash must be
# handled first so the escapes added for the others are not doubled.
EXPECT_RESERVED = ("\\", "[", "]", "{", "}", "$", '"', "'")


def escape_expect_string(value: str) -> str:
    """
    Escape a string for use inside a double-quoted expect/Tcl word.

    Every reserved character gets a single leading backslash. Tcl turns
    backslash-char back into char, so the interpreter sees the original
    bytes. The result is never shorter than the input.
    """
    out = []
    for ch in value:
        if ch in EXPECT_RESERVED:
            out.append("\\")
        out.append(ch)
    return "".join(out)


def escape_shell_arg(value: str) -> str:
    """Quote a single argument for a POSIX shell."""
    return shlex.quote(value)


def join_shell_args(args: list[str]) -> str:
    return " ".join(escape_shell_arg(a) for a in args)


def remote_path_arg(path: str) -> str:
    """
    Quote a remote path for the remote shell, keeping a leading '~/'
    expandable.

    '~/.gssh/config.yaml' becomes "$HOME"/'.gssh/config.yaml'.
    """
    if path == "~":
        return '"$HOME"'
    if path.startswith("~/"):
        rest = path[2:]
        return '"$HOME"/' + shlex.quote(rest) if rest else '"$HOME"/'
    return shlex.quote(path)
