"""
Filesystem and environment lookups shared by both session paths.
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Optional

AGENT_SOCKET_ENV = "SSH_AUTH_SOCK"


def expand_home(path: str) -> str:
    """Expand a leading '~' to the user's home directory."""
    if not path or not path.startswith("~"):
        return path
    return os.path.expanduser(path)


def known_hosts_path() -> Path:
    """User-scoped known-hosts store."""
    return Path.home() / ".ssh" / "known_hosts"


def agent_socket(environ: Optional[dict] = None) -> Optional[str]:
    """Path of the ssh-agent socket, or None when no agent is advertised."""
    env = os.environ if environ is None else environ
    return env.get(AGENT_SOCKET_ENV) or None
