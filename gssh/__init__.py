"""
gssh - SSH connection manager.

Keeps a YAML inventory of servers, logs in through the system ssh client
with stored credentials answered automatically, and syncs the inventory
between machines over SSH.
"""

__version__ = "0.1.0"

from .session import (
    AuthDescriptor,
    AuthMethod,
    CredentialResolver,
    InteractiveSessionDriver,
    open_session,
    GsshError,
)

__all__ = [
    "AuthDescriptor",
    "AuthMethod",
    "CredentialResolver",
    "InteractiveSessionDriver",
    "open_session",
    "GsshError",
]
