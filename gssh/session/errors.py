"""
Error taxonomy for the session engine.

Everything derives from GsshError so the CLI can report any failure with a
single except clause. KeyParseError and PassphraseError never escape the
resolver; they become diagnostics and resolution falls through to the next
method.
"""

from __future__ import annotations


class GsshError(Exception):
    """Base class for all gssh failures."""


class NoUsableCredential(GsshError):
    """Credential resolution produced zero usable methods."""


class KeyParseError(GsshError):
    """An identity file could not be read or parsed."""


class PassphraseError(GsshError):
    """An encrypted identity file could not be unlocked."""


class AgentUnavailable(GsshError):
    """ssh-agent could not be reached or offered no keys."""


class DialError(GsshError):
    """Network, handshake or authentication failure on the programmatic path."""


class AuthenticationFailed(GsshError):
    """The remote side explicitly rejected the interactive login."""


class SessionTimeout(GsshError):
    """No terminal state was reached within the login deadline."""


class StreamEndedBeforeLogin(GsshError):
    """The ssh client exited before a shell prompt was ever seen."""


class SessionInterrupted(GsshError):
    """The user interrupted the login before control was handed over."""
