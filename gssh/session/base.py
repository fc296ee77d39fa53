"""
Shared data model for the session engine.

Both the interactive driver and the programmatic client consume an
AuthDescriptor; the enums here name the states, events and outcomes the
engine reports back to its callers.
"""

from __future__ import annotations
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional


class AuthMethod(Enum):
    """How a host wants to be authenticated."""
    KEY_ONLY = "key"
    AUTO_FALLBACK = "auto"
    PASSWORD_ONLY = "password"

    @classmethod
    def parse(cls, value: Optional[str], identity_path: Optional[str] = None) -> AuthMethod:
        """
        Map a stored method name to an AuthMethod.

        An empty value is the config default ("auto"). Unknown values fall
        back to "auto" when an identity path is present, else "password".
        """
        name = (value or "").strip().lower()
        if not name:
            return cls.AUTO_FALLBACK
        for member in cls:
            if member.value == name:
                return member
        return cls.AUTO_FALLBACK if identity_path else cls.PASSWORD_ONLY


@dataclass(frozen=True)
class AuthDescriptor:
    """Immutable per-invocation authentication request."""
    method: AuthMethod
    identity_path: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        method: Optional[str],
        identity_path: Optional[str] = None,
        password: Optional[str] = None,
    ) -> AuthDescriptor:
        identity_path = identity_path or None
        return cls(
            method=AuthMethod.parse(method, identity_path),
            identity_path=identity_path,
            password=password or None,
        )

    @property
    def uses_identity(self) -> bool:
        """PASSWORD_ONLY never consults the identity file."""
        return self.method != AuthMethod.PASSWORD_ONLY and bool(self.identity_path)

    @property
    def sends_password(self) -> bool:
        """KEY_ONLY never auto-sends a password, even if one is stored."""
        return self.method != AuthMethod.KEY_ONLY and bool(self.password)

    def __repr__(self) -> str:
        password = "***" if self.password else None
        return (
            f"AuthDescriptor(method={self.method.value}, "
            f"identity_path={self.identity_path!r}, password={password})"
        )


class CredentialSource(Enum):
    AGENT = "agent"
    IDENTITY_FILE = "identity_file"
    PASSWORD = "password"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    PARSE_ERROR = "parse_error"
    PASSPHRASE_REQUIRED = "passphrase_required"
    UNUSABLE = "unusable"


@dataclass(frozen=True)
class CredentialAttempt:
    """One step of credential resolution, kept for diagnostics only."""
    source: CredentialSource
    outcome: AttemptOutcome
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.source.value}: {self.outcome.value}"
        return f"{text} ({self.detail})" if self.detail else text


class SessionOutcome(Enum):
    """Terminal result of one interactive login attempt."""
    LOGGED_IN = auto()
    AUTH_FAILED = auto()
    CONNECTION_CLOSED = auto()
    TIMEOUT = auto()
    INTERRUPTED = auto()


class PromptEvent(Enum):
    """Classes of output the interactive driver reacts to."""
    HOST_KEY_CONFIRMATION = auto()
    AUTH_FAILURE_SIGNAL = auto()
    PASSWORD_PROMPT = auto()
    PASSPHRASE_PROMPT = auto()
    SHELL_PROMPT_DETECTED = auto()
    STREAM_END = auto()
    DEADLINE = auto()
