"""
Credential resolution.

Turns an identity file path and a stored password into an ordered list of
authentication methods for paramiko, and decides which credentials the
interactive ssh client should be given. Resolution order is fixed:

    1. ssh-agent (if SSH_AUTH_SOCK is set), connected lazily
    2. identity file (unencrypted, or unlocked with a prompted passphrase)
    3. password, always last
"""

from __future__ import annotations
import getpass
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import Callable, Optional

import paramiko
from paramiko.agent import AgentSSH

from .base import (
    AuthDescriptor, AuthMethod, AttemptOutcome, CredentialAttempt, CredentialSource,
)
from .errors import (
    AgentUnavailable, KeyParseError, NoUsableCredential, PassphraseError,
)
from .paths import agent_socket, expand_home

logger = logging.getLogger(__name__)

# Tried in order; an encrypted key of any type raises PasswordRequiredException
KEY_CLASSES = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


class PassphraseRequired(PassphraseError):
    """The identity file is encrypted and no passphrase was supplied."""


def parse_private_key(key_data: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """
    Parse private key material.

    Raises:
        PassphraseRequired: key is encrypted and passphrase is None
        PassphraseError: key is encrypted and passphrase is wrong
        KeyParseError: anything else
    """
    key_file = StringIO(key_data)
    encrypted = False
    last_error: Optional[Exception] = None

    for key_class in KEY_CLASSES:
        try:
            key_file.seek(0)
            return key_class.from_private_key(key_file, password=passphrase)
        except paramiko.PasswordRequiredException as e:
            encrypted = True
            last_error = e
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
            continue

    if encrypted and passphrase is None:
        raise PassphraseRequired("private key is encrypted")
    if passphrase is not None:
        raise PassphraseError(f"unable to decrypt private key: {last_error}")
    raise KeyParseError(f"unsupported or invalid private key: {last_error}")


class AuthStep(ABC):
    """One queued authentication method for a paramiko transport."""

    source: CredentialSource

    @abstractmethod
    def authenticate(self, transport: paramiko.Transport, username: str) -> None:
        """Try this method; raise paramiko.AuthenticationException on rejection."""

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class SocketAgent(AgentSSH):
    """
    paramiko agent client connected to the given socket path.

    Unlike paramiko.Agent, the socket comes from the caller, not os.environ.
    """

    def __init__(self, socket_path: str):
        super().__init__()
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(socket_path)
            self._connect(conn)
        except (OSError, paramiko.SSHException):
            conn.close()
            raise

    def close(self) -> None:
        self._close()


class AgentAuth(AuthStep):
    """
    ssh-agent backed public key auth.

    The agent is only contacted when authenticate() runs. The connection is
    then owned by the session and closed when the session closes; closing it
    earlier would cut the channel the transport is still signing through.
    """

    source = CredentialSource.AGENT

    def __init__(self, socket_path: str, agent_factory: Callable[[str], object] = SocketAgent):
        self.socket_path = socket_path
        self._agent_factory = agent_factory
        self._agent = None

    def authenticate(self, transport: paramiko.Transport, username: str) -> None:
        if self._agent is None:
            try:
                self._agent = self._agent_factory(self.socket_path)
            except (paramiko.SSHException, OSError) as e:
                raise AgentUnavailable(f"cannot reach ssh-agent at {self.socket_path}: {e}") from e

        keys = self._agent.get_keys()
        if not keys:
            raise AgentUnavailable(f"ssh-agent at {self.socket_path} offered no keys")

        last_error = None
        for key in keys:
            try:
                transport.auth_publickey(username, key)
            except paramiko.SSHException as e:
                last_error = e
                continue
            if transport.is_authenticated():
                logger.info(f"Authenticated with agent key {key.get_name()}")
                return

        raise paramiko.AuthenticationException(
            f"all {len(keys)} agent key(s) rejected: {last_error}"
        )

    def close(self) -> None:
        if self._agent is not None:
            self._agent.close()
            self._agent = None


class KeyAuth(AuthStep):
    source = CredentialSource.IDENTITY_FILE

    def __init__(self, pkey: paramiko.PKey, path: str):
        self.pkey = pkey
        self.path = path

    def authenticate(self, transport: paramiko.Transport, username: str) -> None:
        transport.auth_publickey(username, self.pkey)

    def __repr__(self) -> str:
        return f"<KeyAuth {self.path}>"


class PasswordAuth(AuthStep):
    source = CredentialSource.PASSWORD

    def __init__(self, password: str):
        self._password = password

    def authenticate(self, transport: paramiko.Transport, username: str) -> None:
        transport.auth_password(username, self._password)


@dataclass
class ResolvedCredentials:
    """Ordered methods plus the attempts that produced them."""
    methods: list[AuthStep]
    attempts: list[CredentialAttempt] = field(default_factory=list)

    @property
    def sources(self) -> list[CredentialSource]:
        return [m.source for m in self.methods]

    def close(self) -> None:
        for method in self.methods:
            method.close()


@dataclass
class InteractivePlan:
    """Effective descriptor for the interactive ssh client."""
    descriptor: AuthDescriptor
    attempts: list[CredentialAttempt] = field(default_factory=list)


class CredentialResolver:
    """
    Builds authentication methods from an agent, an identity file and a
    password.

    Args:
        environ: Environment to read SSH_AUTH_SOCK from (default os.environ)
        passphrase_prompt: No-echo input used to unlock encrypted keys
        agent_factory: Creates the agent client when the agent method is used
    """

    def __init__(
        self,
        environ: Optional[dict] = None,
        passphrase_prompt: Callable[[str], str] = getpass.getpass,
        agent_factory: Callable[[str], object] = SocketAgent,
    ):
        self._environ = environ
        self._passphrase_prompt = passphrase_prompt
        self._agent_factory = agent_factory

    def resolve(
        self,
        identity_path: Optional[str],
        password: Optional[str],
    ) -> ResolvedCredentials:
        """
        Resolve credentials for a programmatic session.

        Raises:
            NoUsableCredential: no method could be queued
        """
        methods: list[AuthStep] = []
        attempts: list[CredentialAttempt] = []

        socket_path = agent_socket(self._environ)
        if socket_path:
            methods.append(AgentAuth(socket_path, self._agent_factory))
            attempts.append(CredentialAttempt(
                CredentialSource.AGENT, AttemptOutcome.SUCCESS, f"queued {socket_path}"
            ))

        if identity_path:
            agent_queued = any(m.source is CredentialSource.AGENT for m in methods)
            pkey, attempt = self._probe_identity(
                identity_path, agent_queued=agent_queued, may_prompt=True
            )
            attempts.append(attempt)
            if pkey is not None:
                methods.append(KeyAuth(pkey, expand_home(identity_path)))

        if password:
            methods.append(PasswordAuth(password))
            attempts.append(CredentialAttempt(CredentialSource.PASSWORD, AttemptOutcome.SUCCESS))

        for attempt in attempts:
            logger.debug(f"Credential attempt: {attempt}")

        if not methods:
            raise NoUsableCredential(self._diagnose(identity_path, password, attempts))

        logger.info(f"Resolved auth methods: {', '.join(m.source.value for m in methods)}")
        return ResolvedCredentials(methods, attempts)

    def plan_interactive(self, descriptor: AuthDescriptor) -> InteractivePlan:
        """
        Decide which credentials the interactive ssh client receives.

        Never prompts. In auto mode an identity file that cannot be used
        non-interactively is dropped, and the login proceeds password-only
        when a password is stored.
        """
        method = descriptor.method

        if method is AuthMethod.PASSWORD_ONLY:
            if not descriptor.password:
                raise NoUsableCredential(
                    "password authentication selected but no password is configured"
                )
            return InteractivePlan(AuthDescriptor(method, None, descriptor.password))

        if method is AuthMethod.KEY_ONLY:
            identity = expand_home(descriptor.identity_path) if descriptor.identity_path else None
            return InteractivePlan(AuthDescriptor(method, identity, None))

        if not descriptor.identity_path:
            return InteractivePlan(AuthDescriptor(method, None, descriptor.password))

        agent_available = agent_socket(self._environ) is not None
        _, attempt = self._probe_identity(
            descriptor.identity_path, agent_queued=agent_available, may_prompt=False
        )
        identity = expand_home(descriptor.identity_path)
        key_usable = attempt.outcome is AttemptOutcome.SUCCESS or (
            attempt.outcome is AttemptOutcome.PASSPHRASE_REQUIRED and agent_available
        )
        if key_usable:
            return InteractivePlan(AuthDescriptor(method, identity, descriptor.password), [attempt])

        logger.info(f"Identity file not usable ({attempt.detail}); falling back to password")
        if descriptor.password:
            return InteractivePlan(
                AuthDescriptor(AuthMethod.PASSWORD_ONLY, None, descriptor.password), [attempt]
            )
        return InteractivePlan(AuthDescriptor(method, None, None), [attempt])

    def _probe_identity(
        self,
        identity_path: str,
        agent_queued: bool,
        may_prompt: bool,
    ) -> tuple[Optional[paramiko.PKey], CredentialAttempt]:
        """Try to load an identity file. Returns (key or None, attempt)."""
        source = CredentialSource.IDENTITY_FILE
        path = expand_home(identity_path)

        try:
            key_data = Path(path).read_text()
        except (OSError, ValueError) as e:
            return None, CredentialAttempt(
                source, AttemptOutcome.UNUSABLE, f"cannot read identity file {path}: {e}"
            )

        try:
            return parse_private_key(key_data), CredentialAttempt(
                source, AttemptOutcome.SUCCESS, path
            )
        except PassphraseRequired:
            pass
        except (KeyParseError, PassphraseError) as e:
            return None, CredentialAttempt(
                source, AttemptOutcome.PARSE_ERROR, f"cannot parse identity file {path}: {e}"
            )

        # Encrypted key. An agent that is already queued most likely holds the
        # decrypted key, so never block on input in that case.
        if agent_queued:
            return None, CredentialAttempt(
                source, AttemptOutcome.PASSPHRASE_REQUIRED,
                f"{path} is encrypted; deferring to ssh-agent",
            )
        if not may_prompt:
            return None, CredentialAttempt(
                source, AttemptOutcome.PASSPHRASE_REQUIRED,
                f"{path} is encrypted and no ssh-agent is available",
            )

        try:
            passphrase = self._passphrase_prompt(f"Enter passphrase for key '{path}': ")
        except (EOFError, OSError) as e:
            return None, CredentialAttempt(
                source, AttemptOutcome.UNUSABLE, f"cannot read passphrase for {path}: {e}"
            )

        try:
            return parse_private_key(key_data, passphrase), CredentialAttempt(
                source, AttemptOutcome.SUCCESS, f"{path} (unlocked)"
            )
        except (KeyParseError, PassphraseError) as e:
            return None, CredentialAttempt(
                source, AttemptOutcome.UNUSABLE, f"wrong passphrase for {path}: {e}"
            )

    @staticmethod
    def _diagnose(
        identity_path: Optional[str],
        password: Optional[str],
        attempts: list[CredentialAttempt],
    ) -> str:
        lines = ["no usable authentication method."]
        key_errors = [
            a.detail for a in attempts
            if a.source is CredentialSource.IDENTITY_FILE and a.outcome is not AttemptOutcome.SUCCESS
        ]
        if key_errors:
            lines.append(f"key authentication failed: {key_errors[0]}")
        if not identity_path and not password:
            lines.append("configure an identity file or a password for this host.")
        elif not password:
            lines.append(
                "key authentication failed and no password is configured; "
                "check the identity file or configure a password."
            )
        return "\n".join(lines)
