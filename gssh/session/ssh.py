"""
Programmatic SSH session using paramiko.

Used for non-interactive work such as config sync: open a transport, verify
the host key against the user's known_hosts, walk the resolved
authentication methods in order, then run commands with stdout and stderr
combined.
"""

from __future__ import annotations
import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko
from paramiko.hostkeys import InvalidHostKey

from .credentials import ResolvedCredentials
from .errors import AgentUnavailable, DialError
from .paths import known_hosts_path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 10.0
READ_BUFFER_SIZE = 32768


@dataclass
class CommandResult:
    """Combined output and exit status of one remote command."""
    command: str
    output: bytes
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def text(self, encoding: str = "utf-8") -> str:
        return self.output.decode(encoding, errors="replace")


def host_key_name(hostname: str, port: int) -> str:
    """known_hosts entry name: bare host on 22, else [host]:port."""
    if port == DEFAULT_PORT:
        return hostname
    return f"[{hostname}]:{port}"


class HostKeyVerifier:
    """
    Checks server keys against a known_hosts file.

    If the file cannot be loaded the verifier becomes permissive and says so
    with a warning, so first-time sync from a fresh machine still works.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else known_hosts_path()
        self.permissive = False
        self._host_keys: Optional[paramiko.HostKeys] = None

    def load(self) -> None:
        try:
            self._host_keys = paramiko.HostKeys(str(self.path))
        except (OSError, InvalidHostKey, paramiko.SSHException) as e:
            self.permissive = True
            self._host_keys = None
            logger.warning(
                f"Known hosts file {self.path} unavailable ({e}); "
                f"host keys will NOT be verified"
            )

    def prefer_known_key_type(self, transport: paramiko.Transport, hostname: str, port: int) -> None:
        """Ask the server for the key type we already have on record."""
        if self._host_keys is None:
            return
        known = self._host_keys.lookup(host_key_name(hostname, port))
        if not known:
            return
        key_type = list(known.keys())[0]
        options = transport.get_security_options()
        others = [t for t in options.key_types if t != key_type]
        if key_type in options.key_types:
            options.key_types = [key_type] + others

    def verify(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        if self.permissive:
            return
        name = host_key_name(hostname, port)
        known = self._host_keys.lookup(name) if self._host_keys is not None else None
        if not known:
            raise DialError(
                f"host key for {name} is not in {self.path}; "
                f"connect once with ssh to record it"
            )
        expected = known.get(key.get_name())
        if expected is None or expected != key:
            raise DialError(
                f"host key for {name} does not match {self.path} "
                f"({key.get_name()} {key.get_fingerprint().hex()})"
            )
        logger.debug(f"Host key for {name} verified")


class ProgrammaticSession:
    """
    Authenticated paramiko transport for running commands.

    Owns the credentials it was opened with; closing the session also
    closes any agent connection the credentials opened.
    """

    def __init__(
        self,
        hostname: str,
        username: str,
        port: int,
        credentials: ResolvedCredentials,
        timeout: float = DEFAULT_TIMEOUT,
        verifier: Optional[HostKeyVerifier] = None,
    ):
        self.hostname = hostname
        self.username = username
        self.port = port or DEFAULT_PORT
        self.timeout = timeout
        self._credentials = credentials
        self._verifier = verifier or HostKeyVerifier()
        self._transport: Optional[paramiko.Transport] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._transport is not None
            and self._transport.is_active()
            and self._transport.is_authenticated()
        )

    def connect(self) -> None:
        """Dial, verify the host key and authenticate. Closes itself on failure."""
        target = f"{self.hostname}:{self.port}"
        logger.info(f"Connecting to {self.username}@{target}")

        try:
            sock = socket.create_connection((self.hostname, self.port), timeout=self.timeout)
        except OSError as e:
            self.close()
            raise DialError(f"cannot connect to {target}: {e}") from e

        try:
            self._transport = paramiko.Transport(sock)
        except (paramiko.SSHException, OSError) as e:
            sock.close()
            self.close()
            raise DialError(f"cannot start SSH transport to {target}: {e}") from e

        try:
            self._verifier.load()
            self._verifier.prefer_known_key_type(self._transport, self.hostname, self.port)
            self._transport.start_client(timeout=self.timeout)
            self._verifier.verify(self.hostname, self.port, self._transport.get_remote_server_key())
            self._authenticate()
        except DialError:
            self.close()
            raise
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise DialError(f"SSH handshake with {target} failed: {e}") from e

    def _authenticate(self) -> None:
        failures = []
        for method in self._credentials.methods:
            try:
                method.authenticate(self._transport, self.username)
            except (AgentUnavailable, paramiko.AuthenticationException) as e:
                logger.debug(f"{method.source.value} auth failed: {e}")
                failures.append(f"{method.source.value}: {e}")
                continue
            if self._transport.is_authenticated():
                logger.info(f"Authenticated to {self.hostname} via {method.source.value}")
                return

        detail = "; ".join(failures) or "no methods"
        raise DialError(f"authentication to {self.username}@{self.hostname} failed ({detail})")

    def run(self, command: str, stdin: Optional[bytes] = None) -> CommandResult:
        """
        Run one command, returning combined stdout/stderr and exit status.

        A non-zero exit status is returned, not raised.
        """
        if not self.is_open:
            raise DialError("session is not open")

        logger.debug(f"Running: {command}")
        try:
            channel = self._transport.open_session(timeout=self.timeout)
        except (paramiko.SSHException, OSError) as e:
            raise DialError(f"cannot open channel: {e}") from e

        try:
            channel.set_combine_stderr(True)
            channel.exec_command(command)
            if stdin is not None:
                channel.sendall(stdin)
            channel.shutdown_write()

            chunks = []
            while True:
                data = channel.recv(READ_BUFFER_SIZE)
                if not data:
                    break
                chunks.append(data)
            exit_status = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise DialError(f"command failed: {e}") from e
        finally:
            channel.close()

        logger.debug(f"Command exited with status {exit_status}")
        return CommandResult(command, b"".join(chunks), exit_status)

    def close(self) -> None:
        """Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as e:
                logger.debug(f"Error closing transport: {e}")
            self._transport = None

        self._credentials.close()

    def __enter__(self) -> ProgrammaticSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_session(
    hostname: str,
    username: str,
    port: int,
    credentials: ResolvedCredentials,
    timeout: float = DEFAULT_TIMEOUT,
    verifier: Optional[HostKeyVerifier] = None,
) -> ProgrammaticSession:
    """
    Open an authenticated session. Use as a context manager:

        with open_session(host, user, 22, creds) as session:
            result = session.run("uname -a")
    """
    session = ProgrammaticSession(hostname, username, port, credentials, timeout, verifier)
    session.connect()
    return session
