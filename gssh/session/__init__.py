"""
Session engine - credential resolution and the two ways of talking to a host.

- InteractiveSessionDriver: system ssh in a PTY, prompts answered with
  pexpect, terminal handed to the user after login
- ProgrammaticSession: paramiko transport for running commands (sync)

Both consume an AuthDescriptor; CredentialResolver turns it into
authentication methods.
"""

from .base import (
    AuthMethod,
    AuthDescriptor,
    CredentialSource,
    AttemptOutcome,
    CredentialAttempt,
    SessionOutcome,
    PromptEvent,
)
from .credentials import (
    CredentialResolver,
    ResolvedCredentials,
    InteractivePlan,
    AgentAuth,
    SocketAgent,
    KeyAuth,
    PasswordAuth,
)
from .errors import (
    GsshError,
    NoUsableCredential,
    KeyParseError,
    PassphraseError,
    AgentUnavailable,
    DialError,
    AuthenticationFailed,
    SessionTimeout,
    StreamEndedBeforeLogin,
    SessionInterrupted,
)
from .interactive import (
    InteractiveSessionDriver,
    LoginMachine,
    SessionResult,
    PROMPT_RULES,
    render_expect_script,
    build_ssh_argv,
)
from .ssh import ProgrammaticSession, CommandResult, open_session

__all__ = [
    # Model
    "AuthMethod",
    "AuthDescriptor",
    "CredentialSource",
    "AttemptOutcome",
    "CredentialAttempt",
    "SessionOutcome",
    "PromptEvent",
    # Credentials
    "CredentialResolver",
    "ResolvedCredentials",
    "InteractivePlan",
    "AgentAuth",
    "SocketAgent",
    "KeyAuth",
    "PasswordAuth",
    # Errors
    "GsshError",
    "NoUsableCredential",
    "KeyParseError",
    "PassphraseError",
    "AgentUnavailable",
    "DialError",
    "AuthenticationFailed",
    "SessionTimeout",
    "StreamEndedBeforeLogin",
    "SessionInterrupted",
    # Sessions
    "InteractiveSessionDriver",
    "LoginMachine",
    "SessionResult",
    "PROMPT_RULES",
    "render_expect_script",
    "build_ssh_argv",
    "ProgrammaticSession",
    "CommandResult",
    "open_session",
]
