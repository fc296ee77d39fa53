"""
Interactive login through the system ssh client.

The ssh binary is spawned in a pseudo-terminal with pexpect. Its output is
mirrored to the user while a small state machine watches for host key
confirmations, authentication failures, password and key passphrase prompts,
and the shell prompt. Once the shell prompt appears (or the user has to type something
themselves) the terminal is handed over and every further byte passes
through untouched.

The same prompt rules render an equivalent expect(1) script, for users who
want to run the login outside Python.
"""

from __future__ import annotations
import logging
import os
import re
import shutil
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional, Sequence

import pexpect

from .base import AuthDescriptor, AuthMethod, PromptEvent, SessionOutcome
from .credentials import CredentialResolver
from .errors import (
    AuthenticationFailed, DialError, SessionInterrupted, SessionTimeout,
    StreamEndedBeforeLogin,
)
from .escape import escape_expect_string, join_shell_args
from .paths import expand_home

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT = 30
AFFIRMATIVE = "yes"
# ssh exits 255 on its own errors, including exhausted authentication
SSH_ERROR_STATUS = 255


@dataclass(frozen=True)
class PromptRule:
    """Regex that classifies a piece of ssh output as a PromptEvent."""
    event: PromptEvent
    pattern: str

    def compile(self) -> re.Pattern:
        return re.compile(self.pattern, re.DOTALL)


# Order is only a tie-break; pexpect reports the match that starts earliest
# in the stream. Patterns must stay valid for both Python re and Tcl ARE.
PROMPT_RULES: tuple[PromptRule, ...] = (
    PromptRule(PromptEvent.HOST_KEY_CONFIRMATION, r"(?i)yes/no"),
    PromptRule(PromptEvent.AUTH_FAILURE_SIGNAL, r"(?i)permission denied|failed password"),
    PromptRule(PromptEvent.PASSWORD_PROMPT, r"(?i)password[^\r\n:]*:"),
    PromptRule(PromptEvent.PASSPHRASE_PROMPT, r"(?i)enter passphrase[^\r\n]*:"),
    PromptRule(PromptEvent.SHELL_PROMPT_DETECTED, r"[$#][ \t]*$"),
)


class LoginState(Enum):
    SPAWNED = auto()
    AWAITING_HOST_KEY = auto()
    AWAITING_AUTH = auto()
    LOGGED_IN = auto()
    FAILED = auto()


class Action(Enum):
    """What the driver should do after an event."""
    CONTINUE = auto()
    SEND_AFFIRMATIVE = auto()
    SEND_PASSWORD = auto()
    HANDOFF = auto()
    TERMINATE = auto()
    STOP = auto()


@dataclass
class LoginMachine:
    """
    Pure login state machine. Feed it PromptEvents, act on the Actions.

    Invariants:
        - the stored password is sent at most once
        - an auth failure seen before a shell prompt always fails the login
        - LOGGED_IN and FAILED are terminal
    """

    descriptor: AuthDescriptor
    state: LoginState = LoginState.SPAWNED
    outcome: Optional[SessionOutcome] = None
    message: str = ""
    password_sent: bool = False
    login_confirmed: bool = False
    manual_handoff: bool = False
    history: list = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state in (LoginState.LOGGED_IN, LoginState.FAILED)

    def advance(self, event: PromptEvent, detail: str = "") -> Action:
        if self.state is LoginState.FAILED:
            return Action.STOP
        if self.state is LoginState.LOGGED_IN:
            return Action.STOP if event is PromptEvent.STREAM_END else Action.CONTINUE

        handler = getattr(self, self._HANDLERS[event])
        action = handler(detail)
        self.history.append((event, self.state, action))
        logger.debug(f"Login event {event.name} -> {self.state.name} ({action.name})")
        return action

    def _on_host_key(self, detail: str) -> Action:
        self.state = LoginState.AWAITING_HOST_KEY
        return Action.SEND_AFFIRMATIVE

    def _on_auth_failure(self, detail: str) -> Action:
        self.fail(SessionOutcome.AUTH_FAILED, detail or "permission denied")
        return Action.TERMINATE

    def _on_password_prompt(self, detail: str) -> Action:
        if self.password_sent:
            self.fail(SessionOutcome.AUTH_FAILED, "password rejected")
            return Action.TERMINATE

        self.state = LoginState.AWAITING_AUTH
        if self.descriptor.sends_password:
            self.password_sent = True
            return Action.SEND_PASSWORD

        # Nothing to send automatically; the user answers this one.
        self.manual_handoff = True
        return Action.HANDOFF

    def _on_passphrase_prompt(self, detail: str) -> Action:
        # The key's passphrase is never stored, whatever the mode.
        self.state = LoginState.AWAITING_AUTH
        self.manual_handoff = True
        return Action.HANDOFF

    def _on_shell_prompt(self, detail: str) -> Action:
        self.login_confirmed = True
        self.state = LoginState.LOGGED_IN
        self.outcome = SessionOutcome.LOGGED_IN
        return Action.HANDOFF

    def _on_stream_end(self, detail: str) -> Action:
        self.fail(SessionOutcome.CONNECTION_CLOSED, detail or "ssh exited before login")
        return Action.STOP

    def _on_deadline(self, detail: str) -> Action:
        self.fail(SessionOutcome.TIMEOUT, detail or "login timed out")
        return Action.TERMINATE

    _HANDLERS = {
        PromptEvent.HOST_KEY_CONFIRMATION: "_on_host_key",
        PromptEvent.AUTH_FAILURE_SIGNAL: "_on_auth_failure",
        PromptEvent.PASSWORD_PROMPT: "_on_password_prompt",
        PromptEvent.PASSPHRASE_PROMPT: "_on_passphrase_prompt",
        PromptEvent.SHELL_PROMPT_DETECTED: "_on_shell_prompt",
        PromptEvent.STREAM_END: "_on_stream_end",
        PromptEvent.DEADLINE: "_on_deadline",
    }

    def fail(self, outcome: SessionOutcome, message: str = "") -> None:
        self.state = LoginState.FAILED
        self.outcome = outcome
        self.message = message

    def interrupt(self) -> None:
        if not self.done:
            self.fail(SessionOutcome.INTERRUPTED, "interrupted")

    def finish_manual(self, exit_status: Optional[int]) -> None:
        """Settle a login the user completed by hand, from ssh's exit status."""
        if self.done:
            return
        if exit_status == SSH_ERROR_STATUS:
            self.fail(SessionOutcome.AUTH_FAILED, f"ssh exited with status {exit_status}")
        else:
            self.state = LoginState.LOGGED_IN
            self.outcome = SessionOutcome.LOGGED_IN


@dataclass
class SessionResult:
    outcome: SessionOutcome
    exit_status: Optional[int] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is SessionOutcome.LOGGED_IN

    def raise_for_outcome(self) -> None:
        """Raise the matching GsshError unless the login succeeded."""
        error = {
            SessionOutcome.AUTH_FAILED: AuthenticationFailed,
            SessionOutcome.CONNECTION_CLOSED: StreamEndedBeforeLogin,
            SessionOutcome.TIMEOUT: SessionTimeout,
            SessionOutcome.INTERRUPTED: SessionInterrupted,
        }.get(self.outcome)
        if error is not None:
            raise error(self.message or self.outcome.name.lower().replace("_", " "))


def build_ssh_argv(
    ssh_command: Sequence[str],
    hostname: str,
    username: str,
    port: int,
    descriptor: AuthDescriptor,
) -> list[str]:
    """Command line for the ssh client. Host key checking stays on."""
    argv = list(ssh_command)
    argv.extend(["-p", str(port or 22)])

    if descriptor.method is AuthMethod.PASSWORD_ONLY:
        argv.extend([
            "-o", "PreferredAuthentications=keyboard-interactive,password",
        ])
    elif descriptor.uses_identity:
        argv.extend(["-i", expand_home(descriptor.identity_path)])

    argv.extend(["--", f"{username}@{hostname}"])
    return argv


def find_ssh() -> Optional[str]:
    path = shutil.which("ssh")
    if path:
        logger.debug(f"Found SSH: {path}")
    return path


def interact_with_user(child: pexpect.spawn) -> None:
    """
    Give the terminal to the user until ssh exits, tracking window resizes.
    """
    # Everything read so far was already mirrored to the terminal.
    child.logfile_read = None
    child.buffer = child.string_type()

    def _resize(signum, frame):
        cols, rows = shutil.get_terminal_size()
        try:
            child.setwinsize(rows, cols)
        except OSError as e:
            logger.debug(f"Resize failed: {e}")

    previous = signal.signal(signal.SIGWINCH, _resize)
    try:
        _resize(None, None)
        child.interact()
    finally:
        signal.signal(signal.SIGWINCH, previous)


class InteractiveSessionDriver:
    """
    Drives the ssh client through login, then hands the terminal over.

    Args:
        resolver: Decides which credentials ssh is given
        ssh_command: Client command prefix; defaults to the ssh on PATH
        timeout: Seconds allowed to reach a terminal login state
        spawn: pexpect.spawn or a compatible factory
        echo: Where ssh output is mirrored before handoff
    """

    def __init__(
        self,
        resolver: Optional[CredentialResolver] = None,
        ssh_command: Optional[Sequence[str]] = None,
        timeout: float = LOGIN_TIMEOUT,
        spawn: Callable[..., pexpect.spawn] = pexpect.spawn,
        echo=None,
    ):
        self._resolver = resolver or CredentialResolver()
        self._ssh_command = list(ssh_command) if ssh_command else None
        self._timeout = timeout
        self._spawn = spawn
        self._echo = echo if echo is not None else sys.stdout
        self._patterns = [rule.compile() for rule in PROMPT_RULES] + [pexpect.EOF, pexpect.TIMEOUT]
        self._events = [rule.event for rule in PROMPT_RULES] + [
            PromptEvent.STREAM_END, PromptEvent.DEADLINE,
        ]

    def _command_prefix(self) -> list[str]:
        if self._ssh_command:
            return self._ssh_command
        ssh_path = find_ssh()
        if not ssh_path:
            raise DialError("ssh not found. Please install OpenSSH.")
        return [ssh_path]

    def login(
        self,
        hostname: str,
        username: str,
        port: int,
        descriptor: AuthDescriptor,
        handoff: Optional[Callable[[pexpect.spawn], None]] = None,
    ) -> SessionResult:
        """
        Log in and hand the terminal over.

        Returns once ssh has exited (after handoff) or the login failed.
        """
        plan = self._resolver.plan_interactive(descriptor)
        for attempt in plan.attempts:
            logger.info(f"Credential attempt: {attempt}")

        argv = build_ssh_argv(self._command_prefix(), hostname, username, port, plan.descriptor)
        logger.info(f"SSH command: {join_shell_args(argv)}")

        cols, rows = shutil.get_terminal_size()
        env = os.environ.copy()
        env.setdefault("TERM", "xterm-256color")
        try:
            child = self._spawn(
                argv[0],
                args=argv[1:],
                env=env,
                encoding="utf-8",
                codec_errors="replace",
                dimensions=(rows, cols),
            )
        except pexpect.ExceptionPexpect as e:
            raise DialError(f"cannot start {argv[0]}: {e}") from e
        child.logfile_read = self._echo

        machine = LoginMachine(plan.descriptor)
        action = Action.CONTINUE
        deadline = time.monotonic() + self._timeout

        try:
            action = self._drive(child, machine, deadline)
            if action is Action.HANDOFF:
                (handoff or interact_with_user)(child)
        except KeyboardInterrupt:
            logger.info("Login interrupted")
            machine.interrupt()
            action = Action.TERMINATE

        exit_status = self._reap(child, force=action is Action.TERMINATE)
        if machine.manual_handoff:
            machine.finish_manual(exit_status)

        result = SessionResult(machine.outcome, exit_status, machine.message)
        logger.info(f"Login finished: {result.outcome.name} (exit {exit_status})")
        return result

    def _drive(self, child: pexpect.spawn, machine: LoginMachine, deadline: float) -> Action:
        while True:
            remaining = max(0.0, deadline - time.monotonic())
            index = child.expect(self._patterns, timeout=remaining)
            event = self._events[index]

            detail = ""
            if event is PromptEvent.STREAM_END:
                detail = _last_line(child.before)
            elif event is PromptEvent.AUTH_FAILURE_SIGNAL:
                detail = (child.after or "").strip()

            action = machine.advance(event, detail)
            if action is Action.SEND_AFFIRMATIVE:
                child.send(AFFIRMATIVE + "\r")
            elif action is Action.SEND_PASSWORD:
                child.send(machine.descriptor.password + "\r")
            elif action is not Action.CONTINUE:
                return action

    @staticmethod
    def _reap(child: pexpect.spawn, force: bool) -> Optional[int]:
        try:
            child.close(force=force)
        except pexpect.ExceptionPexpect as e:
            logger.debug(f"Close error: {e}")
            child.close(force=True)
        if child.exitstatus is not None:
            return child.exitstatus
        if child.signalstatus is not None:
            return 128 + child.signalstatus
        return None


def _last_line(text) -> str:
    if not text or not isinstance(text, str):
        return ""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


def render_expect_script(
    argv: Sequence[str],
    descriptor: AuthDescriptor,
    timeout: int = LOGIN_TIMEOUT,
) -> str:
    """
    Render an expect(1) script equivalent to InteractiveSessionDriver.

    Every value taken from configuration is escaped, so the script is safe
    for passwords and paths containing Tcl metacharacters.
    """
    bodies = {
        PromptEvent.HOST_KEY_CONFIRMATION: f'send "{AFFIRMATIVE}\\r"; exp_continue',
        PromptEvent.AUTH_FAILURE_SIGNAL: 'send_user "\\nauthentication failed\\n"; exit 1',
        PromptEvent.PASSPHRASE_PROMPT: "interact; exit",
        PromptEvent.SHELL_PROMPT_DETECTED: "set logged_in 1",
    }
    if descriptor.sends_password:
        bodies[PromptEvent.PASSWORD_PROMPT] = (
            'if {$password_sent} { send_user "\\npassword rejected\\n"; exit 1 }; '
            'set password_sent 1; send -- "$password\\r"; exp_continue'
        )
    else:
        bodies[PromptEvent.PASSWORD_PROMPT] = "interact; exit"

    lines = [
        "#!/usr/bin/expect -f",
        f"set timeout {int(timeout)}",
        "set logged_in 0",
        "set password_sent 0",
    ]
    if descriptor.sends_password:
        lines.append(f'set password "{escape_expect_string(descriptor.password)}"')

    spawn_args = " ".join(f'"{escape_expect_string(arg)}"' for arg in argv)
    lines.append(f"spawn {spawn_args}")
    lines.append("expect {")
    for rule in PROMPT_RULES:
        lines.append(f"    -re {{{rule.pattern}}} {{ {bodies[rule.event]} }}")
    lines.append('    eof { if {!$logged_in} { send_user "\\nconnection closed\\n"; exit 1 } }')
    lines.append('    timeout { send_user "\\ntimed out\\n"; exit 1 }')
    lines.append("}")
    lines.append("if {$logged_in} { interact }")
    return "\n".join(lines) + "\n"
