"""
Inventory sync over SSH.

The server list and version are stored as YAML on a remote host and moved
with the programmatic session: pull runs `cat`, push pipes the document
into `cat >`. The local sync section is never sent.
"""

from __future__ import annotations
import logging
import os
import posixpath
from typing import Callable, Optional

import yaml

from .config import AppConfig, ConfigStore, SyncConfig, DEFAULT_REMOTE_PATH, now_timestamp
from .session.credentials import CredentialResolver
from .session.errors import GsshError
from .session.escape import remote_path_arg
from .session.paths import expand_home
from .session.ssh import ProgrammaticSession, open_session

logger = logging.getLogger(__name__)

SYNC_PORT = 22


class SyncError(GsshError):
    """Sync misconfigured, unsupported, or the remote side failed."""


class SSHSync:
    """
    Pull and push the inventory through an SSH account.

    Args:
        settings: Local sync section
        resolver: Builds auth methods from ssh_key / password
        connect: open_session or a compatible factory
    """

    def __init__(
        self,
        settings: SyncConfig,
        resolver: Optional[CredentialResolver] = None,
        connect: Callable[..., ProgrammaticSession] = open_session,
    ):
        self.settings = settings
        self._resolver = resolver or CredentialResolver()
        self._connect = connect

    @property
    def remote_path(self) -> str:
        return self.settings.ssh_path or DEFAULT_REMOTE_PATH

    def _require_target(self) -> None:
        if not self.settings.ssh_host:
            raise SyncError("sync host not configured")
        if not self.settings.ssh_user:
            raise SyncError("sync user not configured")

    def _open(self) -> ProgrammaticSession:
        descriptor = self.settings.to_descriptor()
        credentials = self._resolver.resolve(descriptor.identity_path, descriptor.password)
        return self._connect(self.settings.ssh_host, self.settings.ssh_user, SYNC_PORT, credentials)

    def pull(self) -> AppConfig:
        """Fetch and parse the remote inventory."""
        self._require_target()
        if not self.settings.ssh_key and not self.settings.password:
            raise SyncError("sync needs an SSH key or a password")

        command = f"cat {remote_path_arg(self.remote_path)}"
        logger.info(f"Pulling {self.remote_path} from {self.settings.ssh_host}")
        with self._open() as session:
            result = session.run(command)

        if not result.ok:
            raise SyncError(
                f"reading remote config failed (exit {result.exit_status}): "
                f"{result.text().strip()}"
            )

        try:
            data = yaml.safe_load(result.text())
        except yaml.YAMLError as e:
            raise SyncError(f"remote config is not valid YAML: {e}") from e
        return AppConfig.from_dict(data)

    def push(self, config: AppConfig) -> None:
        """Upload version and servers, creating the remote directory."""
        self._require_target()

        payload = yaml.safe_dump(
            config.inventory_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False
        ).encode("utf-8")

        path = self.remote_path
        command = f"cat > {remote_path_arg(path)}"
        directory = posixpath.dirname(path)
        if directory:
            command = f"mkdir -p {remote_path_arg(directory)} && {command}"

        logger.info(f"Pushing {len(config.servers)} server(s) to {self.settings.ssh_host}:{path}")
        with self._open() as session:
            result = session.run(command, stdin=payload)

        if not result.ok:
            raise SyncError(
                f"writing remote config failed (exit {result.exit_status}): "
                f"{result.text().strip()}"
            )


def create_sync(settings: SyncConfig, **kwargs) -> SSHSync:
    kind = (settings.type or "ssh").lower()
    if kind == "ssh":
        return SSHSync(settings, **kwargs)
    if kind in ("http", "ftp"):
        raise SyncError(f"{kind} sync is not implemented")
    raise SyncError(f"unsupported sync type: {kind}")


def pull_config(store: ConfigStore, sync_factory: Callable[..., SSHSync] = create_sync) -> int:
    """
    Replace local servers with the remote inventory. Returns the server count.
    """
    config = store.config
    settings = config.sync
    if not settings.enabled:
        raise SyncError("sync is not enabled; run 'gssh init' to configure it")
    if not settings.ssh_host or not settings.ssh_user:
        raise SyncError("sync configuration is incomplete (host and user are required)")
    if settings.ssh_key:
        key_path = expand_home(settings.ssh_key)
        if not os.path.exists(key_path):
            raise SyncError(f"SSH key file not found: {key_path}")

    remote = sync_factory(settings).pull()

    config.version = remote.version
    config.servers = remote.servers
    config.sync.last_sync = now_timestamp()
    store.save()
    logger.info(f"Pulled {len(config.servers)} server(s)")
    return len(config.servers)


def push_config(store: ConfigStore, sync_factory: Callable[..., SSHSync] = create_sync) -> int:
    """Upload the local inventory. Returns the server count."""
    config = store.config
    if not config.sync.enabled:
        raise SyncError("sync is not enabled; run 'gssh init' to configure it")

    sync_factory(config.sync).push(config)

    config.sync.last_sync = now_timestamp()
    store.save()
    logger.info(f"Pushed {len(config.servers)} server(s)")
    return len(config.servers)
