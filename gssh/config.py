"""
Persistent server inventory for gssh.
Stored in ~/.gssh/config.yaml (override with GSSH_CONFIG or --config)
"""

from __future__ import annotations
import logging
import os
import shutil
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from .session.base import AuthDescriptor
from .session.errors import GsshError

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".gssh"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
CONFIG_ENV = "GSSH_CONFIG"
CONFIG_VERSION = "1.0"
DEFAULT_PORT = 22
DEFAULT_IDENTITY_FILE = "~/.ssh/id_rsa"
DEFAULT_REMOTE_PATH = "~/.gssh/config.yaml"
BACKUP_SUFFIX = ".backup"


class ConfigError(GsshError):
    """Config file unreadable, invalid, or an inventory operation failed."""


def now_timestamp() -> str:
    """Current time as an RFC 3339 string."""
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def format_timestamp(value: str, fmt: str = "%Y-%m-%d %H:%M") -> str:
    """Render a stored timestamp in local time; unparseable values pass through."""
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime(fmt)


def _known_fields(cls, data: dict) -> dict:
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid_fields}


def _text(value) -> str:
    return "" if value is None else str(value)


@dataclass
class AuthConfig:
    """Per-server authentication settings."""
    type: str = "auto"
    password: str = ""
    identity_file: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> AuthConfig:
        data = _known_fields(cls, data or {})
        return cls(**{k: _text(v) for k, v in data.items()})

    def to_descriptor(self) -> AuthDescriptor:
        return AuthDescriptor.from_config(self.type, self.identity_file, self.password)


@dataclass
class Server:
    """
    One host in the inventory.
    """
    name: str
    hostname: str
    user: str
    port: int = DEFAULT_PORT
    description: str = ""
    tags: list[str] = field(default_factory=list)
    group: str = ""
    auth: AuthConfig = field(default_factory=AuthConfig)
    last_used: str = ""
    created_at: str = ""

    @property
    def address(self) -> str:
        return f"{self.user}@{self.hostname}:{self.port}"

    def matches(self, term: str) -> bool:
        """Case-insensitive match over name, description, hostname, user and tags."""
        if not term:
            return True
        term = term.lower()
        haystack = [self.name, self.description, self.hostname, self.user, *self.tags]
        return any(term in value.lower() for value in haystack if value)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["auth"] = self.auth.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Server:
        if not isinstance(data, dict):
            raise ConfigError(f"server entry must be a mapping, got {type(data).__name__}")
        filtered = _known_fields(cls, data)
        for required in ("name", "hostname", "user"):
            if not filtered.get(required):
                raise ConfigError(f"server entry missing '{required}': {data!r}")

        try:
            port = int(filtered.get("port") or DEFAULT_PORT)
        except (TypeError, ValueError):
            raise ConfigError(f"server '{filtered['name']}' has invalid port {filtered.get('port')!r}")

        tags = filtered.get("tags") or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",") if t.strip()]

        return cls(
            name=_text(filtered["name"]),
            hostname=_text(filtered["hostname"]),
            user=_text(filtered["user"]),
            port=port,
            description=_text(filtered.get("description")),
            tags=[_text(t) for t in tags],
            group=_text(filtered.get("group")),
            auth=AuthConfig.from_dict(filtered.get("auth")),
            last_used=_text(filtered.get("last_used")),
            created_at=_text(filtered.get("created_at")),
        )


@dataclass
class SyncConfig:
    """Where the inventory is synced to. Stays local; never pushed."""
    enabled: bool = False
    type: str = "ssh"
    ssh_host: str = ""
    ssh_user: str = ""
    ssh_path: str = DEFAULT_REMOTE_PATH
    ssh_key: str = ""
    password: str = ""
    auto_sync: bool = False
    last_sync: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> SyncConfig:
        data = _known_fields(cls, data or {})
        for key in ("enabled", "auto_sync"):
            if key in data:
                data[key] = bool(data[key])
        for key in ("type", "ssh_host", "ssh_user", "ssh_path", "ssh_key", "password", "last_sync"):
            if key in data:
                data[key] = _text(data[key])
        return cls(**data)

    def to_descriptor(self) -> AuthDescriptor:
        return AuthDescriptor.from_config("auto", self.ssh_key, self.password)


@dataclass
class AppConfig:
    """
    Whole config file: version, sync settings and the server list.
    """
    version: str = CONFIG_VERSION
    sync: SyncConfig = field(default_factory=SyncConfig)
    servers: list[Server] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "sync": self.sync.to_dict(),
            "servers": [s.to_dict() for s in self.servers],
        }

    def inventory_dict(self) -> dict:
        """Version and servers only; what sync pushes."""
        return {
            "version": self.version,
            "servers": [s.to_dict() for s in self.servers],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> AppConfig:
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError("config root must be a mapping")
        servers = data.get("servers") or []
        if not isinstance(servers, list):
            raise ConfigError("'servers' must be a list")
        return cls(
            version=_text(data.get("version")) or CONFIG_VERSION,
            sync=SyncConfig.from_dict(data.get("sync")),
            servers=[Server.from_dict(s) for s in servers],
        )

    def get_server(self, name: str) -> Server:
        for server in self.servers:
            if server.name == name:
                return server
        raise ConfigError(f"server '{name}' not found")

    def has_server(self, name: str) -> bool:
        return any(s.name == name for s in self.servers)

    def add_server(self, server: Server) -> Server:
        """Append a server, filling defaults. Names must be unique."""
        if self.has_server(server.name):
            raise ConfigError(f"server '{server.name}' already exists")
        if not server.port:
            server.port = DEFAULT_PORT
        if not server.auth.type:
            server.auth.type = "auto"
        if not server.created_at:
            server.created_at = now_timestamp()
        self.servers.append(server)
        return server

    def replace_server(self, name: str, server: Server) -> Server:
        """Replace an entry in place; renames must not collide."""
        for index, existing in enumerate(self.servers):
            if existing.name == name:
                if server.name != name and self.has_server(server.name):
                    raise ConfigError(f"server '{server.name}' already exists")
                server.created_at = server.created_at or existing.created_at
                server.last_used = server.last_used or existing.last_used
                self.servers[index] = server
                return server
        raise ConfigError(f"server '{name}' not found")

    def delete_server(self, name: str) -> Server:
        for index, server in enumerate(self.servers):
            if server.name == name:
                return self.servers.pop(index)
        raise ConfigError(f"server '{name}' not found")

    def filter_servers(
        self,
        tags: Optional[list[str]] = None,
        group: Optional[str] = None,
    ) -> list[Server]:
        """Servers in group (if given) that carry any of the tags given."""
        result = []
        for server in self.servers:
            if group and server.group != group:
                continue
            if tags and not any(t in server.tags for t in tags):
                continue
            result.append(server)
        return result

    def search(self, term: str) -> list[Server]:
        return [s for s in self.servers if s.matches(term)]

    def groups(self) -> list[str]:
        return sorted({s.group for s in self.servers if s.group})

    def tags(self) -> list[str]:
        return sorted({t for s in self.servers for t in s.tags})

    def touch_last_used(self, name: str) -> None:
        self.get_server(name).last_used = now_timestamp()


def default_config_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV)
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_FILE


class ConfigStore:
    """
    Loads and saves the YAML config.

    Usage:
        store = ConfigStore()
        config = store.config

        config.add_server(Server(name="web", hostname="10.0.0.5", user="deploy"))

        store.save()
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = Path(config_path).expanduser() if config_path else default_config_path()
        self._config: Optional[AppConfig] = None

    @property
    def path(self) -> Path:
        return self._config_path

    @property
    def backup_path(self) -> Path:
        return self._config_path.with_name(self._config_path.name + BACKUP_SUFFIX)

    @property
    def config(self) -> AppConfig:
        """Get current config, loading from disk if needed."""
        if self._config is None:
            self._config = self.load()
        return self._config

    @config.setter
    def config(self, value: AppConfig) -> None:
        self._config = value

    def exists(self) -> bool:
        return self._config_path.exists()

    def load(self) -> AppConfig:
        """Load config from disk; a missing file is created with defaults."""
        if not self._config_path.exists():
            logger.info(f"No config at {self._config_path}, creating default")
            self._config = AppConfig()
            self.save()
            return self._config

        try:
            data = yaml.safe_load(self._config_path.read_text())
        except OSError as e:
            raise ConfigError(f"cannot read {self._config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {self._config_path}: {e}") from e

        config = AppConfig.from_dict(data)
        logger.debug(f"Loaded {len(config.servers)} server(s) from {self._config_path}")
        return config

    def save(self, config: Optional[AppConfig] = None) -> None:
        """
        Write config to disk, keeping the previous file as a backup.

        The file holds plaintext passwords, so it is written owner-only.
        """
        if config is not None:
            self._config = config
        if self._config is None:
            return

        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(
            self._config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False
        )

        try:
            if self._config_path.exists():
                shutil.copy2(self._config_path, self.backup_path)
                os.chmod(self.backup_path, 0o600)
            fd = os.open(self._config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(text)
            os.chmod(self._config_path, 0o600)
        except OSError as e:
            raise ConfigError(f"cannot write {self._config_path}: {e}") from e

        logger.debug(f"Saved config to {self._config_path}")

    def reset(self) -> AppConfig:
        """Replace with an empty config (does not save automatically)."""
        self._config = AppConfig()
        return self._config
