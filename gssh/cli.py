"""
gssh/cli.py

Command-line interface for gssh.

Usage:
    gssh                   pick a server interactively
    gssh web-1             log in to a server by name
    gssh list -t prod
    gssh add
    gssh pull / gssh push
    gssh script web-1 > login.exp
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import (
    AppConfig, AuthConfig, ConfigStore, Server, SyncConfig,
    DEFAULT_IDENTITY_FILE, DEFAULT_REMOTE_PATH, format_timestamp,
)
from .session.base import AuthMethod
from .session.errors import GsshError
from .session.interactive import (
    InteractiveSessionDriver, build_ssh_argv, find_ssh, render_expect_script,
)
from .sync import pull_config, push_config

AUTH_TYPES = [m.value for m in AuthMethod]

# (header, width, cell)
SERVER_COLUMNS = [
    ("NAME", 20, lambda s: s.name),
    ("HOSTNAME", 22, lambda s: s.hostname),
    ("USER", 12, lambda s: s.user),
    ("PORT", 6, lambda s: str(s.port)),
    ("GROUP", 12, lambda s: s.group),
    ("TAGS", 20, lambda s: ",".join(s.tags)),
    ("LAST USED", 17, lambda s: format_timestamp(s.last_used)),
]
PICK_COLUMN = ("#", 4)


def _cell(value: str, width: int) -> str:
    # Keep one space between columns; long values are cut.
    return (value or "")[:width - 1].ljust(width)


def server_table(servers: list[Server], numbered: bool = False) -> str:
    """
    Render servers as a fixed-width table.

    With numbered=True a leading '#' column holds the 1-based pick number
    the interactive picker accepts.
    """
    if not servers:
        return "No matching servers."

    header = "".join(_cell(name, width) for name, width, _ in SERVER_COLUMNS)
    if numbered:
        header = _cell(PICK_COLUMN[0], PICK_COLUMN[1]) + header
    lines = [header.rstrip(), "-" * len(header.rstrip())]

    for number, server in enumerate(servers, start=1):
        row = "".join(_cell(cell(server), width) for _, width, cell in SERVER_COLUMNS)
        if numbered:
            row = _cell(str(number), PICK_COLUMN[1]) + row
        lines.append(row.rstrip())

    return "\n".join(lines)


def _public_dict(server: Server) -> dict:
    data = server.to_dict()
    if data["auth"].get("password"):
        data["auth"]["password"] = "***"
    return data


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(level)


class HostGroup(click.Group):
    """
    Group where an unknown sub-command is taken as a server name, and any
    GsshError becomes 'error: ...' on stderr with exit status 1.
    """

    def resolve_command(self, ctx, args):
        name = args[0] if args else None
        if name and not name.startswith("-") and self.get_command(ctx, name) is None:
            return "connect", self.get_command(ctx, "connect"), args
        return super().resolve_command(ctx, args)

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except GsshError as e:
            click.echo(f"error: {e}", err=True)
            ctx.exit(1)


@click.group(cls=HostGroup, invoke_without_command=True)
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Config file (default ~/.gssh/config.yaml or $GSSH_CONFIG)")
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """SSH connection manager. Run without arguments to pick a server."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["store"] = ConfigStore(config_path)

    if ctx.invoked_subcommand is None:
        server = pick_server(ctx.obj["store"].config)
        if server is not None:
            login(ctx.obj["store"], server)


def get_store(ctx) -> ConfigStore:
    return ctx.obj["store"]


def login(store: ConfigStore, server: Server) -> None:
    """Interactive login; records last_used on success."""
    click.echo(f"Connecting to {server.name} ({server.address})...", err=True)
    driver = InteractiveSessionDriver()
    result = driver.login(
        server.hostname, server.user, server.port, server.auth.to_descriptor()
    )
    result.raise_for_outcome()

    store.config.touch_last_used(server.name)
    store.save()


def pick_server(config: AppConfig) -> Optional[Server]:
    """
    Numbered picker: a number connects, text filters, empty clears the
    filter, q quits.
    """
    if not config.servers:
        click.echo("No servers configured. Add one with 'gssh add'.")
        return None

    term = ""
    while True:
        servers = config.search(term)
        if term:
            click.echo(f"\nFilter: {term}")
        click.echo(server_table(servers, numbered=True))

        answer = click.prompt(
            "\nNumber to connect, text to filter, q to quit",
            default="", show_default=False,
        ).strip()

        if answer.lower() == "q":
            return None
        if answer.isdigit():
            index = int(answer)
            if 1 <= index <= len(servers):
                return servers[index - 1]
            click.echo(f"No server #{index}.")
            continue
        term = answer


@cli.command("connect")
@click.argument("name")
@click.pass_context
def connect(ctx, name):
    """Log in to a server by name."""
    store = get_store(ctx)
    login(store, store.config.get_server(name))


@cli.command("list")
@click.option("-s", "--search", "term", default=None, help="Filter by text")
@click.option("-g", "--group", default=None, help="Filter by group")
@click.option("-t", "--tag", "tags", multiple=True, help="Filter by tag (repeatable)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_servers(ctx, term, group, tags, output_json):
    """List configured servers."""
    config = get_store(ctx).config
    servers = config.filter_servers(tags=list(tags), group=group)
    if term:
        servers = [s for s in servers if s.matches(term)]

    if output_json:
        click.echo(json.dumps([_public_dict(s) for s in servers], indent=2))
    else:
        click.echo(server_table(servers))
        click.echo(f"\n{len(servers)} server(s)")


@cli.command("show")
@click.argument("name")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_server(ctx, name, output_json):
    """Show details for one server."""
    server = get_store(ctx).config.get_server(name)

    if output_json:
        click.echo(json.dumps(_public_dict(server), indent=2))
        return

    click.echo(f"Name:           {server.name}")
    click.echo(f"Hostname:       {server.hostname}")
    click.echo(f"User:           {server.user}")
    click.echo(f"Port:           {server.port}")
    click.echo(f"Description:    {server.description or '-'}")
    click.echo(f"Group:          {server.group or '-'}")
    click.echo(f"Tags:           {', '.join(server.tags) or '-'}")
    click.echo(f"Auth:           {server.auth.type}")
    click.echo(f"Identity file:  {server.auth.identity_file or '-'}")
    click.echo(f"Password:       {'set' if server.auth.password else 'not set'}")
    click.echo(f"Created:        {format_timestamp(server.created_at) or '-'}")
    click.echo(f"Last used:      {format_timestamp(server.last_used) or 'never'}")


def prompt_server(existing: Optional[Server] = None) -> Server:
    """Ask for every server field, defaulting to the existing values."""
    base = existing or Server(name="", hostname="", user="")

    def required(label, default):
        return click.prompt(label, default=default or None, type=str).strip()

    name = required("Name", base.name)
    hostname = required("Hostname", base.hostname)
    user = required("User", base.user)
    port = click.prompt("Port", default=base.port, type=click.IntRange(1, 65535))
    description = click.prompt("Description", default=base.description, show_default=False)
    group = click.prompt("Group", default=base.group, show_default=False)
    tags = click.prompt("Tags (comma separated)", default=",".join(base.tags), show_default=False)
    auth_type = click.prompt(
        "Auth type", default=base.auth.type or "auto", type=click.Choice(AUTH_TYPES)
    )

    password = base.auth.password
    if auth_type != AuthMethod.KEY_ONLY.value:
        entered = click.prompt(
            "Password (leave empty to keep)" if password else "Password (optional)",
            default="", hide_input=True, show_default=False,
        )
        password = entered or password

    identity_file = base.auth.identity_file
    if auth_type != AuthMethod.PASSWORD_ONLY.value:
        identity_file = click.prompt(
            "Identity file", default=identity_file or DEFAULT_IDENTITY_FILE
        )

    return Server(
        name=name,
        hostname=hostname,
        user=user,
        port=port,
        description=description.strip(),
        group=group.strip(),
        tags=[t.strip() for t in tags.split(",") if t.strip()],
        auth=AuthConfig(type=auth_type, password=password, identity_file=identity_file),
        last_used=base.last_used,
        created_at=base.created_at,
    )


@cli.command("add")
@click.pass_context
def add_server(ctx):
    """Add a server."""
    store = get_store(ctx)
    server = store.config.add_server(prompt_server())
    store.save()
    click.echo(f"Added '{server.name}'.")


@cli.command("edit")
@click.argument("name")
@click.pass_context
def edit_server(ctx, name):
    """Edit a server."""
    store = get_store(ctx)
    existing = store.config.get_server(name)
    server = store.config.replace_server(name, prompt_server(existing))
    store.save()
    click.echo(f"Updated '{server.name}'.")


@cli.command("rm")
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def remove_server(ctx, name, yes):
    """Remove a server."""
    store = get_store(ctx)
    store.config.get_server(name)
    if not yes and not click.confirm(f"Delete '{name}'?", default=False):
        click.echo("Aborted.")
        return
    store.config.delete_server(name)
    store.save()
    click.echo(f"Deleted '{name}'.")


@cli.command("init")
@click.pass_context
def init_config(ctx):
    """Create the config file and optionally configure sync."""
    store = get_store(ctx)

    if store.exists():
        if not click.confirm(f"{store.path} already exists. Overwrite?", default=False):
            click.echo("Aborted.")
            return

    config = AppConfig()
    if click.confirm("Configure SSH sync?", default=False):
        config.sync = prompt_sync()

    store.save(config)
    click.echo(f"Config written to {store.path}")
    if config.sync.enabled:
        click.echo("Run 'gssh pull' to fetch servers or 'gssh push' to upload them.")


def prompt_sync() -> SyncConfig:
    sync = SyncConfig(enabled=True, type="ssh")
    sync.ssh_host = click.prompt("Sync host").strip()
    sync.ssh_user = click.prompt("Sync user").strip()
    sync.ssh_path = click.prompt("Remote config path", default=DEFAULT_REMOTE_PATH)

    method = click.prompt("Authenticate with", default="key", type=click.Choice(["key", "password"]))
    if method == "key":
        sync.ssh_key = click.prompt("SSH key file", default=DEFAULT_IDENTITY_FILE)
    else:
        sync.password = click.prompt("Password", hide_input=True)

    sync.auto_sync = click.confirm("Enable auto sync?", default=False)
    return sync


def _sync_diagnostics(settings: SyncConfig) -> None:
    click.echo("", err=True)
    click.echo("Sync settings:", err=True)
    click.echo(f"  Host:      {settings.ssh_host or '(not set)'}", err=True)
    click.echo(f"  User:      {settings.ssh_user or '(not set)'}", err=True)
    click.echo(f"  Path:      {settings.ssh_path or DEFAULT_REMOTE_PATH}", err=True)
    if settings.ssh_key:
        click.echo(f"  Key:       {settings.ssh_key}", err=True)
    else:
        click.echo(f"  Password:  {'set' if settings.password else '(not set)'}", err=True)
    click.echo("Check that:", err=True)
    click.echo("  - the host is reachable and its key is in ~/.ssh/known_hosts", err=True)
    click.echo("  - the key or password is accepted by the sync account", err=True)
    click.echo("  - the remote path exists (push once to create it)", err=True)


@cli.command("pull")
@click.pass_context
def pull(ctx):
    """Replace local servers with the synced copy."""
    store = get_store(ctx)
    try:
        count = pull_config(store)
    except GsshError:
        _sync_diagnostics(store.config.sync)
        raise
    click.echo(f"Pulled {count} server(s).")


@cli.command("push")
@click.pass_context
def push(ctx):
    """Upload local servers to the sync host."""
    store = get_store(ctx)
    try:
        count = push_config(store)
    except GsshError:
        _sync_diagnostics(store.config.sync)
        raise
    click.echo(f"Pushed {count} server(s).")


@cli.command("script")
@click.argument("name")
@click.pass_context
def script(ctx, name):
    """Print an expect(1) login script for a server."""
    server = get_store(ctx).config.get_server(name)
    descriptor = server.auth.to_descriptor()
    argv = build_ssh_argv(
        [find_ssh() or "ssh"], server.hostname, server.user, server.port, descriptor
    )
    click.echo(render_expect_script(argv, descriptor), nl=False)


@cli.command("version")
def version():
    """Show version."""
    click.echo(f"gssh {__version__}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
