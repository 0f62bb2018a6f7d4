"""CLI interface for bucket-manager"""

import logging
import sys
from typing import List

import click
import yaml

from bucket_manager.core.config import SUPPORTED_COMPOSE_CMDS, Config, resolve_path
from bucket_manager.core.discovery import DEFAULT_LOCAL_ROOTS
from bucket_manager.core.errors import BucketManagerError, LocalRootNotFoundError
from bucket_manager.core.orchestrator import Orchestrator
from bucket_manager.runtime.base import StackStatus
from bucket_manager.transport.base import DEFAULT_SSH_PORT, SSHHost

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

STATUS_SYMBOLS = {
    StackStatus.UP: "✓",
    StackStatus.DOWN: "✗",
    StackStatus.PARTIAL: "~",
    StackStatus.ERROR: "!",
    StackStatus.UNKNOWN: "?",
}


def _load_orchestrator(ctx) -> Orchestrator:
    """Build the orchestrator once per invocation; closed when the context ends"""
    if "orchestrator" not in ctx.obj:
        cfg = Config(ctx.obj.get("config_path"))
        orchestrator = Orchestrator(cfg)
        ctx.obj["orchestrator"] = orchestrator
        ctx.call_on_close(orchestrator.close)
    return ctx.obj["orchestrator"]


def _fail(message: str) -> None:
    click.echo(f"✗ Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to configuration YAML file (default: ~/.config/bucket-manager/config.yaml)",
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Enable verbose (debug) logging",
)
@click.option(
    "-s",
    "--silent",
    is_flag=True,
    help="Suppress all log output",
)
@click.version_option(package_name="bucket-manager")
@click.pass_context
def cli(ctx, config_path, verbose, silent):
    """bucket-manager - compose stacks across local and SSH hosts

    Discover, inspect and run lifecycle actions on compose stacks.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    if silent:
        logging.getLogger().setLevel(logging.CRITICAL)
    elif verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command(name="list")
@click.pass_context
def list_stacks(ctx):
    """List discovered stacks on every host

    Examples:
        bm list
    """
    try:
        orchestrator = _load_orchestrator(ctx)
        stacks, errors = orchestrator.discover_all()
    except BucketManagerError as e:
        _fail(str(e))

    for error in errors:
        click.echo(f"✗ {error}", err=True)

    if not stacks:
        click.echo("No stacks found")
        sys.exit(1 if errors else 0)

    for stack in sorted(stacks, key=lambda s: (s.is_remote, s.server_name, s.name)):
        location = stack.remote_path if stack.is_remote else stack.path
        click.echo(f"  {stack.identifier:<30} {stack.server_name:<15} {location}")


@cli.command()
@click.argument("identifier", required=False, default="")
@click.pass_context
def status(ctx, identifier: str):
    """Show the status of stacks

    IDENTIFIER may be "stack", "host:stack" or "host:" (all stacks of a host).
    Without it every discovered stack is probed.

    Examples:
        bm status
        bm status server1:
        bm status server1:app
    """
    try:
        orchestrator = _load_orchestrator(ctx)
        stacks, errors = orchestrator.discover_targets(identifier)
    except BucketManagerError as e:
        _fail(str(e))

    for error in errors:
        click.echo(f"✗ {error}", err=True)

    if not stacks:
        if not errors:
            click.echo("No stacks found")
        sys.exit(1 if errors else 0)

    infos = orchestrator.get_statuses(stacks)
    for info in sorted(infos, key=lambda i: (i.stack.is_remote, i.stack.server_name, i.stack.name)):
        symbol = STATUS_SYMBOLS.get(info.status, "?")
        click.echo(f"{symbol} {info.stack.identifier:<30} {info.status.value}")
        for container in info.containers:
            click.echo(f"    {container.name or container.service:<28} {container.status}")
        if info.error is not None:
            click.echo(f"    {info.error}", err=True)


def _run_action(ctx, action: str, identifiers: List[str]) -> None:
    """Run an action on each identifier in order, stopping at the first failure"""
    try:
        orchestrator = _load_orchestrator(ctx)
        for identifier in identifiers:
            stack = orchestrator.locate(identifier)
            click.echo(f"==> {action} {stack.identifier}")
            orchestrator.run_sequence(
                stack,
                action,
                on_step=lambda index, step: click.echo(f"--- [{index}] {step.name}"),
            )
            click.echo(f"✓ {action} completed for {stack.identifier}")
    except BucketManagerError as e:
        _fail(str(e))


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_context
def up(ctx, identifiers):
    """Pull images and start stacks

    Examples:
        bm up app
        bm up server1:app web
    """
    _run_action(ctx, "up", identifiers)


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_context
def down(ctx, identifiers):
    """Stop stacks"""
    _run_action(ctx, "down", identifiers)


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_context
def pull(ctx, identifiers):
    """Pull images for stacks"""
    _run_action(ctx, "pull", identifiers)


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_context
def refresh(ctx, identifiers):
    """Pull, stop and start stacks again (local stacks also prune the system)"""
    _run_action(ctx, "refresh", identifiers)


cli.add_command(refresh, name="re")


@cli.command()
@click.argument("hosts", nargs=-1)
@click.pass_context
def prune(ctx, hosts):
    """Prune unused container resources on hosts

    Without HOSTS prunes the local machine and every enabled remote host.

    Examples:
        bm prune
        bm prune local server1
    """
    try:
        orchestrator = _load_orchestrator(ctx)
        targets = orchestrator.resolve_host_targets(hosts)
    except BucketManagerError as e:
        _fail(str(e))

    if not targets:
        click.echo("No hosts to prune")
        sys.exit(0)

    results = orchestrator.run_host_action("prune", targets, cli_mode=True)
    failed = False
    for name in sorted(results):
        error = results[name]
        if error is None:
            click.echo(f"✓ prune completed on {name}")
        else:
            failed = True
            click.echo(f"✗ prune failed on {name}: {error}", err=True)
    sys.exit(1 if failed else 0)


@cli.group(name="config")
def config_group():
    """Inspect and edit the configuration file"""


@config_group.command()
@click.pass_context
def show(ctx):
    """Print the loaded configuration (passwords masked)"""
    try:
        cfg = Config(ctx.obj.get("config_path"))
    except BucketManagerError as e:
        _fail(str(e))

    data = dict(cfg.data)
    hosts = []
    for host in cfg.ssh_hosts:
        entry = host.to_dict()
        if "password" in entry:
            entry["password"] = "********"
        hosts.append(entry)
    if hosts:
        data["ssh_hosts"] = hosts

    click.echo(f"# {cfg.config_file}")
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip() if data else "{}")


@config_group.command()
@click.pass_context
def validate(ctx):
    """Validate the configuration file

    Examples:
        bm config validate
        bm -c ./config.yaml config validate
    """
    try:
        cfg = Config(ctx.obj.get("config_path"))
    except BucketManagerError as e:
        _fail(str(e))

    problems = cfg.validate()
    if problems:
        click.echo("✗ Configuration validation failed")
        for problem in problems:
            click.echo(f"  - {problem}")
        sys.exit(1)

    click.echo("✓ Configuration is valid")
    click.echo(f"  Local root: {cfg.local_root or '(default)'}")
    click.echo(f"  Compose command: {cfg.compose_cmd}")
    click.echo(f"  SSH hosts: {len(cfg.ssh_hosts)} ({len(cfg.enabled_hosts)} enabled)")


def _load_config(ctx) -> Config:
    try:
        return Config(ctx.obj.get("config_path"))
    except BucketManagerError as e:
        _fail(str(e))


def _save_config(cfg: Config) -> None:
    try:
        cfg.save()
    except BucketManagerError as e:
        _fail(str(e))


@config_group.command(name="get-local-root")
@click.pass_context
def get_local_root(ctx):
    """Show the configured and effective local stack root"""
    orchestrator = _load_orchestrator(ctx)
    cfg = orchestrator.config

    if cfg.local_root:
        click.echo(f"Configured local root: {cfg.local_root}")
        click.echo(f"Resolved path:         {resolve_path(cfg.local_root)}")
    else:
        click.echo("Local root not explicitly configured.")
        click.echo(f"Default search paths: {', '.join(DEFAULT_LOCAL_ROOTS)}")

    try:
        active = orchestrator.discovery.get_compose_root_directory()
    except LocalRootNotFoundError:
        click.echo("⚠️  No local root directory exists")
    except BucketManagerError as e:
        _fail(str(e))
    else:
        source = "(from config)" if cfg.local_root else "(default)"
        click.echo(f"Effective path being used: {active} {source}")


@config_group.command(name="set-local-root")
@click.argument("path")
@click.pass_context
def set_local_root(ctx, path: str):
    """Set the local stack root directory

    PATH must be absolute or start with '~/'. An empty PATH restores the
    default search paths (~/bucket, ~/compose-bucket).

    Examples:
        bm config set-local-root ~/stacks
        bm config set-local-root ""
    """
    cfg = _load_config(ctx)
    try:
        cfg.set_local_root(path)
    except BucketManagerError as e:
        _fail(str(e))
    _save_config(cfg)

    if path:
        click.echo(f"✓ Local stack root set to: {path}")
    else:
        click.echo(f"✓ Local stack root reset to default search paths ({', '.join(DEFAULT_LOCAL_ROOTS)})")


@config_group.command(name="get-runtime")
@click.pass_context
def get_runtime(ctx):
    """Show the configured container runtime"""
    click.echo(f"Container runtime: {_load_config(ctx).compose_cmd}")


@config_group.command(name="set-runtime")
@click.argument("runtime", type=click.Choice(SUPPORTED_COMPOSE_CMDS, case_sensitive=False))
@click.pass_context
def set_runtime(ctx, runtime: str):
    """Set the container runtime used for compose commands

    Examples:
        bm config set-runtime docker
        bm config set-runtime podman
    """
    cfg = _load_config(ctx)
    try:
        cfg.set_compose_cmd(runtime)
    except BucketManagerError as e:
        _fail(str(e))
    _save_config(cfg)
    click.echo(f"✓ Container runtime set to: {cfg.compose_cmd}")


@config_group.group(name="ssh")
def ssh_group():
    """Manage SSH host configurations"""


def _save_hosts(cfg: Config, hosts) -> None:
    """Validate and save a new host list, leaving the file untouched on problems"""
    cfg.set_hosts(hosts)
    problems = cfg.validate()
    if problems:
        _fail("; ".join(problems))
    _save_config(cfg)


@ssh_group.command(name="list")
@click.pass_context
def ssh_list(ctx):
    """List configured SSH hosts"""
    hosts = _load_config(ctx).ssh_hosts
    if not hosts:
        click.echo("No SSH hosts configured.")
        return

    click.echo("Configured SSH Hosts:")
    for index, host in enumerate(hosts, 1):
        click.echo(f"{index}: {host.name} ({host.user}@{host.hostname}:{host.port})")
        click.echo(f"   Remote Root: {host.remote_root or '[Default: ~/bucket or ~/compose-bucket]'}")
        if host.key_path:
            click.echo(f"   Key Path:    {host.key_path}")
        if host.password:
            click.echo("   Password:    [set, stored insecurely]")
        if host.disabled:
            click.echo("   Status:      Disabled")


@ssh_group.command(name="add")
@click.option("--name", prompt="Unique name for this host", help="Name used in identifiers (host:stack)")
@click.option("--hostname", prompt="Hostname or IP address", help="Server address")
@click.option("--user", prompt="SSH username", help="Username for authentication")
@click.option("--port", type=int, default=DEFAULT_SSH_PORT, show_default=True, help="SSH port")
@click.option("--key-path", default=None, help="Path to a private key file")
@click.option("--password", default=None, help="Password (stored in plain text)")
@click.option("--remote-root", default=None, help="Directory holding stacks on the host")
@click.pass_context
def ssh_add(ctx, name, hostname, user, port, key_path, password, remote_root):
    """Add a new SSH host

    Examples:
        bm config ssh add --name server1 --hostname 10.0.0.5 --user deploy --key-path ~/.ssh/id_ed25519
    """
    cfg = _load_config(ctx)
    if cfg.get_host(name) is not None:
        _fail(f"SSH host with name '{name}' already exists")

    host = SSHHost(name=name, hostname=hostname, user=user, port=port, key_path=key_path,
                   password=password, remote_root=remote_root)
    _save_hosts(cfg, cfg.ssh_hosts + [host])
    click.echo(f"✓ Successfully added SSH host '{name}'")


@ssh_group.command(name="edit")
@click.argument("name")
@click.option("--new-name", default=None, help="Rename the host")
@click.option("--hostname", default=None, help="Server address")
@click.option("--user", default=None, help="Username for authentication")
@click.option("--port", type=int, default=None, help="SSH port")
@click.option("--key-path", default=None, help="Path to a private key file ('' to clear)")
@click.option("--password", default=None, help="Password ('' to clear)")
@click.option("--remote-root", default=None, help="Directory holding stacks ('' for defaults)")
@click.option("--disable/--enable", "disabled", default=None, help="Skip or include the host")
@click.pass_context
def ssh_edit(ctx, name, new_name, hostname, user, port, key_path, password, remote_root, disabled):
    """Edit an existing SSH host; options not given keep their value

    Examples:
        bm config ssh edit server1 --port 2222
        bm config ssh edit server1 --disable
    """
    cfg = _load_config(ctx)
    hosts = cfg.ssh_hosts
    host = next((h for h in hosts if h.name == name), None)
    if host is None:
        _fail(f"remote host '{name}' not found in configuration")

    if new_name and new_name != name:
        if any(h.name == new_name for h in hosts):
            _fail(f"SSH host with name '{new_name}' already exists")
        host.name = new_name
    if hostname is not None:
        host.hostname = hostname
    if user is not None:
        host.user = user
    if port is not None:
        host.port = port
    if key_path is not None:
        host.key_path = key_path or None
    if password is not None:
        host.password = password or None
    if remote_root is not None:
        host.remote_root = remote_root or None
    if disabled is not None:
        host.disabled = disabled

    _save_hosts(cfg, hosts)
    click.echo(f"✓ Successfully updated SSH host '{host.name}'")


@ssh_group.command(name="remove")
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def ssh_remove(ctx, name, yes):
    """Remove an SSH host

    Examples:
        bm config ssh remove server1
    """
    cfg = _load_config(ctx)
    hosts = cfg.ssh_hosts
    if not any(h.name == name for h in hosts):
        _fail(f"remote host '{name}' not found in configuration")

    if not yes and not click.confirm(f"Remove SSH host '{name}'?", default=False):
        click.echo("Removal cancelled.")
        return

    _save_hosts(cfg, [h for h in hosts if h.name != name])
    click.echo(f"✓ Successfully removed SSH host '{name}'")


def main():
    """Entry point for CLI"""
    cli()


if __name__ == "__main__":
    main()
