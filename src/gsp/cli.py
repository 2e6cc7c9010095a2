import json
import sys

import click
import halo
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from click.shell_completion import CompletionItem

from gsp.config import get_settings
from gsp.context import PanelContext
from gsp.control.lifecycle import INSTALLING
from gsp.control.state import PanelState
from gsp.logging_config import setup_logging

console = Console()

PROGRESS_MODE = "steps"  # "steps", "inline", or "plain"


class StepProgress:
    """Step-by-step progress display.

    Modes:
        "steps"   halo bouncingBar spinner, checkmark/cross per step on new lines
        "inline"  single-line replacement
        "plain"   just print each message, no spinner/ANSI (for non-TTY / debug)
    """

    def __init__(self, mode="steps"):
        self._mode = mode
        self._spinner = None
        self._last_message = None

    def update(self, message):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.succeed()
            self._spinner = halo.Halo(text=message, spinner="bouncingBar")
            self._spinner.start()
        elif self._mode == "inline":
            print(f"\r\033[K{message}", end="", flush=True)
            self._last_message = message
        else:
            print(message)

    def finish(self):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.succeed()
                self._spinner = None
        elif self._mode == "inline":
            if self._last_message:
                print()
                self._last_message = None

    def fail(self, message=None):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.fail(message)
                self._spinner = None
        elif self._mode == "inline":
            print(f"\r\033[K{message or 'Failed'}")
        else:
            print(message or "Failed")


def _progress_mode(ctx):
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    if debug:
        return "plain"
    if not sys.stderr.isatty():
        return "plain"
    return PROGRESS_MODE


def _complete_server(ctx, param, incomplete):
    state = PanelState(get_settings().state_dir)
    return [
        CompletionItem(r.name, help=f"{r.status} - {r.connection_string}")
        for r in state.list_servers()
        if r.name and (r.name.startswith(incomplete) or str(r.id).startswith(incomplete))
    ]


def _complete_command(ctx, param, incomplete):
    return [
        CompletionItem(name, help=(cli.get_command(ctx, name).get_short_help_str(80) or ""))
        for name in cli.list_commands(ctx)
        if name.startswith(incomplete)
    ]


def _make_context(ctx) -> PanelContext:
    settings = ctx.obj["settings"] if ctx.obj and "settings" in ctx.obj else get_settings()
    panel = PanelContext.from_settings(settings)
    ctx.call_on_close(panel.close)
    return panel


def _resolve_server(panel: PanelContext, server: str):
    record = panel.state.get_by_name_or_id(server)
    if not record:
        console.print(f"[red]Server not found: {server}[/]")
        raise SystemExit(1)
    return record


def _run_step(ctx, panel: PanelContext, action, first_message=None):
    """Run ``action`` with progress attached to both engines; exit 1 on failure."""
    progress = StepProgress(mode=_progress_mode(ctx))
    panel.reconciler.on_status = progress.update
    panel.lifecycle.on_status = progress.update
    if first_message:
        progress.update(first_message)
    try:
        result = action()
        progress.finish()
        return result
    except KeyboardInterrupt:
        progress.fail("Interrupted")
        console.print("\n[yellow]Interrupted.[/]")
        raise SystemExit(130)
    except Exception as e:
        progress.fail(str(e))
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)


def _parse_options(options) -> dict:
    extra = {}
    for option in options:
        if "=" not in option:
            console.print(f"[red]Invalid option format: {option} (expected KEY=VALUE)[/]")
            raise SystemExit(1)
        key, value = option.split("=", 1)
        try:
            extra[key] = json.loads(value)
        except ValueError:
            extra[key] = value
    return extra


class HelpfulCommand(click.Command):
    """Show full help text when a command is invoked incorrectly."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help())
            click.echo()
            console.print(f"[bold red]Error:[/] {e.format_message()}")
            ctx.exit(2)


class HelpfulGroup(click.Group):
    command_class = HelpfulCommand


@click.group(cls=HelpfulGroup)
@click.version_option(version="0.1.0", prog_name="gspc")
@click.option("--debug", is_flag=True, help="Show panel requests and debug logs")
@click.pass_context
def cli(ctx, debug):
    """Game Server Panel control - mirror a panel locally and manage its servers."""
    settings = get_settings()
    setup_logging(settings.log_format, "DEBUG" if debug else settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", required=False, default=None, shell_complete=_complete_command)
@click.pass_context
def help(ctx, command):
    """Show help for a command."""
    if command:
        cmd = cli.get_command(ctx, command)
        if cmd is None:
            console.print(f"[red]Unknown command: {command}[/]")
            raise SystemExit(1)
        click.echo(cmd.get_help(ctx))
    else:
        click.echo(ctx.parent.get_help())


@cli.command()
@click.argument("shell", type=click.Choice(["bash", "zsh", "fish"]))
def completion(shell):
    """Generate shell completion script."""
    from click.shell_completion import get_completion_class
    comp_cls = get_completion_class(shell)
    comp = comp_cls(cli, {}, "gspc", "_GSPC_COMPLETE")
    click.echo(comp.source())


@cli.command()
@click.option("--prune-tokens", is_flag=True, help="Also delete login tokens no panel server uses")
@click.pass_context
def sync(ctx, prune_tokens):
    """Mirror locations, nodes and servers from the panel."""
    panel = _make_context(ctx)

    def _sync():
        reports = panel.reconciler.reconcile()
        if prune_tokens:
            reports.append(panel.reconciler.prune_orphan_login_tokens())
        return reports

    reports = _run_step(ctx, panel, _sync)
    if panel.owner_id is None:
        console.print("[yellow]Warning:[/] owner account could not be resolved; no servers are managed.")

    table = Table(title="Panel Sync")
    table.add_column("Pass", style="cyan")
    table.add_column("Synced", style="green")
    table.add_column("Deleted", style="yellow")
    table.add_column("Warnings")
    table.add_column("Failures", style="red")
    for report in reports:
        table.add_row(
            report.name, str(report.synced), str(report.deleted),
            str(len(report.warnings)), str(len(report.failures)),
        )
    console.print(table)
    for report in reports:
        for failure in report.failures:
            console.print(f"[red]{report.name}:[/] {failure}")
    if not all(r.ok for r in reports):
        raise SystemExit(1)


@cli.command("list")
@click.pass_context
def list_servers(ctx):
    """List locally mirrored servers."""
    state = PanelState(ctx.obj["settings"].state_dir)
    records = state.list_servers()
    if not records:
        console.print("No servers synced.")
        return

    table = Table(title="Game Servers")
    table.add_column("ID", style="cyan")
    table.add_column("Panel ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Address", style="magenta")
    table.add_column("Status")
    for r in records:
        table.add_row(
            str(r.id), str(r.server_id or "-"), r.name or "-",
            r.connection_string or "-", r.status,
        )
    console.print(table)


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.pass_context
def info(ctx, server):
    """Show details for a server."""
    state = PanelState(ctx.obj["settings"].state_dir)
    record = state.get_by_name_or_id(server)
    if not record:
        console.print(f"[red]Server not found: {server}[/]")
        raise SystemExit(1)

    node = state.get_node(record.panel_node_id) if record.panel_node_id else None
    console.print(f"[bold]Server: {record.name}[/]")
    console.print(f"  ID:              {record.id}")
    console.print(f"  Panel ID:        {record.server_id}")
    console.print(f"  UUID:            {record.uuid}")
    console.print(f"  Identifier:      {record.identifier}")
    console.print(f"  Status:          {record.status}")
    console.print(f"  Node:            {node.name if node else '-'}")
    console.print(f"  Connect:         {record.connection_string}")
    if record.account_id:
        console.print(f"  Account ID:      {record.account_id}")
    if record.rcon_password:
        console.print(f"  RCON Password:   {record.rcon_password}")
    activities = state.list_activities(record.id)
    if activities:
        console.print("  Activity:")
        for a in activities:
            console.print(f"    {a.created_at}  {a.action:<8} -> {a.status}")


@cli.command()
@click.argument("node_id", type=int)
@click.option("--name", "-n", default=None, help="Server name")
@click.option("--option", "-o", multiple=True, help="Creation payload override KEY=VALUE (JSON values allowed)")
@click.pass_context
def create(ctx, node_id, name, option):
    """Create a game server on a panel node."""
    extra = _parse_options(option)
    if name:
        extra["name"] = name
    panel = _make_context(ctx)
    record = _run_step(ctx, panel, lambda: panel.lifecycle.create(node_id, extra or None))
    result_lines = [
        f"[bold]ID:[/]         {record.id}",
        f"[bold]Panel ID:[/]   {record.server_id}",
        f"[bold]Name:[/]       {record.name}",
        f"[bold]Connect:[/]    {record.connection_string}",
    ]
    if record.rcon_password:
        result_lines.append(f"[bold]RCON Pass:[/]  {record.rcon_password}")
    console.print(Panel("\n".join(result_lines), title="[green]Server Created[/]", border_style="green"))


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.argument("signal", type=click.Choice(["start", "stop", "restart", "kill"]))
@click.option("--no-wait", is_flag=True, help="Do not wait for the server to report running")
@click.pass_context
def power(ctx, server, signal, no_wait):
    """Send a power signal to a server."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    _run_step(ctx, panel, lambda: panel.lifecycle.power(record, signal, skip_wait=no_wait))
    console.print(f"[green]Server {record.name}: {signal} done.[/]")


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.pass_context
def suspend(ctx, server):
    """Suspend a server."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    _run_step(ctx, panel, lambda: panel.lifecycle.suspend(record), "Suspending server")
    console.print(f"[green]Server {record.name} suspended.[/]")


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.option("--keep-token", is_flag=True, help="Keep the server's login-token account")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def delete(ctx, server, keep_token, yes):
    """Delete a server from the panel and local state."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    if not yes:
        click.confirm(f"Delete server {record.name} ({record.id})?", abort=True)

    def _delete():
        panel.lifecycle.delete(record.server_id, None if keep_token else record.account_id)
        panel.state.delete_server(record.id)

    _run_step(ctx, panel, _delete, "Deleting server")
    console.print(f"[green]Server {record.name} deleted.[/]")


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.argument("key")
@click.argument("value")
@click.pass_context
def env(ctx, server, key, value):
    """Set a startup environment variable."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    _run_step(ctx, panel, lambda: panel.lifecycle.update_environment(record, key, value), f"Updating {key}")
    console.print(f"[green]{key} updated on {record.name}.[/]")


@cli.command("command")
@click.argument("server", shell_complete=_complete_server)
@click.argument("command", nargs=-1, required=True)
@click.pass_context
def console_command(ctx, server, command):
    """Send a console command to a server."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    cmd_str = " ".join(command)
    _run_step(ctx, panel, lambda: panel.lifecycle.send_console_command(record, cmd_str), "Sending command")
    console.print(f"[green]Sent to {record.name}:[/] {cmd_str}")


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.option("--directory", "-d", default="csgo/logs", help="Log directory inside the server")
@click.pass_context
def logs(ctx, server, directory):
    """Show the newest log file of a server."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    content = _run_step(
        ctx, panel, lambda: panel.lifecycle.get_latest_log_contents(record, directory), "Fetching logs",
    )
    if not content:
        console.print("No log files found.")
        return
    click.echo(content)


@cli.command()
@click.argument("server", shell_complete=_complete_server)
@click.pass_context
def usage(ctx, server):
    """Show current state and resource usage of a server."""
    panel = _make_context(ctx)
    record = _resolve_server(panel, server)
    result = panel.lifecycle.get_resource_usage(record)
    if result is None:
        console.print(f"[yellow]State of {record.name} is unknown.[/]")
        raise SystemExit(1)
    if result == INSTALLING:
        console.print(f"{record.name}: installing")
        return
    console.print(f"[bold]{record.name}:[/] {result.current_state}")
    for key, value in result.resources.items():
        console.print(f"  {key}: {value}")
