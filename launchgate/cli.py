"""
launchgate CLI

Inspect the preset catalog, look up failure playbooks, check a dev server
command against its readiness pattern and show effective settings.

Usage:
    launchgate presets [--json]
    launchgate preset <preset_id> [--json]
    launchgate playbooks <message> [--preset ID] [--platform NAME] [--json]
    launchgate dev-server <command> [--cwd DIR] [--pattern REGEX] [--url URL] [--timeout-ms N]
    launchgate config [--json]
"""

import asyncio
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import load_effective_settings
from .dev_server import DevServerProcess
from .diagnostics import DiagnosticEventLog
from .errors import LaunchGateError
from .models import ReadinessChainResult, RetryPolicy
from .playbooks import match_playbooks
from .presets import list_presets, resolve_preset
from .readiness import run_readiness_chain
from .signals import create_dev_server_ready_signal

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def print_error(console: Console, error: LaunchGateError) -> None:
    console.print(f"[red]Error ({error.code.value}): {error.message}[/red]")
    supported = error.details.get("supported_presets")
    if supported:
        console.print(f"[dim]Known presets: {', '.join(supported)}[/dim]")
    for item in error.details.get("errors", []):
        console.print(f"[dim]  {item['field']}: {item['message']}[/dim]")


def format_duration(duration_ms: float) -> Text:
    """Format duration with color coding."""
    if duration_ms < 100:
        return Text(f"{duration_ms:.1f}ms", style="green")
    elif duration_ms < 1000:
        return Text(f"{duration_ms:.1f}ms", style="yellow")
    else:
        return Text(f"{duration_ms / 1000:.2f}s", style="red")


def create_timeline_table(result: ReadinessChainResult) -> Table:
    table = Table(title="Readiness Timeline", show_header=True, header_style="bold cyan")
    table.add_column("Signal")
    table.add_column("Attempt", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")

    for entry in result.diagnostics.timeline:
        if entry.ready:
            status = Text("ready", style="bold green")
        elif entry.timed_out:
            status = Text("timed out", style="bold red")
        else:
            status = Text("pending", style="yellow")
        table.add_row(
            entry.signal_name,
            str(entry.attempt),
            format_duration(entry.duration_ms),
            status,
            entry.error or entry.detail or "",
        )
    return table


@click.group()
@click.option('--config', 'config_path', type=click.Path(path_type=Path), default=None,
              help='Path to config.toml (default: ~/.config/launchgate/config.toml)')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool):
    """Launch presets, readiness checks and failure playbooks for Electron apps."""
    console = Console()
    try:
        settings = load_effective_settings(config_path, overrides={"log_level": "DEBUG" if verbose else None})
    except LaunchGateError as e:
        print_error(console, e)
        sys.exit(2)

    setup_logging(settings.log_level)
    ctx.obj = {"settings": settings, "console": console}


@cli.command()
@click.option('--json', 'output_json', is_flag=True, help='Output JSON instead of formatted tables')
@click.pass_context
def presets(ctx: click.Context, output_json: bool):
    """List catalog presets."""
    console: Console = ctx.obj["console"]
    catalog = list_presets()

    if output_json:
        click.echo(json.dumps([p.model_dump(mode="json") for p in catalog], indent=2))
        return

    default_preset = ctx.obj["settings"].default_preset
    caption = f"Default preset: {default_preset}" if default_preset else None
    table = Table(title="Launch Presets", caption=caption, show_header=True, header_style="bold cyan")
    table.add_column("ID", no_wrap=True, min_width=20)
    table.add_column("Ver", justify="right", no_wrap=True)
    table.add_column("Mode", no_wrap=True)
    table.add_column("Dev Server", overflow="fold")
    table.add_column("Signals", overflow="fold")

    for preset in catalog:
        name = Text(preset.id, style="bold green" if preset.id == default_preset else "")
        dev_server = preset.dev_server.command if preset.dev_server.managed else "[dim]unmanaged[/dim]"
        signals = ", ".join(spec.kind.value for spec in preset.readiness_signals) or "[dim]none[/dim]"
        table.add_row(name, str(preset.version), preset.mode.value, dev_server, signals)

    console.print(table)


@cli.command()
@click.argument('preset_id')
@click.option('--json', 'output_json', is_flag=True, help='Output JSON instead of formatted tables')
@click.pass_context
def preset(ctx: click.Context, preset_id: str, output_json: bool):
    """
    Show one preset.

    PRESET_ID: preset identifier (see `launchgate presets`)
    """
    console: Console = ctx.obj["console"]
    try:
        selected = resolve_preset(preset_id)
    except LaunchGateError as e:
        if output_json:
            click.echo(json.dumps(e.to_dict(), indent=2))
        else:
            print_error(console, e)
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(selected.model_dump(mode="json"), indent=2))
        return

    console.print(f"[bold magenta]{selected.id}[/bold magenta] v{selected.version} ({selected.mode.value})")
    dev_server = selected.dev_server
    if dev_server.managed:
        console.print(f"  Dev server: [cyan]{dev_server.command}[/cyan]")
        console.print(f"  Ready pattern: {dev_server.ready_pattern or '-'}")
        console.print(f"  Timeout: {dev_server.timeout_ms}ms")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Signal")
    table.add_column("Timeout", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("Optional")
    for spec in selected.readiness_signals:
        interval = spec.retry_policy.interval_ms if spec.retry_policy else None
        table.add_row(
            spec.kind.value,
            f"{spec.timeout_ms}ms",
            f"{interval}ms" if interval is not None else "-",
            "yes" if spec.optional else "no",
        )
    if selected.readiness_signals:
        console.print(table)

    for hint in selected.diagnostic_hints:
        console.print(f"[yellow]⚠[/yellow] {hint}")


@cli.command()
@click.argument('message')
@click.option('--preset', 'preset_id', type=str, default=None, help='Preset in use')
@click.option('--platform', type=str, default=None, help='Platform (darwin, linux, win32); default: any')
@click.option('--json', 'output_json', is_flag=True, help='Output JSON instead of formatted text')
@click.pass_context
def playbooks(ctx: click.Context, message: str, preset_id: Optional[str], platform: Optional[str], output_json: bool):
    """
    Find remediation playbooks for an error message.

    MESSAGE: error text, e.g. 'Readiness signal "windowCreated" did not complete.'
    """
    console: Console = ctx.obj["console"]
    matches = match_playbooks(message, preset_id, platform)

    if output_json:
        click.echo(json.dumps([p.model_dump(mode="json") for p in matches], indent=2))
        return

    if not matches:
        console.print("[dim]No playbooks matched.[/dim]")
        return

    for playbook in matches:
        console.print(f"[bold magenta]{playbook.title}[/bold magenta] [dim]({playbook.id})[/dim]")
        console.print(f"  {playbook.explanation}")
        for number, step in enumerate(playbook.steps, start=1):
            console.print(f"  {number}. {step}")
        if playbook.link:
            console.print(f"  [cyan]{playbook.link}[/cyan]")
        console.print()


async def check_dev_server(
    command: str,
    cwd: str,
    pattern: Optional[str],
    url: Optional[str],
    timeout_ms: int,
    terminate_timeout_s: float,
):
    """Spawn a dev server, run devServerReady alone, then terminate it."""
    event_log = DiagnosticEventLog()
    server = await DevServerProcess.spawn(command, cwd, event_log=event_log)
    try:
        signal = create_dev_server_ready_signal(
            timeout_ms=timeout_ms,
            ready_pattern=re.compile(pattern, re.IGNORECASE) if pattern else None,
            probe_url=url,
            get_stdout_lines=server.collector.stdout_lines,
            get_stderr_lines=server.collector.stderr_lines,
            retry_policy=RetryPolicy(interval_ms=250),
        )
        result = await run_readiness_chain([signal])
    finally:
        server.unbind()
        await server.terminate(terminate_timeout_s)
    return result, server.collector.snapshot()


@cli.command('dev-server')
@click.argument('command')
@click.option('--cwd', type=click.Path(exists=True, file_okay=False), default=None, help='Working directory')
@click.option('--pattern', type=str, default=None, help='Case-insensitive readiness regex')
@click.option('--url', type=str, default=None, help='URL probed with HTTP GET')
@click.option('--timeout-ms', type=int, default=None, help='Readiness timeout (default from settings)')
@click.pass_context
def dev_server(
    ctx: click.Context,
    command: str,
    cwd: Optional[str],
    pattern: Optional[str],
    url: Optional[str],
    timeout_ms: Optional[int],
):
    """
    Check that a dev server command reaches readiness.

    Exit codes:
      0 - Ready
      1 - Not ready (timed out) or invalid arguments
    """
    console: Console = ctx.obj["console"]
    settings = ctx.obj["settings"]

    if pattern is not None:
        try:
            re.compile(pattern)
        except re.error as e:
            console.print(f"[red]Error: invalid --pattern regex: {e}[/red]")
            sys.exit(1)

    try:
        result, snapshot = asyncio.run(check_dev_server(
            command,
            cwd or os.getcwd(),
            pattern,
            url,
            timeout_ms or settings.dev_server_timeout_ms,
            settings.dev_server_terminate_timeout_s,
        ))
    except OSError as e:
        console.print(f"[red]Error: failed to spawn dev server: {e}[/red]")
        sys.exit(1)

    console.print(create_timeline_table(result))

    if result.ok:
        console.print("[bold green]✓ Dev server ready[/bold green]")
        sys.exit(0)

    console.print(f"[bold red]✗ Dev server not ready: {result.failed_signal.detail}[/bold red]")
    tail = (snapshot.stdout + snapshot.stderr)[-10:]
    if tail:
        console.print("[dim]Last output:[/dim]")
        for line in tail:
            console.print(Text(f"  {line}", style="dim"))
    sys.exit(1)


@cli.command()
@click.option('--json', 'output_json', is_flag=True, help='Output JSON instead of formatted table')
@click.pass_context
def config(ctx: click.Context, output_json: bool):
    """Show effective settings (file, environment and flags merged)."""
    console: Console = ctx.obj["console"]
    settings = ctx.obj["settings"]

    if output_json:
        click.echo(json.dumps(settings.model_dump(mode="json"), indent=2))
        return

    table = Table(title="Effective Settings", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
