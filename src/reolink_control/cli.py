"""CLI for the Reolink client.

This module exposes the client operations from a shell: generic commands,
PTZ guard/patrol/preset control, detection zones, snapshots, event polling,
recording search and playback control.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .capabilities import detect_capabilities
from .config import ReolinkConfig, get_device_by_name, list_device_names
from .events import AI, MOTION
from .exceptions import ReolinkError
from .logging_config import configure_global_logger, log_error, log_info
from .models import (
    AiEvent,
    AiType,
    ConnectionMode,
    GridArea,
    GuardOptions,
    MotionEvent,
    PresetZones,
    PtzMoveOptions,
    StreamType,
)
from .playback import PlaybackController
from .ptz import (
    get_guard,
    get_patrol,
    goto_preset,
    list_presets,
    set_guard,
    set_patrol,
    set_preset,
    start_patrol,
    stop_patrol,
    toggle_guard,
)
from .record import download, search
from .session import ReolinkSession, connect_session
from .snapshot import snap_to_file
from .zones import (
    get_ai_zone,
    get_masks,
    get_motion_zone,
    get_supported_ai_types,
    goto_preset_with_zones,
    set_ai_zone,
    set_motion_zone,
)

T = TypeVar("T")

logging.basicConfig(level=logging.WARNING, format="%(levelname)s:%(name)s:%(message)s")

# httpx logs full request URLs at INFO, which carry credentials in per-request mode
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

console = Console()


@dataclass
class CliOptions:
    """Connection options collected by the top-level callback."""

    host: str | None = None
    user: str | None = None
    password: str | None = None
    mode: ConnectionMode | None = None
    device: str | None = None
    env_file: Path | None = None
    verify_ssl: bool | None = None
    use_https: bool | None = None


def complete_device_names(incomplete: str) -> list[str]:
    """Provide shell completion for device names from config.yaml."""
    return [n for n in list_device_names() if n.lower().startswith(incomplete.lower())]


def complete_ai_types(incomplete: str) -> list[str]:
    """Provide shell completion for AI types."""
    return [t.value for t in AiType if t.value.startswith(incomplete.lower())]


# =============================================================================
# Main Application
# =============================================================================

app = typer.Typer(
    name="reolink",
    help="Control Reolink cameras and NVRs over their HTTP API.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    host: Annotated[
        str | None,
        typer.Option("--host", "-H", help="Device IP or hostname", envvar="REOLINK_NVR_HOST"),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Login user name", envvar="REOLINK_NVR_USER"),
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("--pass", "-p", help="Login password", envvar="REOLINK_NVR_PASS"),
    ] = None,
    mode: Annotated[
        ConnectionMode | None,
        typer.Option("--mode", "-m", help="Token session or per-request credentials"),
    ] = None,
    device: Annotated[
        str | None,
        typer.Option(
            "--device",
            "-d",
            help="Device name from config.yaml",
            autocompletion=complete_device_names,
        ),
    ] = None,
    env_file: Annotated[
        Path | None,
        typer.Option("--env", "-e", help="Path to .env file"),
    ] = None,
    verify_ssl: Annotated[
        bool | None,
        typer.Option(
            "--verify-ssl/--no-verify-ssl",
            help="Verify the device TLS certificate (default: REOLINK_NVR_SSL_VERIFY or off)",
            show_default=False,
        ),
    ] = None,
    use_https: Annotated[
        bool | None,
        typer.Option(
            "--https/--http",
            help="Use HTTPS or plain HTTP (default: REOLINK_NVR_USE_HTTPS or HTTPS)",
            show_default=False,
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            "-L",
            help="Log file path. When set, logs are written to file only (not stdout).",
            envvar="REOLINK_LOG_FILE",
        ),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
            envvar="REOLINK_LOG_LEVEL",
        ),
    ] = "WARNING",
) -> None:
    """Configure connection and logging options."""
    ctx.obj = CliOptions(
        host=host,
        user=user,
        password=password,
        mode=mode,
        device=device,
        env_file=env_file,
        verify_ssl=verify_ssl,
        use_https=use_https,
    )
    if log_file:
        configure_global_logger(log_file=log_file, log_level=log_level)
        log_info(f"reolink started with log level {log_level}")


def get_config(ctx: typer.Context) -> ReolinkConfig:
    """Resolve connection settings from --device, options and environment.

    Raises:
        typer.Exit: If settings are missing or invalid.
    """
    opts: CliOptions = ctx.obj or CliOptions()
    try:
        if opts.device:
            device = get_device_by_name(opts.device)
            if device is None:
                raise ValueError(f"Device '{opts.device}' not found in config.yaml")
            return device.to_connection_config()
        return ReolinkConfig.from_env(
            opts.env_file,
            host=opts.host,
            user=opts.user,
            password=opts.password,
            mode=opts.mode,
            ssl_verify=opts.verify_ssl,
            use_https=opts.use_https,
        )
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def run_with_session(ctx: typer.Context, action: Callable[[ReolinkSession], Awaitable[T]]) -> T:
    """Open a session, run ``action`` and close, exiting 1 on client errors."""
    config = get_config(ctx)

    async def _inner() -> T:
        async with connect_session(config) as session:
            return await action(session)

    try:
        return asyncio.run(_inner())
    except ReolinkError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        log_error(f"Command failed: {e}")
        raise typer.Exit(1) from e


def parse_json_option(value: str | None, label: str) -> Any:
    """Parse a JSON option value or exit with a readable message."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON for {label}:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


@app.command("login")
def login_command(ctx: typer.Context) -> None:
    """Check credentials by logging in and out."""

    async def _login(session: ReolinkSession) -> None:
        if session.mode is ConnectionMode.PER_REQUEST:
            await session.call("GetDevInfo")
            console.print("[green]Credentials accepted[/green] (per-request mode)")
            return
        console.print(f"[green]Logged in[/green] to {session.host}, lease {session.lease_seconds}s")

    run_with_session(ctx, _login)


@app.command("call")
def call_command(
    ctx: typer.Context,
    command: Annotated[str, typer.Argument(help="Command name, e.g. GetDevInfo")],
    params: Annotated[
        str | None,
        typer.Option("--params", "-j", help="JSON object of command parameters"),
    ] = None,
    action: Annotated[int, typer.Option("--action", "-a", min=0, max=1)] = 0,
) -> None:
    """Send any command and print its JSON value."""
    param_obj = parse_json_option(params, "--params") or {}

    async def _call(session: ReolinkSession) -> Any:
        return await session.call(command, param_obj, action)

    console.print_json(data=run_with_session(ctx, _call))


@app.command("snap")
def snap_command(
    ctx: typer.Context,
    output: Annotated[Path, typer.Option("--out", "-o", help="Output JPEG path")] = Path("snapshot.jpg"),
    channel: Annotated[int, typer.Option("--channel", "-c", min=0)] = 0,
) -> None:
    """Save a JPEG snapshot."""

    async def _snap(session: ReolinkSession) -> Path:
        return await snap_to_file(session, output, channel)

    path = run_with_session(ctx, _snap)
    console.print(f"[green]Saved[/green] {path}")


@app.command("caps")
def caps_command(ctx: typer.Context) -> None:
    """Show detected device capabilities."""
    caps = run_with_session(ctx, detect_capabilities)

    table = Table(title="Capabilities")
    table.add_column("Feature", style="cyan")
    table.add_column("Supported")
    for name, supported in caps.model_dump().items():
        table.add_row(name, "[green]✓[/green]" if supported else "[red]✗[/red]")
    console.print(table)


# =============================================================================
# PTZ Guard Commands
# =============================================================================

guard_app = typer.Typer(name="guard", help="PTZ guard (home position) commands.", no_args_is_help=True)
app.add_typer(guard_app, name="guard")


def _print_guard(title: str, enabled: bool, timeout: int, channel: int) -> None:
    state = "[green]enabled[/green]" if enabled else "[yellow]disabled[/yellow]"
    console.print(
        Panel(f"Channel: {channel}\nGuard: {state}\nReturn after: {timeout}s", title=title)
    )


@guard_app.command("get")
def guard_get(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """Show the guard configuration."""
    guard = run_with_session(ctx, lambda s: get_guard(s, channel))
    _print_guard("PTZ Guard", guard.enabled, guard.timeout, guard.channel)


@guard_app.command("set")
def guard_set(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)] = 0,
    enable: Annotated[bool, typer.Option("--enable/--disable", help="Enable or disable guard")] = True,
    timeout: Annotated[int, typer.Option("--timeout", help="Idle seconds (only 60 is supported)")] = 60,
    go_now: Annotated[
        bool,
        typer.Option("--go-now", help="Move to the saved guard pose instead of saving the current one"),
    ] = False,
) -> None:
    """Set the guard position to the current pose and enable/disable it."""
    options = GuardOptions(enabled=enable, timeout_sec=timeout, go_to_guard_now=go_now)
    run_with_session(ctx, lambda s: set_guard(s, channel, options))
    _print_guard("PTZ Guard updated", enable, timeout, channel)


@guard_app.command("toggle")
def guard_toggle(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """Flip the guard enabled flag."""
    guard = run_with_session(ctx, lambda s: toggle_guard(s, channel))
    _print_guard("PTZ Guard toggled", guard.enabled, guard.timeout, guard.channel)


# =============================================================================
# PTZ Patrol Commands
# =============================================================================

patrol_app = typer.Typer(name="patrol", help="PTZ patrol route commands.", no_args_is_help=True)
app.add_typer(patrol_app, name="patrol")


@patrol_app.command("get")
def patrol_get(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """List patrol routes and their waypoints."""
    patrols = run_with_session(ctx, lambda s: get_patrol(s, channel))

    table = Table(title=f"Patrol routes (channel {channel})")
    table.add_column("Route", style="cyan")
    table.add_column("Name")
    table.add_column("Enabled", style="yellow")
    table.add_column("Waypoints (preset@speed/dwell)", style="green")
    for patrol in patrols:
        points = ", ".join(f"{w.id}@{w.speed}/{w.dwell_time}s" for w in patrol.waypoints)
        table.add_row(str(patrol.id), patrol.name or "", "✓" if patrol.enabled else "✗", points or "-")
    console.print(table)


@patrol_app.command("set")
def patrol_set(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    config: Annotated[str, typer.Argument(help="Patrol JSON (preset, points or path form)")],
) -> None:
    """Write a patrol route from JSON."""
    payload = parse_json_option(config, "patrol")
    if not isinstance(payload, dict):
        console.print("[red]Error:[/red] patrol JSON must be an object")
        raise typer.Exit(1)
    run_with_session(ctx, lambda s: set_patrol(s, channel, payload))
    console.print(f"[green]Patrol route {payload.get('id', 0)} written[/green]")


@patrol_app.command("start")
def patrol_start(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    patrol_id: Annotated[int, typer.Argument(min=0, max=5)],
) -> None:
    """Start a patrol route."""
    run_with_session(ctx, lambda s: start_patrol(s, channel, patrol_id))
    console.print(f"[green]Patrol {patrol_id} started[/green]")


@patrol_app.command("stop")
def patrol_stop(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    patrol_id: Annotated[int, typer.Argument(min=0, max=5)],
) -> None:
    """Stop a patrol route."""
    run_with_session(ctx, lambda s: stop_patrol(s, channel, patrol_id))
    console.print(f"[green]Patrol {patrol_id} stopped[/green]")


# =============================================================================
# Preset Commands
# =============================================================================

preset_app = typer.Typer(name="preset", help="PTZ preset commands.", no_args_is_help=True)
app.add_typer(preset_app, name="preset")


def load_zone_store(path: Path) -> dict[int, PresetZones]:
    """Load per-preset zones from a YAML file.

    The file maps preset ids to ``md``, ``ai`` and ``masks`` entries under a
    top-level ``presets`` key.

    Raises:
        ValueError: If the file is malformed.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    presets = raw.get("presets", {}) if isinstance(raw, dict) else None
    if not isinstance(presets, dict):
        raise ValueError(f"{path}: 'presets' must be a mapping of preset id to zones")
    return {int(preset_id): PresetZones.model_validate(zones or {}) for preset_id, zones in presets.items()}


@preset_app.command("list")
def preset_list(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """List configured presets."""
    presets = run_with_session(ctx, lambda s: list_presets(s, channel))

    table = Table(title=f"Presets (channel {channel})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    for preset in presets:
        if preset.enabled:
            table.add_row(str(preset.id), preset.name)
    console.print(table)


@preset_app.command("set")
def preset_set(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    preset_id: Annotated[int, typer.Argument(min=1, max=64)],
    name: Annotated[str | None, typer.Option("--name", "-n", help="Preset name (max 31 chars)")] = None,
) -> None:
    """Save the current position as a preset."""
    run_with_session(ctx, lambda s: set_preset(s, channel, preset_id, name))
    console.print(f"[green]Preset {preset_id} saved[/green]")


@preset_app.command("goto")
def preset_goto(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    preset_id: Annotated[int, typer.Argument(min=0, max=64)],
    speed: Annotated[int | None, typer.Option("--speed", "-s", min=1, max=64)] = None,
    zones_file: Annotated[
        Path | None,
        typer.Option("--zones", "-z", help="YAML file of per-preset zones to apply after moving"),
    ] = None,
) -> None:
    """Move to a preset, optionally applying stored zones."""
    options = PtzMoveOptions(speed=speed)

    if zones_file is None:
        run_with_session(ctx, lambda s: goto_preset(s, channel, preset_id, options))
        console.print(f"[green]Moved to preset {preset_id}[/green]")
        return

    try:
        store = load_zone_store(zones_file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Zone file error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    applied = run_with_session(
        ctx, lambda s: goto_preset_with_zones(s, channel, preset_id, store.get, options)
    )
    suffix = " and applied stored zones" if applied else " (no stored zones)"
    console.print(f"[green]Moved to preset {preset_id}{suffix}[/green]")


# =============================================================================
# Zone Commands
# =============================================================================

zone_app = typer.Typer(name="zone", help="Motion/AI detection zone commands.", no_args_is_help=True)
app.add_typer(zone_app, name="zone")


def _grid_from_options(width: int, height: int, bits: str) -> GridArea:
    try:
        return GridArea(width=width, height=height, bits=bits)
    except ValidationError as e:
        console.print(f"[red]Invalid grid:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _print_grid(title: str, area: GridArea) -> None:
    rows = [
        "".join("█" if c == "1" else "·" for c in area.bits[r * area.width:(r + 1) * area.width])
        for r in range(area.height)
    ]
    console.print(Panel("\n".join(rows), title=f"{title} ({area.width}x{area.height})"))


@zone_app.command("motion-get")
def zone_motion_get(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """Show the motion detection grid."""
    _print_grid("Motion zone", run_with_session(ctx, lambda s: get_motion_zone(s, channel)))


@zone_app.command("motion-set")
def zone_motion_set(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    width: Annotated[int, typer.Option("--width", min=1)],
    height: Annotated[int, typer.Option("--height", min=1)],
    bits: Annotated[str, typer.Option("--bits", "-b", help="Row-major 0/1 string")],
) -> None:
    """Write the motion detection grid."""
    area = _grid_from_options(width, height, bits)
    run_with_session(ctx, lambda s: set_motion_zone(s, channel, area))
    console.print("[green]Motion zone updated[/green]")


@zone_app.command("ai-get")
def zone_ai_get(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    ai_type: Annotated[AiType, typer.Argument(autocompletion=complete_ai_types)],
) -> None:
    """Show the detection grid for an AI type."""
    _print_grid(f"{ai_type.value} zone", run_with_session(ctx, lambda s: get_ai_zone(s, channel, ai_type)))


@zone_app.command("ai-set")
def zone_ai_set(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    ai_type: Annotated[AiType, typer.Argument(autocompletion=complete_ai_types)],
    width: Annotated[int, typer.Option("--width", min=1)],
    height: Annotated[int, typer.Option("--height", min=1)],
    bits: Annotated[str, typer.Option("--bits", "-b", help="Row-major 0/1 string")],
) -> None:
    """Write the detection grid for an AI type."""
    area = _grid_from_options(width, height, bits)
    run_with_session(ctx, lambda s: set_ai_zone(s, channel, ai_type, area))
    console.print(f"[green]{ai_type.value} zone updated[/green]")


@zone_app.command("ai-types")
def zone_ai_types(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """List the AI types a channel supports."""
    types = run_with_session(ctx, lambda s: get_supported_ai_types(s, channel))
    console.print(", ".join(t.value for t in types) or "[dim]none reported[/dim]")


@zone_app.command("masks")
def zone_masks(ctx: typer.Context, channel: Annotated[int, typer.Argument(min=0)] = 0) -> None:
    """Show privacy masks."""
    masks = run_with_session(ctx, lambda s: get_masks(s, channel))
    console.print_json(data=[m.model_dump() for m in masks])


# =============================================================================
# Event Commands
# =============================================================================

events_app = typer.Typer(name="events", help="Motion and AI event commands.", no_args_is_help=True)
app.add_typer(events_app, name="events")


@events_app.command("listen")
def events_listen(
    ctx: typer.Context,
    interval: Annotated[float, typer.Option("--interval", "-i", min=0.1, help="Poll interval in seconds")] = 1.0,
    duration: Annotated[
        float | None,
        typer.Option("--duration", "-t", help="Stop after this many seconds (default: until Ctrl+C)"),
    ] = None,
    channels: Annotated[
        list[int] | None,
        typer.Option("--channel", "-c", help="Channel to watch (repeatable; default: all)"),
    ] = None,
) -> None:
    """Print motion and AI state changes as they happen."""

    def on_motion(event: MotionEvent) -> None:
        state = "[red]motion[/red]" if event.active else "[dim]clear[/dim]"
        console.print(f"{event.timestamp:%H:%M:%S} ch{event.channel} {state}")

    def on_ai(event: AiEvent) -> None:
        detected = ", ".join(event.types) if event.types else "[dim]clear[/dim]"
        console.print(f"{event.timestamp:%H:%M:%S} ch{event.channel} AI: {detected}")

    async def _listen(session: ReolinkSession) -> None:
        poller = session.create_poller(interval=interval, channels=channels or None)
        poller.on(MOTION, on_motion)
        poller.on(AI, on_ai)
        poller.start()
        console.print("[dim]Listening for events...[/dim]")
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)

    try:
        run_with_session(ctx, _listen)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


# =============================================================================
# Recording and Playback Commands
# =============================================================================

rec_app = typer.Typer(name="rec", help="Recording search and download commands.", no_args_is_help=True)
app.add_typer(rec_app, name="rec")


@rec_app.command("search")
def rec_search(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    start: Annotated[str, typer.Argument(help="ISO-8601 start, e.g. 2025-11-10T09:00:00Z")],
    end: Annotated[str, typer.Argument(help="ISO-8601 end")],
    stream: Annotated[StreamType, typer.Option("--stream", "-s")] = StreamType.MAIN,
) -> None:
    """Search recordings in a time range."""
    console.print_json(data=run_with_session(ctx, lambda s: search(s, channel, start, end, stream)))


@rec_app.command("download")
def rec_download(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    file_name: Annotated[str, typer.Argument(help="File name from 'rec search'")],
    stream: Annotated[StreamType, typer.Option("--stream", "-s")] = StreamType.MAIN,
) -> None:
    """Request a recorded file."""
    console.print_json(data=run_with_session(ctx, lambda s: download(s, channel, file_name, stream)))


playback_app = typer.Typer(name="playback", help="Playback control commands.", no_args_is_help=True)
app.add_typer(playback_app, name="playback")


@playback_app.command("start")
def playback_start(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    start_time: Annotated[str, typer.Argument(help="ISO-8601 start time")],
) -> None:
    """Start playback from a time."""
    console.print_json(
        data=run_with_session(ctx, lambda s: PlaybackController(s).start(channel, start_time))
    )


@playback_app.command("stop")
def playback_stop(
    ctx: typer.Context,
    channel: Annotated[int | None, typer.Argument(min=0, help="Channel (default: all)")] = None,
) -> None:
    """Stop playback."""
    console.print_json(data=run_with_session(ctx, lambda s: PlaybackController(s).stop(channel)))


@playback_app.command("seek")
def playback_seek(
    ctx: typer.Context,
    channel: Annotated[int, typer.Argument(min=0)],
    seek_time: Annotated[str, typer.Argument(help="ISO-8601 time to seek to")],
) -> None:
    """Seek the current playback."""
    console.print_json(
        data=run_with_session(ctx, lambda s: PlaybackController(s).seek(channel, seek_time))
    )


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
