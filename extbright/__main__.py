"""CLI entry point for extbright."""

import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import AsyncIterator, Optional

import typer
from pydantic import ValidationError

from extbright import __version__
from extbright.cli.generate import generate_app

app = typer.Typer(
    name="extbright",
    help="Brightness control and key sync for external displays (DDC/CI, Apple/LG HID)",
    add_completion=True,
)
profile_app = typer.Typer(help="Save and restore brightness profiles")

app.add_typer(generate_app, name="generate")
app.add_typer(profile_app, name="profile")


def setup_logging(level: str) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"extbright {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config file",
        exists=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Brightness control and key sync for external displays."""
    ctx.obj = {"config": config, "verbose": verbose}


def _settings(ctx: typer.Context, agent: bool = False):
    """Load settings and configure logging for a command.

    One-shot commands only log warnings unless --verbose is given; the agent
    uses the configured level.
    """
    from extbright.config import Settings

    options = ctx.obj or {}
    settings = Settings.load(options.get("config"))

    if options.get("verbose"):
        settings.agent.log_level = "DEBUG"
    elif not agent:
        settings.agent.log_level = "WARNING"

    setup_logging(settings.agent.log_level)
    return settings


@contextlib.asynccontextmanager
async def _displays(settings) -> AsyncIterator[tuple]:
    """Enumerate and open every display for a one-shot command."""
    from extbright.enumeration import Enumerator
    from extbright.manager import DisplayManager

    async with DisplayManager(workers=settings.agent.io_workers) as manager:
        enumerator = Enumerator.from_settings(manager, settings)
        infos = await enumerator.register(await enumerator.scan())
        yield manager, infos


def _select(infos: list, display: Optional[str]) -> list:
    """Filter displays by id, connector name or device path."""
    if display is None:
        return infos
    return [
        info for info in infos
        if display in (str(info.id), info.connector, info.device_path)
    ]


def _parse_percentage(value: str) -> int:
    try:
        brightness = int(value.rstrip("%"))
    except ValueError:
        typer.echo(f"Error: Invalid brightness value: {value}", err=True)
        raise typer.Exit(1)
    if not 0 <= brightness <= 100:
        typer.echo("Error: Brightness must be between 0 and 100", err=True)
        raise typer.Exit(1)
    return brightness


@app.command()
def run(ctx: typer.Context) -> None:
    """Run the agent: hotplug tracking and brightness-key sync."""
    from extbright.agent import Agent

    settings = _settings(ctx, agent=True)

    async def _run() -> None:
        agent = Agent(settings)
        await agent.run()

    try:
        asyncio.run(_run())

    except KeyboardInterrupt:
        pass


@app.command("list")
def list_displays(ctx: typer.Context) -> None:
    """List connected displays."""
    settings = _settings(ctx)

    async def _list() -> None:
        async with _displays(settings) as (_, infos):
            if not infos:
                typer.echo("No displays found.", err=True)
                raise typer.Exit(1)

            for info in infos:
                connector = info.connector or "-"
                typer.echo(f"{str(info.id):<24} {info.kind.value:<10} {connector:<10} {info.label}")

    asyncio.run(_list())


@app.command()
def detect(ctx: typer.Context) -> None:
    """Detect displays and show detailed identity and correlation info."""
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    store = ConfigStore.open(settings.agent.store_path)

    async def _detect() -> None:
        async with _displays(settings) as (_, infos):
            if not infos:
                typer.echo("No displays found.")
                typer.echo("\nTroubleshooting:")
                typer.echo("  - Load the i2c-dev kernel module (modprobe i2c-dev)")
                typer.echo("  - Ensure you can read/write /dev/i2c-* and the hidraw nodes")
                typer.echo("  - Ensure DDC/CI is enabled in the monitor's menu")
                raise typer.Exit(1)

            typer.echo(f"\nFound {len(infos)} display(s):\n")

            for info in infos:
                config = store.monitor(info.id)
                typer.echo(f"{info.label}:")
                typer.echo(f"  Protocol:   {info.kind.value}")
                typer.echo(f"  Device:     {info.device_path}")
                typer.echo(f"  Vendor:     {info.vendor or 'Unknown'}")
                typer.echo(f"  Model:      {info.model or 'Unknown'}")
                typer.echo(f"  Connector:  {info.connector or 'Unknown'}")
                typer.echo(f"  EDID serial: {info.edid_serial or 'Unknown'}")
                typer.echo(f"  Brightness: {'read/write' if info.can_read_brightness else 'write only'}")
                typer.echo(
                    f"  Settings:   gamma={config.gamma} min={config.min_brightness}% "
                    f"sync={'on' if config.sync_enabled else 'off'}"
                )
                typer.echo(f"  ID:         {info.id}")
                if not info.id.is_stable:
                    typer.echo("  Warning:    no EDID serial; this id may change after a reboot")
                typer.echo()

            typer.echo("Use these IDs with 'extbright monitor' and in sync.primary_display.")

    asyncio.run(_detect())


@app.command("get")
def get_brightness(
    ctx: typer.Context,
    display: Optional[str] = typer.Option(
        None,
        "--display",
        "-d",
        help="Target specific display (id, connector or device path)",
    ),
) -> None:
    """Show display brightness."""
    from extbright.errors import ExtBrightError

    settings = _settings(ctx)

    async def _get() -> None:
        async with _displays(settings) as (manager, infos):
            targets = _select(infos, display)
            if not targets:
                typer.echo(f"Display not found: {display}" if display else "No displays found.", err=True)
                raise typer.Exit(1)

            for info in targets:
                if not info.can_read_brightness:
                    typer.echo(f"{info.label}: brightness cannot be read")
                    continue
                try:
                    value = await manager.get_brightness(info.id)
                    typer.echo(f"{info.label}: {value}%")
                except ExtBrightError as e:
                    typer.echo(f"{info.label}: Failed to read brightness: {e}", err=True)

    asyncio.run(_get())


@app.command("set")
def set_brightness(
    ctx: typer.Context,
    value: str = typer.Argument(
        ...,
        help="Brightness value (0-100 or 0%-100%)",
    ),
    display: Optional[str] = typer.Option(
        None,
        "--display",
        "-d",
        help="Target specific display (id, connector or device path)",
    ),
    raw: bool = typer.Option(
        False,
        "--raw",
        help="Send the value as is, without the display's gamma curve",
    ),
) -> None:
    """Set display brightness.

    The value goes through each display's gamma and minimum brightness.

    Examples:
        extbright set 50
        extbright set 75%
        extbright set 30 --display DP-2
    """
    from extbright.brightness import BrightnessCalculator
    from extbright.errors import ExtBrightError
    from extbright.store import ConfigStore

    brightness = _parse_percentage(value)
    settings = _settings(ctx)
    calculator = BrightnessCalculator(ConfigStore.open(settings.agent.store_path))

    async def _set() -> None:
        async with _displays(settings) as (manager, infos):
            targets = _select(infos, display)
            if not targets:
                typer.echo(f"Display not found: {display}" if display else "No displays found.", err=True)
                raise typer.Exit(1)

            async def _one(info) -> None:
                target = brightness if raw else calculator.calculate_for_display(brightness, info.id)
                try:
                    await manager.set_brightness(info.id, target)
                    typer.echo(f"{info.label}: Set brightness to {target}%")
                except ExtBrightError as e:
                    typer.echo(f"{info.label}: Failed to set brightness: {e}", err=True)

            await asyncio.gather(*[_one(info) for info in targets])

    asyncio.run(_set())


@app.command()
def monitor(
    ctx: typer.Context,
    display_id: str = typer.Argument(..., help="Display id as shown by 'extbright detect'"),
    gamma: Optional[float] = typer.Option(None, "--gamma", help="Gamma curve exponent (0.3-3.0)"),
    minimum: Optional[int] = typer.Option(None, "--min", help="Minimum brightness percentage"),
    sync: Optional[bool] = typer.Option(None, "--sync/--no-sync", help="Follow brightness keys"),
) -> None:
    """Show or change per-display settings."""
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    store = ConfigStore.open(settings.agent.store_path)

    changes = {}
    if gamma is not None:
        changes["gamma"] = gamma
    if minimum is not None:
        changes["min_brightness"] = minimum
    if sync is not None:
        changes["sync_enabled"] = sync

    if changes:
        try:
            config = store.update_monitor(display_id, **changes)
        except ValidationError as e:
            typer.echo(f"Error: {e.errors()[0]['msg']}", err=True)
            raise typer.Exit(1)
    else:
        config = store.monitor(display_id)

    typer.echo(f"{display_id}:")
    typer.echo(f"  gamma: {config.gamma}")
    typer.echo(f"  min_brightness: {config.min_brightness}%")
    typer.echo(f"  sync: {'on' if config.sync_enabled else 'off'}")


@profile_app.command("save")
def profile_save(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Profile name"),
) -> None:
    """Save the current brightness of every display as a profile."""
    from extbright.errors import ExtBrightError
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    store = ConfigStore.open(settings.agent.store_path)

    async def _save() -> dict:
        values = {}
        async with _displays(settings) as (manager, infos):
            for info in infos:
                if not info.can_read_brightness:
                    continue
                try:
                    values[info.id] = await manager.get_brightness(info.id)
                except ExtBrightError as e:
                    typer.echo(f"{info.label}: Failed to read brightness: {e}", err=True)
        return values

    values = asyncio.run(_save())
    if not values:
        typer.echo("No display brightness could be read.", err=True)
        raise typer.Exit(1)

    profile = store.save_profile(name, values)
    typer.echo(f"Saved profile '{name}' for {len(profile.values)} display(s)")


@profile_app.command("load")
def profile_load(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Profile name"),
) -> None:
    """Apply a saved profile to the connected displays."""
    from extbright.daemon import apply_profile
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    profile = ConfigStore.open(settings.agent.store_path).profile(name)
    if profile is None:
        typer.echo(f"Profile not found: {name}", err=True)
        raise typer.Exit(1)

    async def _load() -> dict:
        async with _displays(settings) as (manager, _):
            return await apply_profile(manager, profile)

    applied = asyncio.run(_load())
    for display_id, value in applied.items():
        typer.echo(f"{display_id}: {value}%")
    typer.echo(f"Applied profile '{name}' to {len(applied)} display(s)")


@profile_app.command("list")
def profile_list(ctx: typer.Context) -> None:
    """List saved profiles."""
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    profiles = ConfigStore.open(settings.agent.store_path).profiles()
    if not profiles:
        typer.echo("No profiles saved.")
        return

    for profile in profiles:
        values = ", ".join(f"{k}={v}%" for k, v in sorted(profile.values.items()))
        typer.echo(f"{profile.name}: {values}")


@profile_app.command("delete")
def profile_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Profile name"),
) -> None:
    """Delete a saved profile."""
    from extbright.store import ConfigStore

    settings = _settings(ctx)
    if not ConfigStore.open(settings.agent.store_path).delete_profile(name):
        typer.echo(f"Profile not found: {name}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted profile '{name}'")


@app.command(hidden=True)
def help(ctx: typer.Context) -> None:
    """Show help message."""
    assert ctx.parent is not None
    typer.echo(ctx.parent.get_help())


if __name__ == "__main__":
    app()
