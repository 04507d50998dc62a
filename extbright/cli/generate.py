"""CLI commands for generating service and configuration files."""

import os
import sys
from pathlib import Path
from typing import Optional

import typer

from extbright.config import CONFIG_DIR

generate_app = typer.Typer(help="Generate configuration and service files")


def _get_session_env() -> tuple[str, str]:
    """Get the session environment the agent needs (D-Bus and Wayland)."""
    wayland_display = os.environ.get("WAYLAND_DISPLAY", "wayland-1")
    xdg_runtime_dir = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return wayland_display, xdg_runtime_dir


def _write_or_echo(content: str, output: Optional[Path]) -> None:
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content)
        typer.echo(f"Written to {output}")
    else:
        typer.echo(content)


@generate_app.command("systemd")
def generate_systemd(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write to file instead of stdout",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file to use in unit",
    ),
    wayland_display: Optional[str] = typer.Option(
        None,
        "--wayland-display",
        help="WAYLAND_DISPLAY value (defaults to current env)",
    ),
) -> None:
    """Generate a systemd user unit file.

    The generated unit is intended for use with 'systemctl --user'. The user
    needs read/write access to /dev/i2c-* and the displays' hidraw nodes.

    Example usage:
        extbright generate systemd > ~/.config/systemd/user/extbright.service
        systemctl --user daemon-reload
        systemctl --user enable --now extbright
    """
    python_path = sys.executable
    wayland_env, xdg_runtime = _get_session_env()

    if wayland_display is None:
        wayland_display = wayland_env

    config_arg = f" --config {config_path}" if config_path else ""

    unit = f"""\
[Unit]
Description=External display brightness sync
After=graphical-session.target
PartOf=graphical-session.target

[Service]
Type=simple
ExecStart={python_path} -m extbright run{config_arg}
Restart=on-failure
RestartSec=5

# Session environment (wlr-randr and the session bus)
Environment=WAYLAND_DISPLAY={wayland_display}
Environment=XDG_RUNTIME_DIR={xdg_runtime}
Environment=DBUS_SESSION_BUS_ADDRESS=unix:path={xdg_runtime}/bus

NoNewPrivileges=true
PrivateTmp=true

[Install]
WantedBy=graphical-session.target
"""

    if output:
        _write_or_echo(unit, output)
        typer.echo()
        typer.echo("To install:")
        typer.echo(f"  cp {output} ~/.config/systemd/user/")
        typer.echo("  systemctl --user daemon-reload")
        typer.echo("  systemctl --user enable --now extbright")
    else:
        typer.echo(unit)
        typer.echo("# Save to: ~/.config/systemd/user/extbright.service")
        typer.echo("# Then run:")
        typer.echo("#   systemctl --user daemon-reload")
        typer.echo("#   systemctl --user enable --now extbright")


@generate_app.command("env")
def generate_env(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write to file instead of stdout",
    ),
) -> None:
    """Generate an example .env file for configuration.

    Environment variables can be used instead of or alongside a YAML config file.
    Environment variables take precedence over config file values.
    """
    env_content = """\
# extbright environment configuration
# Copy to .env and customize values
# Environment variables override config file values

# Agent Settings
EXTBRIGHT_AGENT__LOG_LEVEL=INFO
EXTBRIGHT_AGENT__IO_WORKERS=4

# DDC/CI
EXTBRIGHT_DDC__RETRIES=5
EXTBRIGHT_DDC__BACKOFF=0.05

# Hotplug
EXTBRIGHT_HOTPLUG__ENABLED=true
EXTBRIGHT_HOTPLUG__GRACE_PERIOD=1.5

# Brightness key sync
EXTBRIGHT_SYNC__ENABLED=true
EXTBRIGHT_SYNC__MODE=all
EXTBRIGHT_SYNC__DEBOUNCE=0.05
"""
    _write_or_echo(env_content, output)


@generate_app.command("config")
def generate_config(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write to file instead of stdout",
    ),
) -> None:
    """Generate an example YAML configuration file.

    Example usage:
        extbright generate config > ~/.config/extbright/config.yaml
    """
    config_content = f"""\
# extbright configuration
# Save to {CONFIG_DIR / "config.yaml"} or use --config flag

agent:
  log_level: INFO
  store_path: {CONFIG_DIR / "displays.yaml"}
  io_workers: 4

ddc:
  retries: 5
  backoff: 0.05
  i2c_glob: /dev/i2c-*

enumeration:
  concurrency: 4
  correlate: true
  randr_command: wlr-randr
  command_timeout: 5.0

hotplug:
  enabled: true
  grace_period: 1.5
  poll_interval: 1.0
  probe_retries: 3      # re-probe a new device that did not answer yet
  retry_delay: 1.0

sync:
  enabled: true
  mode: all            # or "primary"
  debounce: 0.05
  max_parallel: 4
  verify_writes: false
  # primary_display: ddc-0x112E647C   # run 'extbright detect' for ids

keys:
  source: dbus         # or "none"
  bus_name: com.system76.CosmicSettingsDaemon
  object_path: /com/system76/CosmicSettingsDaemon
  interface: com.system76.CosmicSettingsDaemon
"""
    _write_or_echo(config_content, output)
