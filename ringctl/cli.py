"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer

from ringctl.api import Client
from ringctl.core import frame
from ringctl.core.errors import RingctlError
from ringctl.core.model import DeviceProfile, SessionState
from ringctl.core.profile_loader import load_profile

app = typer.Typer(help="Session control for the R02 ring sensor over BLE")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Path to a YAML device profile")


def _load(profile_path: Path | None) -> DeviceProfile:
    loaded = load_profile(profile_path)
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded.profile


def _rx_line(payload: bytes) -> str:
    head = payload[:8].hex(" ").upper()
    return f"RX len={len(payload)} hex={head}"


@app.command("profile")
def show_profile(profile_path: Path | None = _PROFILE_OPTION) -> None:
    """Show the endpoint directory for the target peripheral."""
    try:
        profile = _load(profile_path)
        typer.echo(f"{profile.id}: {profile.name}")
        typer.echo(f"  target: {profile.target.address} ({profile.target.name})")
        typer.echo("  notify:")
        for uuid in profile.notify_uuids:
            typer.echo(f"    {uuid}")
        typer.echo("  command:")
        for uuid in profile.command_uuids:
            typer.echo(f"    {uuid}")
        commands = profile.commands
        typer.echo(
            f"  commands: start_raw={commands.start_raw} stop_raw={commands.stop_raw} "
            f"stop_camera={commands.stop_camera} reboot={commands.reboot}"
        )
    except RingctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("frame")
def show_frame(
    command: str,
    profile_path: Path | None = _PROFILE_OPTION,
) -> None:
    """Print the 16-byte wire frame for a hex COMMAND."""
    try:
        profile = _load(profile_path)
        encoded = frame.encode(command, reboot_command=profile.commands.reboot)
        typer.echo(frame.format_frame(encoded))
    except RingctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("stream")
def stream(
    profile_path: Path | None = _PROFILE_OPTION,
    reboot: bool = typer.Option(True, "--reboot/--no-reboot", help="Send reboot at the end of the stop sequence"),
    auto_retry: bool = typer.Option(True, "--auto-retry/--no-auto-retry", help="Reconnect after the link drops"),
    rssi_interval: float = typer.Option(0.0, "--rssi-interval", help="Seconds between RSSI reads (0 disables)"),
    duration: float = typer.Option(0.0, "--duration", help="Stop after this many seconds (0 runs until Ctrl-C)"),
    stop_timeout: float = typer.Option(5.0, "--stop-timeout", help="Seconds to wait for the stop sequence"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Connect to the ring, stream notifications, and stop cleanly on exit."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        profile = _load(profile_path)
        client = Client(
            profile=profile,
            auto_retry=auto_retry,
            on_bytes=lambda _uuid, payload: typer.echo(_rx_line(payload)),
            on_log=lambda message: typer.echo(message, err=True),
            on_state=lambda state: typer.echo(f"State: {state}"),
            on_signal_strength=lambda rssi: typer.echo(f"RSSI: {rssi} dBm (last advertisement)"),
        )
        client.connect()
        _run_until_done(client, duration=duration, rssi_interval=rssi_interval)
        client.close(send_reboot=reboot)
        if not client.wait_for_state(SessionState.DISCONNECTED.value, stop_timeout):
            typer.echo("Warning: stop sequence did not finish in time; disconnecting", err=True)
            client.disconnect()
        client.shutdown()
    except RingctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _run_until_done(client: Client, *, duration: float, rssi_interval: float) -> None:
    deadline = time.monotonic() + duration if duration > 0 else None
    tick = rssi_interval if rssi_interval > 0 else 0.5
    try:
        while deadline is None or time.monotonic() < deadline:
            if rssi_interval > 0 and client.state == SessionState.STREAMING.value:
                client.read_signal_strength()
            remaining = tick if deadline is None else min(tick, max(deadline - time.monotonic(), 0.0))
            time.sleep(remaining)
    except KeyboardInterrupt:
        typer.echo("Interrupted; stopping session.", err=True)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
