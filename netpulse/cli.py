"""CLI interface for netpulse.

Usage:
    netpulse status [--json]
    netpulse watch
    netpulse interfaces
    netpulse resolve <host>
    netpulse version
"""

import json
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from dependency_injector import providers
from loguru import logger

from netpulse.core.config import EngineConfig
from netpulse.core.container import ApplicationContainer
from netpulse.core.logger import setup_logging
from netpulse.core.types import NetworkState, StateChangeEvent, VpnChangeEvent
from netpulse.services.network_engine import NetworkEngine

# Create Typer app
app = typer.Typer(
    name="netpulse",
    help="netpulse - network reachability and stability monitor",
    add_completion=False,
)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="YAML or JSON settings file")


def _init_engine(config_path: Optional[Path] = None, verbose: bool = False) -> NetworkEngine:
    """Build the engine through the container, optionally with a settings file."""
    setup_logging(console_level="DEBUG" if verbose else "WARNING")

    container = ApplicationContainer()
    if config_path is not None:
        try:
            config = EngineConfig.from_file(config_path)
        except (OSError, ValueError) as e:
            typer.echo(f"❌ Error: cannot load settings from {config_path}: {e}", err=True)
            raise typer.Exit(1)
        container.engine_config.override(providers.Object(config))
    return container.network_engine()


def _format_state(state: NetworkState) -> str:
    icon = "✅" if state.is_online else "❌"
    lines = [
        "📊 Network Status:",
        f"   Status: {icon} {'Online' if state.is_online else 'Offline'}",
        f"   Quality: {state.quality}",
        f"   VPN: {'active' if state.vpn_active else 'inactive'}",
        f"   Connection: {state.connection_type}" + (f" ({state.primary_interface})" if state.primary_interface else ""),
        f"   DNS: {'ok' if state.diagnostics.dns_resolvable else 'failing'}",
        f"   Latency: {state.diagnostics.latency_ms:.0f}ms",
        f"   Version: {state.version}",
    ]
    return "\n".join(lines)


@app.command()
def status(
    as_json: bool = typer.Option(False, "--json", help="Print the state as JSON"),
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """Run one comprehensive check and print the network state."""
    engine = _init_engine(config, verbose)
    try:
        state = engine.check_once()
    finally:
        engine.stop()

    if as_json:
        typer.echo(json.dumps(state.to_dict(), indent=2))
    else:
        typer.echo(_format_state(state))


def _wait_forever():
    threading.Event().wait()


@app.command()
def watch(
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """Monitor the network and print confirmed transitions until Ctrl-C."""
    engine = _init_engine(config, verbose)

    def on_change(event: StateChangeEvent):
        if event.connectivity_changed:
            icon = "✅" if event.new_state.is_online else "❌"
            typer.echo(
                f"{icon} {'Online' if event.new_state.is_online else 'Offline'} "
                f"(quality: {event.new_state.quality}, v{event.version})"
            )
        elif "quality" in event.changes:
            typer.echo(f"📶 Quality: {event.old_state.quality} → {event.new_state.quality} (v{event.version})")

    def on_vpn(event: VpnChangeEvent):
        typer.echo(f"🔐 VPN {'connected' if event.active else 'disconnected'}" + (f" ({event.interface})" if event.interface else ""))

    engine.subscribe(on_change)
    engine.subscribe_vpn(on_vpn)

    typer.echo("🔄 Starting monitor...")
    try:
        engine.start(wait_for_initial_check=True)
        typer.echo(_format_state(engine.get_state()))
        typer.echo("👀 Watching for changes (Ctrl-C to stop)")
        _wait_forever()
    except KeyboardInterrupt:
        typer.echo("\n⚠️  Stopped by user")
        raise typer.Exit(130)
    finally:
        engine.stop()


@app.command()
def interfaces(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """List interfaces that carry a non-internal IPv4 address."""
    engine = _init_engine(None, verbose)
    try:
        active = engine.current_interfaces()
    finally:
        engine.stop()

    if not active:
        typer.echo("ℹ️  No active interfaces")
        return

    typer.echo(f"🔌 Active Interfaces ({len(active)}):\n")
    for info in active:
        addresses = ", ".join(a.address for a in info.addresses)
        typer.echo(f"  {info.name} [{info.type}] {addresses}")


@app.command()
def resolve(
    host: str = typer.Argument(..., help="Hostname to resolve"),
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """Resolve a hostname through the platform DNS strategy chain."""
    engine = _init_engine(config, verbose)
    try:
        result = engine.resolve(host)
    finally:
        engine.stop()

    if not result.success:
        typer.echo(f"❌ {host}: {result.error}", err=True)
        raise typer.Exit(1)

    typer.echo(f"✅ {host} → {', '.join(result.resolved_addresses or [])}")
    typer.echo(f"   via {result.strategy} in {result.latency_ms:.0f}ms")


@app.command()
def version():
    """Show netpulse version."""
    from netpulse.core.constants import APP_VERSION

    typer.echo(f"netpulse v{APP_VERSION}")


def main():
    """Entry point for CLI."""
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("\n⚠️  Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.exception("CLI error")
        typer.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
