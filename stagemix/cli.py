"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging

import typer

from stagemix.core.config_store import default_config_path, load_settings
from stagemix.core.errors import StagemixError
from stagemix.core.fanout import TelemetryFanout
from stagemix.core.model import TRANSPORT_KINDS
from stagemix.core.service import MixerService

app = typer.Typer(help="Control and telemetry bridge for network mixing consoles")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


async def _serve(service: MixerService, host: str, port: int) -> None:
    await service.start()
    fanout = TelemetryFanout(service)
    try:
        await fanout.serve(host, port)
    finally:
        await service.shutdown()


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address for the WebSocket server"),
    port: int | None = typer.Option(None, "--port", help="Port for the WebSocket server"),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
) -> None:
    """Connect to the console and stream telemetry to WebSocket subscribers."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    try:
        service = MixerService()
        server = service.settings.server
        asyncio.run(_serve(service, host or server.host, port or server.port))
    except StagemixError as exc:
        raise _fail(exc) from None
    except KeyboardInterrupt:
        typer.echo("Stopped")


async def _status(service: MixerService) -> tuple[bool, int | None]:
    await service.start()
    try:
        if not service.is_connected():
            return False, None
        return True, await service.client.get_preset()
    finally:
        await service.shutdown()


@app.command("status")
def status() -> None:
    """Connect once with the saved settings and report what the console says."""
    try:
        service = MixerService()
        config = service.client.config
        connected, preset = asyncio.run(_status(service))
    except StagemixError as exc:
        raise _fail(exc) from None

    mode = "simulated" if config.simulated else config.transport
    typer.echo(f"Console: {config.host}:{config.port} ({mode})")
    typer.echo(f"Connected: {'yes' if connected else 'no'}")
    if preset is not None:
        typer.echo(f"Preset: {preset}")
    if not connected:
        raise typer.Exit(code=1)


@app.command("connect")
def connect(
    host: str,
    port: int = typer.Option(3000, "--port", help="Console control port"),
    transport: str = typer.Option("tcp", "--transport", help="tcp or udp"),
    simulated: bool = typer.Option(False, "--simulated", help="Use the built-in console simulator"),
) -> None:
    """Save connection settings and verify the console answers."""
    if transport not in TRANSPORT_KINDS:
        raise _fail(ValueError(f"Unknown transport '{transport}'; expected one of {', '.join(TRANSPORT_KINDS)}"))

    async def _connect(service: MixerService) -> bool:
        try:
            return await service.connect(host, port, transport, simulated)
        finally:
            await service.shutdown()

    try:
        connected = asyncio.run(_connect(MixerService()))
    except StagemixError as exc:
        raise _fail(exc) from None
    typer.echo(f"Saved {host}:{port} ({'simulated' if simulated else transport})")
    typer.echo(f"Connected: {'yes' if connected else 'no'}")


@app.command("scan")
def scan(
    subnet: str | None = typer.Option(None, "--subnet", help="First three octets, e.g. 192.168.2"),
    ports: list[int] | None = typer.Option(None, "--port", "-p", help="Port to probe (repeatable)"),
) -> None:
    """Scan the local /24 for consoles answering the control protocol."""
    try:
        service = MixerService()
        results = asyncio.run(service.scan(subnet=subnet, ports=ports or None))
    except StagemixError as exc:
        raise _fail(exc) from None

    if not results:
        typer.echo("No devices found")
        return
    for result in results:
        kind = "console" if result.is_target_device else "open"
        line = f"{result.host}:{result.port} {kind} {result.latency_ms:.1f}ms"
        if result.response_snippet:
            line += f" {result.response_snippet!r}"
        typer.echo(line)


@app.command("local-info")
def local_info() -> None:
    """Show this host's address, subnet and the ports a scan would probe."""
    try:
        info = MixerService().local_info()
    except StagemixError as exc:
        raise _fail(exc) from None
    typer.echo(f"Server IP: {info.server_ip}")
    typer.echo(f"Subnet: {info.subnet}.0/24")
    typer.echo(f"Candidate ports: {', '.join(map(str, info.candidate_ports))}")


@app.command("config")
def show_config() -> None:
    """Print the effective configuration and the files it was read from."""
    try:
        loaded = load_settings()
    except StagemixError as exc:
        raise _fail(exc) from None

    settings = loaded.settings
    for source in loaded.sources:
        typer.echo(f"Source: {source}")
    typer.echo(f"User file: {default_config_path()}")
    conn = settings.connection
    typer.echo("connection:")
    typer.echo(f"  host: {conn.host}")
    typer.echo(f"  port: {conn.port}")
    typer.echo(f"  transport: {conn.transport}")
    typer.echo(f"  simulated: {str(conn.simulated).lower()}")
    typer.echo(f"  auto_reconnect: {str(conn.auto_reconnect).lower()}")
    typer.echo("telemetry:")
    typer.echo(f"  poll_interval_ms: {settings.telemetry.poll_interval_ms}")
    typer.echo(f"  poll_channels: {settings.telemetry.poll_channels}")
    typer.echo("server:")
    typer.echo(f"  host: {settings.server.host}")
    typer.echo(f"  port: {settings.server.port}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
