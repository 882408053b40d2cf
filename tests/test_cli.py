from __future__ import annotations

from typer.testing import CliRunner

from stagemix import cli
from stagemix.core.errors import ConnectionFailedError
from stagemix.core.model import ConnectionConfig, LocalNetworkInfo, MixerSettings, ScanResult


class FakeClient:
    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config

    async def get_preset(self) -> int:
        return 4


class FakeService:
    connected = True

    def __init__(self) -> None:
        self.settings = MixerSettings(connection=ConnectionConfig(simulated=True))
        self.client = FakeClient(self.settings.connection)
        self.shut_down = False

    async def start(self) -> None:
        return None

    def is_connected(self) -> bool:
        return self.connected

    async def shutdown(self) -> None:
        self.shut_down = True

    async def connect(self, host, port, transport="tcp", simulated=False) -> bool:
        self.client = FakeClient(ConnectionConfig(host=host, port=port, transport=transport, simulated=simulated))
        return True

    async def scan(self, subnet=None, ports=None):
        return [
            ScanResult("192.168.2.1", 3000, True, "PRESET = 1", 2.5),
            ScanResult("192.168.2.9", 8080, False, None, 4.0),
        ]

    def local_info(self) -> LocalNetworkInfo:
        return LocalNetworkInfo(server_ip="192.168.2.20", subnet="192.168.2", candidate_ports=(3000, 8080))


runner = CliRunner()


def test_status_command(monkeypatch):
    monkeypatch.setattr(cli, "MixerService", FakeService)
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "Console: 192.168.2.1:3000 (simulated)" in result.stdout
    assert "Connected: yes" in result.stdout
    assert "Preset: 4" in result.stdout


def test_status_command_exits_nonzero_when_offline(monkeypatch):
    class OfflineService(FakeService):
        connected = False

    monkeypatch.setattr(cli, "MixerService", OfflineService)
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 1
    assert "Connected: no" in result.stdout
    assert "Preset" not in result.stdout


def test_scan_command(monkeypatch):
    monkeypatch.setattr(cli, "MixerService", FakeService)
    result = runner.invoke(cli.app, ["scan", "--subnet", "192.168.2", "-p", "3000", "-p", "8080"])
    assert result.exit_code == 0
    assert "192.168.2.1:3000 console 2.5ms 'PRESET = 1'" in result.stdout
    assert "192.168.2.9:8080 open 4.0ms" in result.stdout


def test_scan_command_without_results(monkeypatch):
    class EmptyService(FakeService):
        async def scan(self, subnet=None, ports=None):
            return []

    monkeypatch.setattr(cli, "MixerService", EmptyService)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 0
    assert "No devices found" in result.stdout


def test_local_info_command(monkeypatch):
    monkeypatch.setattr(cli, "MixerService", FakeService)
    result = runner.invoke(cli.app, ["local-info"])
    assert result.exit_code == 0
    assert "Server IP: 192.168.2.20" in result.stdout
    assert "Subnet: 192.168.2.0/24" in result.stdout
    assert "Candidate ports: 3000, 8080" in result.stdout


def test_connect_command(monkeypatch):
    monkeypatch.setattr(cli, "MixerService", FakeService)
    result = runner.invoke(cli.app, ["connect", "10.0.0.5", "--port", "3001", "--transport", "udp"])
    assert result.exit_code == 0
    assert "Saved 10.0.0.5:3001 (udp)" in result.stdout
    assert "Connected: yes" in result.stdout


def test_connect_command_rejects_unknown_transport(monkeypatch):
    monkeypatch.setattr(cli, "MixerService", FakeService)
    result = runner.invoke(cli.app, ["connect", "10.0.0.5", "--transport", "serial"])
    assert result.exit_code == 1
    assert "Error: Unknown transport 'serial'" in result.stderr


def test_connect_command_error_is_clean(monkeypatch):
    class FailingService(FakeService):
        async def connect(self, host, port, transport="tcp", simulated=False):
            raise ConnectionFailedError(f"Could not connect to console at {host}:{port}: refused")

    monkeypatch.setattr(cli, "MixerService", FailingService)
    result = runner.invoke(cli.app, ["connect", "10.0.0.5"])
    assert result.exit_code == 1
    assert "Error: Could not connect to console at 10.0.0.5:3000: refused" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_config_command_shows_effective_settings():
    result = runner.invoke(cli.app, ["config"])
    assert result.exit_code == 0
    assert "Source:" in result.stdout
    assert "  simulated: true" in result.stdout
    assert "  poll_interval_ms: 100" in result.stdout
    assert "  port: 8765" in result.stdout


def test_serve_command_runs_fanout(monkeypatch):
    served = []

    class FakeFanout:
        def __init__(self, service) -> None:
            self.service = service

        async def serve(self, host, port):
            served.append((host, port))

    monkeypatch.setattr(cli, "MixerService", FakeService)
    monkeypatch.setattr(cli, "TelemetryFanout", FakeFanout)
    result = runner.invoke(cli.app, ["serve", "--port", "9100", "--log-level", "warning"])
    assert result.exit_code == 0
    assert served == [("0.0.0.0", 9100)]
