"""Control and telemetry bridge for network mixing consoles."""

__version__ = "0.1.0"
