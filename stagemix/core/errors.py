"""Domain-specific errors for stagemix."""


class StagemixError(Exception):
    """Base error for stagemix."""


class ConfigError(StagemixError):
    """Base configuration error."""


class ConfigValidationError(ConfigError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(ConfigError):
    """Raised when reading or writing config files fails."""


class MixerError(StagemixError):
    """Base error for console command failures."""


class NotConnectedError(MixerError):
    """Raised when a command is issued while the console is not connected."""


class CommandTimeoutError(MixerError):
    """Raised when no response line arrives within the command timeout."""


class ProtocolError(MixerError):
    """Raised when the console rejects or cannot parse a command."""


class TransportError(StagemixError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on socket connect failures."""


class ConnectionFailedError(TransportConnectError):
    """Raised when the protocol client cannot establish its connection."""


class TransportSendError(TransportError):
    """Raised when writing a command line fails."""


class TransportTimeoutError(TransportError):
    """Raised when a connect or read times out."""
