"""Domain-specific errors for stationctl."""


class StationctlError(Exception):
    """Base error for stationctl."""


class ConfigError(StationctlError):
    """Base configuration error."""


class ConfigLoadError(ConfigError):
    """Raised when reading a profile or config file fails."""


class ConfigValidationError(ConfigError):
    """Raised when a profile or config file does not conform to schema or semantics."""


class AdapterError(StationctlError):
    """Base radio adapter error."""


class AdapterTimeoutError(AdapterError):
    """Raised when the adapter does not power on in time."""

    def __init__(self, state: str) -> None:
        super().__init__(f"Timeout while waiting for power on (state: {state})")
        self.state = state


class AdapterStateError(AdapterError):
    """Raised when the adapter leaves the powered-on state while scanning."""

    def __init__(self, state: str) -> None:
        super().__init__(f"State changed to {state}")
        self.state = state


class ScanStartError(AdapterError):
    """Raised when the adapter rejects a scan start."""


class StationNotFoundError(StationctlError):
    """Raised when no station with the requested address shows up while scanning."""


class SessionError(StationctlError):
    """Base connection session error."""


class ConnectError(SessionError):
    """Raised when the transport connect request fails."""


class DisconnectedError(SessionError):
    """Raised when the peripheral disconnects while a connect phase is in flight."""


class CharacteristicResolutionError(SessionError):
    """Raised when a required characteristic is missing from the station service."""


class SubscribeError(SessionError):
    """Raised when subscribing to a notify characteristic fails."""


class SessionStateError(SessionError):
    """Raised when an operation is not valid in the current session state."""


class InvalidTransitionError(SessionError):
    """Raised when a state transition skips or reverses the connect sequence."""


class CommandError(StationctlError):
    """Base command channel error."""


class WriteError(CommandError):
    """Raised when a characteristic write fails at the transport level."""


class CommandInProgressError(CommandError):
    """Raised when a command is sent while another one awaits its response."""
