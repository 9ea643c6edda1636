"""Error taxonomy for the sampling pipeline."""


class PipelineError(Exception):
    """Base error for everything raised by the sampling core."""

    kind = "pipeline"


class MalformedPacket(PipelineError):
    """A payload could not be decoded into sensor packets."""

    kind = "malformed_packet"


class TransportError(PipelineError):
    """A read or write failed at the transport boundary."""

    kind = "transport"


class ConfigurationError(PipelineError, ValueError):
    """Coefficients or schedule are invalid; the run is refused."""

    kind = "configuration"


class PersistenceError(PipelineError):
    """Creating or appending to the reading log failed."""

    kind = "persistence"


class AlreadyRunning(PipelineError):
    """A second ``start`` was requested while a run is active."""

    kind = "already_running"


class InvalidInput(PipelineError, ValueError):
    """User text does not match the selected display format."""

    kind = "invalid_input"
