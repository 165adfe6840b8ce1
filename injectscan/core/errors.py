"""Error hierarchy shared by the scanner, the CSRF provider and the CLI."""


class ScanError(Exception):
    """Base class for every error raised by injectscan."""


class ConfigError(ScanError):
    """Invalid or missing configuration (method, wordlists, CSRF pointer)."""


class FetchError(ScanError):
    """The CSRF token endpoint could not be reached."""


class TransportError(ScanError):
    """An injected request could not be sent."""


class ReadError(ScanError):
    """A response body could not be read."""


class ExtractionError(ScanError):
    """The CSRF token was not found with the configured strategy."""


class InvalidMethodError(ScanError):
    """Unknown HTTP verb."""


class LoggingError(ScanError):
    """The request debug log could not be written."""


class BaselineError(ScanError):
    """The reference request against the target failed."""
