"""Custom exceptions for the terminal feed client."""


class TerminalError(Exception):
    """Base exception for terminal feed errors."""
    pass


class ConfigurationError(TerminalError):
    """Raised when configuration is invalid."""
    pass


class BackendError(TerminalError):
    """Raised when a backend function call fails (network, status, decode)."""
    pass


class MalformedResponseError(BackendError):
    """Raised when a backend response does not have the expected shape."""
    pass


class StreamError(TerminalError):
    """Raised when the trade stream cannot be resolved or opened."""
    pass
