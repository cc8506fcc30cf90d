"""
drivers/errors.py

Exception types raised by the driver layer.
Every failure the host needs to show to the user derives from DriverError,
so the CLI (and any other caller) can catch one type.
"""

from typing import Optional


class DriverError(Exception):
    """Base class for all driver failures."""


class ConfigurationError(DriverError):
    """Missing or invalid driver configuration (credentials, key id, region, plan)."""


class UnsupportedOperationError(DriverError):
    """The provider has no equivalent for the requested lifecycle operation."""


class HostNotRunningError(DriverError):
    """Raised by operations that only make sense on a running host."""

    def __init__(self, message: str = "Host is not running"):
        super().__init__(message)


class WaitTimeoutError(DriverError):
    """A bounded poll ran out of time before its condition became true."""


class SSHCommandError(DriverError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, exit_status: int, output: str = ""):
        self.command = command
        self.exit_status = exit_status
        self.output = output
        super().__init__(f"Command failed (exit {exit_status}): {command}\n{output}".rstrip())


class ApiError(DriverError):
    """
    An error reported by the provider's API.
    `code` is the provider's error code (or the HTTP status when the
    response carried no error body); str() is the provider's message.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        self.message = message
        super().__init__(message)
