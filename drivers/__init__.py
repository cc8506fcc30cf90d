"""
drivers/__init__.py

Public API for the drivers package.

Usage:
    from drivers import get_driver
    driver = get_driver("atlanticnet", "my-machine", "/path/to/store")
"""

from typing import Dict, Type

from .base import BaseDriver, Driver, DriverOptions, State
from .atlanticnet import AtlanticNetDriver
from .errors import (
    ApiError,
    ConfigurationError,
    DriverError,
    HostNotRunningError,
    SSHCommandError,
    UnsupportedOperationError,
    WaitTimeoutError,
)

# Registry: add new drivers here
_DRIVERS: Dict[str, Type[BaseDriver]] = {
    "atlanticnet": AtlanticNetDriver,
}


def get_driver(name: str, machine_name: str = "", store_path: str = "") -> BaseDriver:
    """
    Factory function. Returns a new driver instance by name.

    Args:
        name: "atlanticnet"  (case-insensitive)

    Raises:
        ValueError: if the driver name is not registered.
    """
    key = name.lower().strip()
    driver_class = _DRIVERS.get(key)
    if not driver_class:
        supported = ", ".join(_DRIVERS.keys())
        raise ValueError(
            f"Unknown driver '{name}'. Supported drivers: {supported}"
        )
    return driver_class(machine_name, store_path)


__all__ = [
    "get_driver",
    "AtlanticNetDriver",
    "BaseDriver",
    "Driver",
    "DriverOptions",
    "State",
    "ApiError",
    "ConfigurationError",
    "DriverError",
    "HostNotRunningError",
    "SSHCommandError",
    "UnsupportedOperationError",
    "WaitTimeoutError",
]
