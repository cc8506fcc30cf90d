"""
drivers/base.py

Defines the lifecycle contract every machine driver implements, plus the
BaseDriver that carries the fields and defaults common to all of them.

The host drives a machine through these calls only:

    driver.set_config_from_flags(options)
    driver.pre_create_check()
    driver.create()
    driver.get_state() / get_ip() / get_url()
    driver.restart() / start() / stop() / kill()
    driver.remove()

A concrete driver subclasses BaseDriver and overrides the abstract methods.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests

from .errors import DriverError

logger = logging.getLogger(__name__)

DEFAULT_SSH_USER = "root"
DEFAULT_SSH_PORT = 22


class State(str, Enum):
    """Machine state as reported to the host, independent of provider wording."""
    NONE     = "None"
    RUNNING  = "Running"
    PAUSED   = "Paused"
    SAVED    = "Saved"
    STOPPED  = "Stopped"
    STOPPING = "Stopping"
    STARTING = "Starting"
    ERROR    = "Error"
    TIMEOUT  = "Timeout"


# ---------------------------------------------------------------------------
# Create flags
# ---------------------------------------------------------------------------

@dataclass
class StringFlag:
    """A string option the driver accepts at create time."""
    name: str
    usage: str
    envvar: str = ""
    value: str = ""


@dataclass
class BoolFlag:
    """A boolean switch the driver accepts at create time."""
    name: str
    usage: str
    envvar: str = ""
    value: bool = False


Flag = Union[StringFlag, BoolFlag]

# Options the host passes to every driver regardless of its own flags.
HOST_FLAGS: List[Flag] = [
    BoolFlag(name="swarm-master", usage="Configure Machine to be a Swarm master"),
    StringFlag(name="swarm-host", usage="ip/socket to listen on for Swarm master",
               value="tcp://0.0.0.0:3376"),
    StringFlag(name="swarm-discovery", usage="Discovery service to use with Swarm"),
]


class DriverOptions:
    """
    Read-only view over the flag values supplied for one create call.

    Lookups fall back to the declared flag default when no value was given.
    Values supplied for names the driver never declared are collected in
    `invalid_flags` so the host can report them.
    """

    def __init__(self, values: Mapping[str, Any], flags: Optional[List[Flag]] = None):
        self._values = dict(values)
        self._flags = {f.name: f for f in (flags or [])}
        for f in HOST_FLAGS:
            self._flags.setdefault(f.name, f)
        self.invalid_flags: List[str] = [
            name for name in self._values if flags is not None and name not in self._flags
        ]

    def _get(self, key: str, default: Any) -> Any:
        value = self._values.get(key)
        if value is None:
            flag = self._flags.get(key)
            return flag.value if flag is not None else default
        return value

    def string(self, key: str) -> str:
        value = self._get(key, "")
        return "" if value is None else str(value)

    def bool(self, key: str) -> bool:
        value = self._get(key, False)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def int(self, key: str) -> int:
        value = self._get(key, 0)
        return int(value) if value not in (None, "") else 0


# ---------------------------------------------------------------------------
# Driver contract
# ---------------------------------------------------------------------------

class Driver(ABC):
    """
    Abstract lifecycle contract between the host and a machine driver.
    Every method raises a DriverError subclass (or lets the provider's own
    transport error through) on failure.
    """

    @abstractmethod
    def driver_name(self) -> str:
        """Fixed name the host uses to select this driver."""
        ...

    @abstractmethod
    def get_create_flags(self) -> List[Flag]:
        """Options accepted by `create`, with their env vars and defaults."""
        ...

    @abstractmethod
    def set_config_from_flags(self, options: DriverOptions) -> None:
        """Populate configuration from flag values. Must not call the provider."""
        ...

    @abstractmethod
    def pre_create_check(self) -> None:
        """Validate configuration against the provider before anything is created."""
        ...

    @abstractmethod
    def create(self) -> None:
        ...

    @abstractmethod
    def get_state(self) -> State:
        ...

    @abstractmethod
    def get_ip(self) -> str:
        ...

    @abstractmethod
    def get_url(self) -> str:
        ...

    @abstractmethod
    def get_ssh_hostname(self) -> str:
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def kill(self) -> None:
        ...

    @abstractmethod
    def restart(self) -> None:
        ...

    @abstractmethod
    def remove(self) -> None:
        ...


class BaseDriver(Driver):
    """
    Fields and default behaviour shared by all drivers.
    Mirrors what the host stores for every machine: its name, where its
    files live, how to reach it over SSH and the swarm pass-through options.
    """

    def __init__(self, machine_name: str = "", store_path: str = ""):
        self.machine_name: str = machine_name
        self.store_path: str = store_path
        self.ip_address: str = ""
        self.ssh_user: str = DEFAULT_SSH_USER
        self.ssh_port: int = DEFAULT_SSH_PORT
        self.ssh_key_path: str = ""
        self.swarm_master: bool = False
        self.swarm_host: str = ""
        self.swarm_discovery: str = ""

    def resolve_store_path(self, file: str) -> str:
        """Path of `file` inside this machine's directory in the host store."""
        return os.path.join(self.store_path, "machines", self.machine_name, file)

    def get_ssh_key_path(self) -> str:
        if not self.ssh_key_path:
            self.ssh_key_path = self.resolve_store_path("id_rsa")
        return self.ssh_key_path

    def get_ssh_username(self) -> str:
        if not self.ssh_user:
            self.ssh_user = DEFAULT_SSH_USER
        return self.ssh_user

    def get_ssh_port(self) -> int:
        if not self.ssh_port:
            self.ssh_port = DEFAULT_SSH_PORT
        return self.ssh_port

    def get_ip(self) -> str:
        if not self.ip_address:
            raise DriverError("IP address is not set")
        return self.ip_address

    def get_ssh_hostname(self) -> str:
        return self.get_ip()

    def pre_create_check(self) -> None:
        return None

    # ------------------------------------------------------------------
    # persistence: the host keeps this dict in its own store
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable configuration. Attributes starting with '_' are skipped."""
        data = {k: v for k, v in vars(self).items() if not k.startswith("_")}
        data["driver"] = self.driver_name()
        return data

    def load_dict(self, data: Mapping[str, Any]) -> None:
        """Restore attributes saved by to_dict(). Unknown keys are ignored."""
        for key, value in data.items():
            if key == "driver" or key.startswith("_"):
                continue
            if hasattr(self, key):
                setattr(self, key, value)


def machine_in_state(driver: Driver, desired: State) -> Callable[[], bool]:
    """
    Predicate for wait_for(): True once the driver reports `desired`.

    A failed state lookup counts as "not yet": a new instance can be missing
    from describe calls for a while, so the poll keeps going until its deadline.
    """
    def _check() -> bool:
        try:
            return driver.get_state() == desired
        except (DriverError, requests.RequestException) as ex:
            logger.debug("Error getting machine state: %s", ex)
            return False
    return _check
