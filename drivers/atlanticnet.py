"""
drivers/atlanticnet.py

Machine driver for Atlantic.Net Cloud servers.

Lifecycle:
  pre_create_check  → validate SSH key id, region and plan against the API
  create            → copy or generate an SSH key, run-instance, and (for a
                      generated key) wait for the server and install the key
                      over SSH using the root password the provider issued
  restart / remove  → reboot-instance (soft) / terminate-instance

Atlantic.Net has no separate power controls, so start/stop/kill are refused.
"""

import logging
import os
from typing import List, Optional

import paramiko

from . import ssh
from .atlanticnet_api import (
    REBOOT_TYPE_SOFT,
    STATUS_AWAITING_CREATION,
    STATUS_CREATING,
    STATUS_RESTARTING,
    STATUS_RUNNING,
    STATUS_STOPPED,
    Client,
    RunInstanceRequest,
    new_client,
)
from .base import BaseDriver, DriverOptions, Flag, State, StringFlag, machine_in_state
from .errors import (
    ConfigurationError,
    DriverError,
    HostNotRunningError,
    UnsupportedOperationError,
    WaitTimeoutError,
)
from .utils import DEFAULT_WAIT_INTERVAL, DEFAULT_WAIT_TIMEOUT, copy_file, wait_for

logger = logging.getLogger(__name__)

DRIVER_NAME = "atlanticnet"

DEFAULT_IMAGE_ID    = "ubuntu-14.04_64bit"
DEFAULT_PLAN_NAME   = "XS"
DEFAULT_VM_LOCATION = "USWEST1"
DEFAULT_SSH_KEY_PATH = os.path.join(os.path.expanduser("~"), ".ssh", "id_rsa")
PLAN_PLATFORM = "linux"
DOCKER_PORT = 2376

REGIONS = (
    "USEAST1",
    "USEAST2",
    "USCENTRAL1",
    "USWEST1",
)

UNSUPPORTED_MESSAGE = "Atlantic.Net doesn't support this. Please restart the machine instead."

_STATE_MAP = {
    STATUS_AWAITING_CREATION: State.STARTING,
    STATUS_CREATING:          State.STARTING,
    STATUS_RESTARTING:        State.STARTING,
    STATUS_STOPPED:           State.STOPPED,
    STATUS_RUNNING:           State.RUNNING,
}


def map_status(vm_status: str) -> State:
    """Fold a provider vm_status into the host's State. Unknown values are errors."""
    return _STATE_MAP.get(vm_status, State.ERROR)


class AtlanticNetDriver(BaseDriver):
    """
    Atlantic.Net implementation of the machine driver contract.

    The API client is built lazily by get_client() so that configuring a
    driver, or loading one from the store, never needs credentials to be
    valid or the network to be reachable.
    """

    def __init__(self, machine_name: str = "", store_path: str = ""):
        super().__init__(machine_name, store_path)
        self.api_key: str = ""
        self.api_secret: str = ""
        self.orig_ssh_key_path: str = DEFAULT_SSH_KEY_PATH
        self.image_id: str = DEFAULT_IMAGE_ID
        self.plan_name: str = DEFAULT_PLAN_NAME
        self.vm_location: str = DEFAULT_VM_LOCATION
        self.instance_id: str = ""
        self.ssh_key_id: str = ""

        self.state_timeout: float = DEFAULT_WAIT_TIMEOUT
        self.ssh_timeout: float = DEFAULT_WAIT_TIMEOUT
        self.poll_interval: float = DEFAULT_WAIT_INTERVAL

        self._client: Optional[Client] = None

    # ------------------------------------------------------------------
    # configuration
    # ------------------------------------------------------------------

    def driver_name(self) -> str:
        return DRIVER_NAME

    def get_create_flags(self) -> List[Flag]:
        return [
            StringFlag(
                name="atlantic-net-api-key",
                usage="Atlantic.Net API key",
                envvar="ATLANTIC_NET_API_KEY",
            ),
            StringFlag(
                name="atlantic-net-api-secret",
                usage="Atlantic.Net API secret",
                envvar="ATLANTIC_NET_API_SECRET",
            ),
            StringFlag(
                name="atlantic-net-ssh-key-id",
                usage="Atlantic.Net SSH key id",
                envvar="ATLANTIC_NET_SSH_KEY_ID",
                value="",
            ),
            StringFlag(
                name="atlantic-net-ssh-key-path",
                usage="Atlantic.Net SSH key path",
                envvar="ATLANTIC_NET_SSH_KEY_PATH",
                value=DEFAULT_SSH_KEY_PATH,
            ),
            StringFlag(
                name="atlantic-net-image-id",
                usage="Atlantic.Net image id",
                envvar="ATLANTIC_NET_IMAGE_ID",
                value=DEFAULT_IMAGE_ID,
            ),
            StringFlag(
                name="atlantic-net-plan-name",
                usage="Atlantic.Net plan name",
                envvar="ATLANTIC_NET_PLAN_NAME",
                value=DEFAULT_PLAN_NAME,
            ),
            StringFlag(
                name="atlantic-net-vm-location",
                usage="Atlantic.Net vm location",
                envvar="ATLANTIC_NET_VM_LOCATION",
                value=DEFAULT_VM_LOCATION,
            ),
        ]

    def set_config_from_flags(self, options: DriverOptions) -> None:
        self.api_key = options.string("atlantic-net-api-key")
        self.api_secret = options.string("atlantic-net-api-secret")
        self.ssh_key_id = options.string("atlantic-net-ssh-key-id")
        self.orig_ssh_key_path = options.string("atlantic-net-ssh-key-path")
        self.image_id = options.string("atlantic-net-image-id")
        self.vm_location = options.string("atlantic-net-vm-location")
        self.plan_name = options.string("atlantic-net-plan-name")
        self.swarm_master = options.bool("swarm-master")
        self.swarm_host = options.string("swarm-host")
        self.swarm_discovery = options.string("swarm-discovery")

        if not self.api_key:
            raise ConfigurationError(
                "Atlantic.Net driver requires the --atlantic-net-api-key option"
            )
        if not self.api_secret:
            raise ConfigurationError(
                "Atlantic.Net driver requires the --atlantic-net-api-secret option"
            )

    def pre_create_check(self) -> None:
        logger.info("Validating Atlantic.Net VPS parameters...")
        self._validate_ssh_key()
        self._validate_vm_location()
        self._validate_plan()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def create(self) -> None:
        logger.info("Creating Atlantic.Net VPS...")

        public_key = None
        if self.ssh_key_id:
            self._copy_ssh_key()
        else:
            public_key = self._create_ssh_key()

        instances = self.get_client().run_instance(RunInstanceRequest(
            server_name=self.machine_name,
            image_id=self.image_id,
            plan_name=self.plan_name,
            vm_location=self.vm_location,
            key_id=self.ssh_key_id,
        ))
        instance = instances[0]
        self.instance_id = instance.id
        self.ip_address = instance.ip_address

        logger.info(
            "Created Atlantic.Net VPS ID: %s, Public IP: %s",
            self.instance_id,
            self.ip_address,
        )

        if public_key is not None:
            self._add_ssh_key_to_server(instance.password, public_key)

    def get_state(self) -> State:
        instance = self.get_client().describe_instance(self.instance_id)
        return map_status(instance.vm_status)

    def get_ip(self) -> str:
        if not self.ip_address or self.ip_address == "0":
            raise DriverError("IP address is not set")
        return self.ip_address

    def get_url(self) -> str:
        if self.get_state() != State.RUNNING:
            raise HostNotRunningError()
        return f"tcp://{self.get_ip()}:{DOCKER_PORT}"

    def start(self) -> None:
        raise UnsupportedOperationError(UNSUPPORTED_MESSAGE)

    def stop(self) -> None:
        raise UnsupportedOperationError(UNSUPPORTED_MESSAGE)

    def kill(self) -> None:
        raise UnsupportedOperationError(UNSUPPORTED_MESSAGE)

    def restart(self) -> None:
        if self.get_state() == State.STARTING:
            logger.info("Host is already starting")
            return

        logger.debug("restarting %s", self.machine_name)
        result = self.get_client().reboot_instance(self.instance_id, REBOOT_TYPE_SOFT)
        if not result.succeeded:
            raise DriverError(f"Error rebooting instance {self.instance_id}")

    def remove(self) -> None:
        logger.debug("removing %s", self.machine_name)
        terminated = self.get_client().terminate_instance(self.instance_id)
        for entry in terminated:
            if entry.id == self.instance_id and entry.succeeded:
                return
        raise DriverError(f"Error removing instance {self.instance_id}")

    # ------------------------------------------------------------------
    # private helpers
    # ------------------------------------------------------------------

    def get_client(self) -> Client:
        if self._client is None:
            logger.debug("getting client")
            self._client = new_client(self.api_key, self.api_secret)
        return self._client

    def _validate_ssh_key(self) -> None:
        if not self.ssh_key_id:
            return
        for key in self.get_client().list_ssh_keys():
            if key.id == self.ssh_key_id:
                return
        raise ConfigurationError(f"Ssh Key Id {self.ssh_key_id} is invalid")

    def _validate_vm_location(self) -> None:
        if self.vm_location not in REGIONS:
            raise ConfigurationError(f"VM location {self.vm_location} is invalid")

    def _validate_plan(self) -> None:
        for plan in self.get_client().describe_plan("", PLAN_PLATFORM):
            if plan.plan_name == self.plan_name:
                return
        raise ConfigurationError(f"Plan name {self.plan_name} is invalid")

    def _public_ssh_key_path(self) -> str:
        return self.get_ssh_key_path() + ".pub"

    def _copy_ssh_key(self) -> None:
        copy_file(self.orig_ssh_key_path, self.get_ssh_key_path())
        orig_public = self.orig_ssh_key_path + ".pub"
        if os.path.exists(orig_public):
            copy_file(orig_public, self._public_ssh_key_path())

    def _create_ssh_key(self) -> str:
        ssh.generate_ssh_key(self.get_ssh_key_path())
        with open(self._public_ssh_key_path(), "r") as f:
            return f.read().strip()

    def _add_ssh_key_to_server(self, password: str, public_key: str) -> None:
        logger.info("Waiting for machine to be running, this may take a few minutes...")
        try:
            wait_for(
                machine_in_state(self, State.RUNNING),
                timeout=self.state_timeout,
                interval=self.poll_interval,
            )
        except WaitTimeoutError as ex:
            raise WaitTimeoutError(f"Error waiting for machine to be running: {ex}") from ex

        logger.info("Waiting for SSH to be available...")
        try:
            wait_for(
                self._ssh_available(password),
                timeout=self.ssh_timeout,
                interval=self.poll_interval,
            )
        except WaitTimeoutError as ex:
            raise WaitTimeoutError(f"Error waiting for ssh to be available: {ex}") from ex

        self._run_ssh_command(
            password,
            f"mkdir -p ~/.ssh && echo '{public_key}' >> ~/.ssh/authorized_keys",
        )

    def _ssh_available(self, password: str):
        def _check() -> bool:
            logger.debug("Getting to WaitForSSH function...")
            try:
                self._run_ssh_command(password, "exit 0")
            except (DriverError, OSError, paramiko.SSHException) as ex:
                logger.debug("Error getting ssh command 'exit 0' : %s", ex)
                return False
            return True
        return _check

    def _run_ssh_command(self, password: str, command: str) -> str:
        client = ssh.new_client(
            self.get_ssh_username(),
            self.get_ssh_hostname(),
            self.get_ssh_port(),
            ssh.Auth(passwords=[password]),
        )
        output = client.output(command)
        logger.debug("Ssh command output: %s", output)
        return output
