"""
drivers/ssh.py

SSH helpers built on paramiko:
  generate_ssh_key()  - write an RSA key pair to disk (id_rsa + id_rsa.pub)
  NativeClient        - run a single command on a remote host

Each NativeClient.output() call opens and closes its own connection.
Freshly created machines drop connections while they boot, so callers poll
with a new connection per attempt rather than holding one open.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List

import paramiko

from .errors import SSHCommandError

logger = logging.getLogger(__name__)

DEFAULT_KEY_BITS = 2048
CONNECT_TIMEOUT = 10


def generate_ssh_key(path: str, bits: int = DEFAULT_KEY_BITS) -> str:
    """
    Generate an RSA key pair.

    The private key is written to `path` (mode 0600) and the OpenSSH public
    key to `path + ".pub"`. Parent directories are created as needed.

    Returns:
        The public key line that was written.
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    key = paramiko.RSAKey.generate(bits)
    key.write_private_key_file(path)
    os.chmod(path, 0o600)

    public_key = f"{key.get_name()} {key.get_base64()}"
    with open(f"{path}.pub", "w") as f:
        f.write(public_key + "\n")

    logger.debug("Generated SSH key pair at %s", path)
    return public_key


@dataclass
class Auth:
    """Credentials tried when connecting: passwords and/or private key files."""
    passwords: List[str] = field(default_factory=list)
    keys: List[str] = field(default_factory=list)


class NativeClient:
    """Runs commands on a remote host through paramiko."""

    def __init__(self, user: str, host: str, port: int, auth: Auth):
        self.user = user
        self.host = host
        self.port = port
        self.auth = auth

    def _connect(self) -> paramiko.SSHClient:
        ssh = paramiko.SSHClient()
        # The host was created moments ago by this driver; there is no known_hosts
        # entry to check it against.
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        ssh.connect(
            self.host,
            port=self.port,
            username=self.user,
            password=self.auth.passwords[0] if self.auth.passwords else None,
            key_filename=self.auth.keys or None,
            look_for_keys=False,
            allow_agent=False,
            timeout=CONNECT_TIMEOUT,
        )
        return ssh

    def output(self, command: str) -> str:
        """
        Run `command` and return its combined stdout/stderr.

        Raises:
            SSHCommandError: the command exited non-zero.
            paramiko.SSHException / OSError: the connection failed.
        """
        ssh = self._connect()
        try:
            channel = ssh.get_transport().open_session()
            channel.set_combine_stderr(True)
            channel.exec_command(command)
            output = channel.makefile("rb").read().decode("utf-8", errors="replace")
            exit_status = channel.recv_exit_status()
        finally:
            ssh.close()

        if exit_status != 0:
            raise SSHCommandError(command, exit_status, output.strip())
        return output


def new_client(user: str, host: str, port: int, auth: Auth) -> NativeClient:
    return NativeClient(user, host, port, auth)

