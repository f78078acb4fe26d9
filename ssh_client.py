"""
SSH Client Implementation

Runs commands on emulated VLAB hosts. Every VM is reachable on the host
loopback through its forwarded SSH port, with a fixed user and key and
without host key verification.
"""

import os
import time
import shlex
import socket
import logging
from typing import Optional, Sequence, Tuple

import paramiko

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "core"
DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_CONNECT_TIMEOUT = 30
DEFAULT_COMMAND_TIMEOUT = 5

_POLL_INTERVAL = 0.05
_RECV_SIZE = 65536


class SSHClientError(Exception):
    """Exception raised for SSH client errors."""
    pass


class SSHClient:
    """
    SSH client for executing commands on a single host.

    Usage:
        with SSHClient("127.0.0.1", port=22001, key_file="~/.ssh/vlab") as ssh:
            output, ok = ssh.run(["ip", "-4", "-o", "addr", "show"], timeout=5)
    """

    def __init__(
        self,
        hostname: str,
        port: int = 22,
        username: str = DEFAULT_USERNAME,
        key_file: Optional[str] = None,
        timeout: int = DEFAULT_CONNECT_TIMEOUT
    ):
        """
        Initialize SSH client.

        Args:
            hostname: Remote host IP or hostname
            port: SSH port (default: 22)
            username: SSH username (default: core)
            key_file: Path to private key file
            timeout: Connection timeout in seconds
        """
        self.hostname = hostname
        self.port = port
        self.username = username
        self.key_file = key_file
        self.timeout = timeout

        self._client: Optional[paramiko.SSHClient] = None
        self._connected = False

    def connect(self) -> None:
        """
        Establish SSH connection to the remote host.

        Raises:
            SSHClientError: If connection fails
        """
        if self._connected:
            return

        key_path = self._resolve_key_path()
        if not key_path:
            raise SSHClientError(f"SSH key not found: {self.key_file}")

        self._client = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            logger.debug(f"Connecting to {self.hostname}:{self.port} as {self.username}")
            self._client.connect(
                hostname=self.hostname,
                port=self.port,
                username=self.username,
                key_filename=key_path,
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            self._connected = True

        except paramiko.AuthenticationException as e:
            self.close()
            raise SSHClientError(f"Authentication failed for {self.hostname}:{self.port}: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise SSHClientError(f"SSH error connecting to {self.hostname}:{self.port}: {e}")
        except OSError as e:
            self.close()
            raise SSHClientError(f"Network error connecting to {self.hostname}:{self.port}: {e}")

    def _resolve_key_path(self) -> Optional[str]:
        """Resolve the SSH key file path, expanding ~ and checking existence."""
        if not self.key_file:
            return None

        path = os.path.expanduser(self.key_file)
        if os.path.isfile(path):
            return path

        logger.warning(f"Key file not found: {path}")
        return None

    def run(self, command: Sequence[str], timeout: int = DEFAULT_COMMAND_TIMEOUT) -> Tuple[str, bool]:
        """
        Run a command and wait for it at most timeout seconds.

        Args:
            command: Command as an argument list
            timeout: Deadline for the whole command in seconds

        Returns:
            Tuple of (combined stdout/stderr, success). success is False on
            a non-zero exit status or when the deadline passed.

        Raises:
            SSHClientError: If the connection or the session can't be set up
        """
        if not self._connected or not self._client:
            self.connect()

        cmd = shlex.join(command)
        logger.debug(f"Executing on {self.hostname}:{self.port}: {cmd}")

        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise SSHClientError(f"No active SSH transport to {self.hostname}:{self.port}")

        try:
            channel = transport.open_session(timeout=self.timeout)
            channel.set_combined_stderr(True)
            channel.exec_command(cmd)
        except (paramiko.SSHException, socket.timeout) as e:
            raise SSHClientError(f"Failed to execute command on {self.hostname}:{self.port}: {e}")

        chunks = []
        deadline = time.monotonic() + timeout
        timed_out = False

        while True:
            if channel.recv_ready():
                chunks.append(channel.recv(_RECV_SIZE))
            elif channel.exit_status_ready():
                while channel.recv_ready():
                    chunks.append(channel.recv(_RECV_SIZE))
                break
            else:
                time.sleep(_POLL_INTERVAL)

            # a command that keeps writing must still stop at the deadline
            if time.monotonic() >= deadline:
                timed_out = True
                break

        output = b"".join(chunks).decode("utf-8", errors="replace")

        if timed_out:
            channel.close()
            logger.debug(f"Command timed out after {timeout}s on {self.hostname}:{self.port}: {cmd}")
            return output, False

        exit_status = channel.recv_exit_status()
        channel.close()

        if exit_status != 0:
            logger.debug(f"Command returned {exit_status} on {self.hostname}:{self.port}")

        return output, exit_status == 0

    def close(self) -> None:
        """Close the SSH connection."""
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False
        logger.debug(f"Disconnected from {self.hostname}:{self.port}")

    def __enter__(self) -> "SSHClient":
        """Context manager entry - connect to host."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close connection."""
        self.close()

    def __repr__(self) -> str:
        return f"SSHClient({self.username}@{self.hostname}:{self.port})"


class SSHRunner:
    """
    Runs commands on VLAB VMs, one SSH session per call.

    Any object with a name and an ssh_port can be targeted, which covers
    the VMs of the registry.
    """

    def __init__(
        self,
        key_file: str,
        username: str = DEFAULT_USERNAME,
        address: str = DEFAULT_ADDRESS,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    ):
        self.key_file = key_file
        self.username = username
        self.address = address
        self.connect_timeout = connect_timeout

    def client_for(self, vm) -> SSHClient:
        return SSHClient(
            hostname=self.address,
            port=vm.ssh_port,
            username=self.username,
            key_file=self.key_file,
            timeout=self.connect_timeout,
        )

    def run(self, vm, command: Sequence[str], timeout: int = DEFAULT_COMMAND_TIMEOUT) -> Tuple[str, bool]:
        """
        Run a command on a VM.

        Raises:
            SSHClientError: If the VM can't be reached
        """
        with self.client_for(vm) as ssh:
            output, ok = ssh.run(command, timeout=timeout)

        if not ok:
            logger.debug(f"Command failed on {vm.name}: {shlex.join(command)}")

        return output, ok
