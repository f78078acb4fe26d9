"""Tests for the SSH client, with paramiko replaced by fakes."""

import time

import pytest
import paramiko

import ssh_client
from ssh_client import SSHClient, SSHClientError, SSHRunner


class FakeChannel:
    def __init__(self, chunks, exit_status=0, finishes=True):
        self.chunks = list(chunks)
        self.exit_status = exit_status
        self.finishes = finishes
        self.command = None
        self.closed = False

    def set_combined_stderr(self, combine):
        self.combined = combine

    def exec_command(self, command):
        self.command = command

    def recv_ready(self):
        return bool(self.chunks)

    def recv(self, size):
        return self.chunks.pop(0)

    def exit_status_ready(self):
        return self.finishes and not self.chunks

    def recv_exit_status(self):
        return self.exit_status

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, channel):
        self.channel = channel

    def is_active(self):
        return True

    def open_session(self, timeout=None):
        return self.channel


class FakeParamikoClient:
    instances = []

    def __init__(self):
        self.channel = None
        self.connect_kwargs = None
        self.closed = False
        FakeParamikoClient.instances.append(self)

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs

    def get_transport(self):
        return FakeTransport(self.channel)

    def close(self):
        self.closed = True


@pytest.fixture
def key_file(tmp_path):
    path = tmp_path / "id_ed25519"
    path.write_text("key")
    return str(path)


@pytest.fixture
def fake_paramiko(monkeypatch):
    FakeParamikoClient.instances = []
    monkeypatch.setattr(ssh_client.paramiko, "SSHClient", FakeParamikoClient)
    return FakeParamikoClient


def connected_client(key_file, channel):
    client = SSHClient("127.0.0.1", port=22001, key_file=key_file)
    client.connect()
    client._client.channel = channel
    return client


def test_connect_uses_key_only(fake_paramiko, key_file):
    client = SSHClient("127.0.0.1", port=22003, key_file=key_file)
    client.connect()

    kwargs = fake_paramiko.instances[0].connect_kwargs
    assert kwargs["port"] == 22003
    assert kwargs["username"] == "core"
    assert kwargs["key_filename"] == key_file
    assert kwargs["look_for_keys"] is False
    assert isinstance(fake_paramiko.instances[0].policy, paramiko.AutoAddPolicy)


def test_missing_key(fake_paramiko, tmp_path):
    client = SSHClient("127.0.0.1", port=22001, key_file=str(tmp_path / "missing"))
    with pytest.raises(SSHClientError, match="SSH key not found"):
        client.connect()


def test_run_success(fake_paramiko, key_file):
    channel = FakeChannel([b"64 bytes from ", b"10.0.2.10\n"])
    client = connected_client(key_file, channel)

    output, ok = client.run(["ping", "-c", "1", "10.0.2.10"], timeout=5)

    assert output == "64 bytes from 10.0.2.10\n"
    assert ok
    assert channel.command == "ping -c 1 10.0.2.10"
    assert channel.closed


def test_run_quotes_arguments(fake_paramiko, key_file):
    channel = FakeChannel([])
    client = connected_client(key_file, channel)

    client.run(["echo", "two words"], timeout=5)

    assert channel.command == "echo 'two words'"


def test_run_nonzero_exit(fake_paramiko, key_file):
    client = connected_client(key_file, FakeChannel([b"100% packet loss\n"], exit_status=1))
    output, ok = client.run(["ping", "10.0.2.10"], timeout=5)
    assert output == "100% packet loss\n"
    assert not ok


def test_run_deadline(fake_paramiko, key_file):
    channel = FakeChannel([b"partial"], finishes=False)
    client = connected_client(key_file, channel)

    output, ok = client.run(["iperf3", "-s"], timeout=0)

    assert output == "partial"
    assert not ok
    assert channel.closed


def test_runner_targets_vm_port(fake_paramiko, key_file):
    class VM:
        name = "server-2"
        ssh_port = 22002

    runner = SSHRunner(key_file)
    client = runner.client_for(VM())
    assert (client.hostname, client.port, client.username) == ("127.0.0.1", 22002, "core")


def test_runner_closes_session(fake_paramiko, key_file, monkeypatch):
    class VM:
        name = "server-2"
        ssh_port = 22002

    channel = FakeChannel([b"ok"])
    base_connect = FakeParamikoClient.connect

    def connect(self, **kwargs):
        base_connect(self, **kwargs)
        self.channel = channel

    monkeypatch.setattr(FakeParamikoClient, "connect", connect)

    output, ok = SSHRunner(key_file).run(VM(), ["true"], timeout=5)

    assert (output, ok) == ("ok", True)
    assert fake_paramiko.instances[0].closed


class StreamingChannel(FakeChannel):
    """Channel of a command that never stops writing."""

    def __init__(self):
        super().__init__([])

    def recv_ready(self):
        return True

    def recv(self, size):
        return b"."

    def exit_status_ready(self):
        return False


def test_run_deadline_with_continuous_output(fake_paramiko, key_file):
    channel = StreamingChannel()
    client = connected_client(key_file, channel)

    started = time.monotonic()
    output, ok = client.run(["ping", "-f", "10.0.2.10"], timeout=0.3)

    assert time.monotonic() - started < 1.0
    assert not ok
    assert output.startswith(".")
    assert channel.closed


@pytest.mark.parametrize("error", [
    paramiko.AuthenticationException("bad key"),
    paramiko.SSHException("banner timeout"),
    OSError("connection refused"),
])
def test_failed_connect_closes_client(fake_paramiko, key_file, monkeypatch, error):
    class VM:
        name = "server-2"
        ssh_port = 22002

    def connect(self, **kwargs):
        raise error

    monkeypatch.setattr(FakeParamikoClient, "connect", connect)

    with pytest.raises(SSHClientError):
        SSHRunner(key_file).run(VM(), ["true"], timeout=5)

    assert [c.closed for c in fake_paramiko.instances] == [True]


def test_missing_key_opens_no_client(fake_paramiko, tmp_path):
    with pytest.raises(SSHClientError):
        SSHClient("127.0.0.1", port=22001, key_file=str(tmp_path / "missing")).connect()
    assert fake_paramiko.instances == []
