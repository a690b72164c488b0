"""
Pytest fixtures for boring-tunnel tests.

Provides:
- A throwaway home directory with an empty ~/.ssh, exported as HOME
- Generated private keys and helpers to install them
- known_hosts line and hashed hostname helpers
- A known_hosts file trusting a generated host key
- A DiagnosticSink writing to an in-memory buffer
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import io
from pathlib import Path

import asyncssh
import pytest

from boring_tunnel.log import DiagnosticSink


class SinkCapture:
    """DiagnosticSink plus the buffer it writes to."""

    def __init__(self, debug: bool = False) -> None:
        self.buffer = io.StringIO()
        self.sink = DiagnosticSink(self.buffer, debug=debug, colour=False)

    @property
    def lines(self) -> list[str]:
        return self.buffer.getvalue().splitlines()

    def lines_at(self, level: str) -> list[str]:
        return [line for line in self.lines if f"] {level} " in line]


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Home directory with an empty .ssh, set as HOME."""
    home_dir = tmp_path / "home"
    (home_dir / ".ssh").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def ssh_dir(home: Path) -> Path:
    return home / ".ssh"


@pytest.fixture(scope="session")
def user_key() -> asyncssh.SSHKey:
    """A client private key."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def other_user_key() -> asyncssh.SSHKey:
    """A second, distinct client private key."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def host_key() -> asyncssh.SSHKey:
    """The key the test server presents."""
    return asyncssh.generate_private_key("ssh-ed25519")


def write_key(path: Path, key: asyncssh.SSHKey) -> Path:
    """Write a private key in OpenSSH format."""
    path.write_bytes(key.export_private_key())
    path.chmod(0o600)
    return path


def known_hosts_line(hosts: str, key: asyncssh.SSHKey) -> str:
    """Format a known_hosts line for hosts and the public half of key."""
    public = key.export_public_key().decode("ascii").strip()
    return f"{hosts} {public}\n"


def hash_hostname(hostname: str, salt: bytes) -> str:
    """Hash a hostname the way ssh-keygen -H writes it: |1|salt|hmac-sha1."""
    mac = hmac.new(salt, hostname.encode("utf-8"), hashlib.sha1)
    salt_b64 = base64.b64encode(salt).decode("ascii")
    hash_b64 = base64.b64encode(mac.digest()).decode("ascii")
    return f"|1|{salt_b64}|{hash_b64}"


@pytest.fixture
def known_hosts(ssh_dir: Path, host_key: asyncssh.SSHKey) -> Path:
    """~/.ssh/known_hosts trusting host_key for example.com."""
    path = ssh_dir / "known_hosts"
    path.write_text(known_hosts_line("example.com", host_key))
    return path


@pytest.fixture
def capture() -> SinkCapture:
    return SinkCapture()
