"""
Host key verification against an OpenSSH known_hosts store.

Provides:
- HostKeyResult: Verification outcome (trusted, unknown, changed, revoked)
- KnownHostsVerifier: Loads known_hosts strictly, checks server keys
- HostKeyVerifyingClient: AsyncSSH client that defers to the verifier

OpenSSH-compatible known_hosts format:
- hostname key (for port 22)
- [hostname]:port key (for non-standard ports)
- Hashed hosts (|1|salt|hash), wildcards (*, ?) and negation (!)
- @revoked and @cert-authority markers

Loading is all-or-nothing: a store that is missing, unreadable or has
a malformed line raises TrustStoreError. Nothing here ever falls back
to accepting host keys unverified.
"""
from __future__ import annotations

import base64
import binascii
import fnmatch
import hashlib
import hmac
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import asyncssh
from asyncssh.public_key import decode_ssh_public_key

from boring_tunnel.errors import (
    HostKeyMismatch,
    HostKeyRevoked,
    HostKeyUnknown,
    TrustStoreError,
)

_MARKERS = ("@revoked", "@cert-authority")


class HostKeyResult(str, Enum):
    """
    Result of host key verification.
    """
    TRUSTED = "trusted"     # Key matches known_hosts entry
    UNKNOWN = "unknown"     # Host not in known_hosts
    CHANGED = "changed"     # Key differs from known_hosts
    REVOKED = "revoked"     # Key is in revoked list (starts with @revoked)


@dataclass(frozen=True)
class HostKeyEntry:
    """
    Parsed entry from a known_hosts file.

    Attributes:
        hostnames: Hostnames/patterns this entry matches
        key_type: SSH key type (ssh-rsa, ssh-ed25519, etc.)
        key_data: Decoded public key blob
        marker: "", "@revoked" or "@cert-authority"
        line_no: Line in the source file
    """
    hostnames: tuple[str, ...]
    key_type: str
    key_data: bytes
    marker: str = ""
    line_no: int = 0

    @property
    def is_revoked(self) -> bool:
        return self.marker == "@revoked"

    @property
    def is_cert_authority(self) -> bool:
        return self.marker == "@cert-authority"


def _check_hashed_hostname(pattern: str, hostname: str) -> bool:
    """Check if a hostname matches a hashed known_hosts pattern."""
    parts = pattern.split("|")
    if len(parts) != 4 or parts[1] != "1":
        return False

    try:
        salt = base64.b64decode(parts[2])
        stored_hash = base64.b64decode(parts[3])
    except (ValueError, binascii.Error):
        return False

    mac = hmac.new(salt, hostname.encode('utf-8'), hashlib.sha1)
    return hmac.compare_digest(stored_hash, mac.digest())


def _format_host_for_known_hosts(host: str, port: int) -> str:
    """
    Format host/port the way known_hosts stores them.

    OpenSSH uses:
    - hostname for port 22
    - [hostname]:port for other ports
    """
    if port == 22:
        return host
    return f"[{host}]:{port}"


def _hostname_matches_pattern(hostname: str, port: int, pattern: str) -> bool:
    """
    Check if hostname:port matches a single, non-negated known_hosts pattern.

    Patterns can be:
    - Simple hostname or wildcard: example.com, *.example.com (port 22)
    - Bracketed with port: [example.com]:2222, [*.example.com]:2222
    - Hashed: |1|salt|hash
    """
    if pattern.startswith("|1|"):
        return _check_hashed_hostname(pattern, _format_host_for_known_hosts(hostname, port))

    bracket_match = re.match(r'^\[([^\]]+)\]:(\d+)$', pattern)
    if bracket_match:
        pattern_host = bracket_match.group(1)
        pattern_port = int(bracket_match.group(2))
        return port == pattern_port and fnmatch.fnmatchcase(
            hostname.lower(), pattern_host.lower()
        )

    return port == 22 and fnmatch.fnmatchcase(hostname.lower(), pattern.lower())


def _entry_matches(hostname: str, port: int, patterns: tuple[str, ...]) -> bool:
    """A host matches when some pattern matches and no negated one does."""
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if _hostname_matches_pattern(hostname, port, pattern[1:]):
                return False
        elif _hostname_matches_pattern(hostname, port, pattern):
            matched = True
    return matched


def get_key_fingerprint(key: asyncssh.SSHKey) -> str:
    """
    Get the SHA256 fingerprint of an SSH key.

    Returns:
        Fingerprint string (e.g., "SHA256:...")
    """
    digest = hashlib.sha256(key.public_data).digest()
    return "SHA256:" + base64.b64encode(digest).decode('ascii').rstrip('=')


def _key_type(key: asyncssh.SSHKey) -> str:
    algorithm = key.algorithm
    return algorithm.decode('ascii') if isinstance(algorithm, bytes) else algorithm


class KnownHostsVerifier:
    """
    Verifies SSH host keys against a known_hosts file.

    Usage:
        verifier = KnownHostsVerifier.from_path(Path("~/.ssh/known_hosts"))

        result = verifier.check_host_key(host, port, server_key)
        verifier.verify(host, port, server_key)   # raises unless trusted
        verifier(host, port, server_key)          # same as verify
    """

    def __init__(self, entries: list[HostKeyEntry], path: Path | None = None) -> None:
        self._entries = list(entries)
        self._path = path

    @classmethod
    def from_path(cls, path: Path | str) -> "KnownHostsVerifier":
        """
        Load a known_hosts file.

        Raises:
            TrustStoreError: If the file is missing, unreadable or malformed
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise TrustStoreError(
                f"could not read known_hosts {path}: {e}",
                path=str(path),
            ) from e

        return cls(cls._parse(content, path), path)

    @staticmethod
    def _parse(content: str, path: Path | None = None) -> list[HostKeyEntry]:
        """
        Parse known_hosts content.

        Format:
        hostname[,hostname2] key_type key_data [comment]
        @revoked hostname key_type key_data [comment]
        |1|salt|hash key_type key_data [comment]
        """
        entries: list[HostKeyEntry] = []

        for line_no, line in enumerate(content.splitlines(), 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            parts = line.split()
            marker = ""
            if parts[0].startswith("@"):
                marker = parts.pop(0)
                if marker not in _MARKERS:
                    raise TrustStoreError(
                        f"{path}:{line_no}: unknown marker {marker}",
                        path=str(path) if path else None,
                        line_no=line_no,
                    )

            if len(parts) < 3:
                raise TrustStoreError(
                    f"{path}:{line_no}: expected hostnames, key type and key data",
                    path=str(path) if path else None,
                    line_no=line_no,
                )

            try:
                key_data = base64.b64decode(parts[2], validate=True)
            except (ValueError, binascii.Error) as e:
                raise TrustStoreError(
                    f"{path}:{line_no}: invalid key data: {e}",
                    path=str(path) if path else None,
                    line_no=line_no,
                ) from e

            try:
                decode_ssh_public_key(key_data)
            except asyncssh.KeyImportError as e:
                raise TrustStoreError(
                    f"{path}:{line_no}: invalid public key: {e}",
                    path=str(path) if path else None,
                    line_no=line_no,
                ) from e

            entries.append(HostKeyEntry(
                hostnames=tuple(h for h in parts[0].split(',') if h),
                key_type=parts[1],
                key_data=key_data,
                marker=marker,
                line_no=line_no,
            ))

        return entries

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def entries(self) -> list[HostKeyEntry]:
        return list(self._entries)

    def check_host_key(
        self,
        host: str,
        port: int,
        key: asyncssh.SSHKey,
    ) -> HostKeyResult:
        """
        Check a server's host key against known_hosts.

        Args:
            host: Server hostname
            port: Server port
            key: Server's public key

        Returns:
            HostKeyResult indicating verification outcome
        """
        key_type = _key_type(key)
        key_data = key.public_data

        matching = [
            entry for entry in self._entries
            if not entry.is_cert_authority
            and _entry_matches(host, port, entry.hostnames)
        ]

        # A revoked key is rejected whichever host it is presented for
        for entry in self._entries:
            if entry.is_revoked and entry.key_data == key_data:
                return HostKeyResult.REVOKED

        if not matching:
            return HostKeyResult.UNKNOWN

        for entry in matching:
            if entry.key_type == key_type and entry.key_data == key_data:
                return HostKeyResult.TRUSTED

        return HostKeyResult.CHANGED

    def verify(self, host: str, port: int, key: asyncssh.SSHKey) -> None:
        """
        Accept the key only if known_hosts trusts it.

        Raises:
            HostKeyUnknown: No entry for host
            HostKeyMismatch: Host known with a different key
            HostKeyRevoked: Key is marked @revoked
        """
        result = self.check_host_key(host, port, key)
        if result == HostKeyResult.TRUSTED:
            return

        fingerprint = get_key_fingerprint(key)
        if result == HostKeyResult.REVOKED:
            raise HostKeyRevoked(
                f"host key for {host} is revoked", host, port, fingerprint,
            )
        if result == HostKeyResult.CHANGED:
            raise HostKeyMismatch(
                f"host key for {host} does not match known_hosts", host, port, fingerprint,
            )
        raise HostKeyUnknown(
            f"host {host} is not in known_hosts", host, port, fingerprint,
        )

    __call__ = verify


class HostKeyVerifyingClient(asyncssh.SSHClient):
    """
    AsyncSSH client that accepts only host keys the verifier trusts.

    Usage:
        conn = await asyncssh.connect(
            ..., client_factory=lambda: HostKeyVerifyingClient(verifier)
        )
    """

    def __init__(self, verifier: KnownHostsVerifier) -> None:
        super().__init__()
        self._verifier = verifier
        self._result: HostKeyResult | None = None

    @property
    def verification_result(self) -> HostKeyResult | None:
        """Get the result of host key verification."""
        return self._result

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        """Called by AsyncSSH during connection. Returns True to accept."""
        check_host = host or addr[0]
        self._result = self._verifier.check_host_key(check_host, port, key)
        return self._result == HostKeyResult.TRUSTED
