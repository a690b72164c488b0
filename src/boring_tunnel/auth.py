"""
Client authentication configuration for a tunnel.

Provides:
- KeyOutcome enum: LOADED, SKIPPED, INVALID
- load_key_candidate: Classify one private key candidate
- scan_key_candidates: Collect every usable key, warning about bad ones
- ClientAuthConfig: Signers, host key verifier and timeout for asyncssh
- build_client_config: Key discovery plus known_hosts trust policy
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

import asyncssh

from boring_tunnel.errors import ErrorContext, KeyLoadError, NoKeysFoundError
from boring_tunnel.known_hosts import HostKeyVerifyingClient, KnownHostsVerifier
from boring_tunnel.log import DiagnosticSink
from boring_tunnel.platform import (
    fill_home,
    get_default_key_paths,
    get_home_dir,
    get_known_hosts_path,
)

# Seconds the transport may spend establishing a connection
CONNECT_TIMEOUT = 10.0


class KeyOutcome(str, Enum):
    """What happened to one key candidate."""
    LOADED = "loaded"    # Parsed, usable as a signer
    SKIPPED = "skipped"  # Could not be read; expected for absent files
    INVALID = "invalid"  # Read but not parseable; worth a warning


@dataclass(frozen=True)
class KeyCandidateResult:
    """
    Outcome of trying one key candidate.

    Attributes:
        candidate: The path as listed (before ~ expansion)
        path: The expanded path that was read
        outcome: LOADED, SKIPPED or INVALID
        key: The parsed key when LOADED
        error: The parse failure when INVALID
    """
    candidate: str
    path: str
    outcome: KeyOutcome
    key: asyncssh.SSHKey | None = None
    error: KeyLoadError | None = None


def load_key_candidate(candidate: str, home: Path | str | None = None) -> KeyCandidateResult:
    """
    Read and parse one private key candidate.

    Never raises: read failures are SKIPPED, parse failures INVALID.
    """
    path = fill_home(candidate, home)
    if not path:
        return KeyCandidateResult(candidate, path, KeyOutcome.SKIPPED)

    try:
        data = Path(path).read_bytes()
    except OSError:
        return KeyCandidateResult(candidate, path, KeyOutcome.SKIPPED)

    try:
        key = asyncssh.import_private_key(data)
    except (asyncssh.KeyImportError, ValueError) as e:
        error_msg = str(e).lower()
        if "passphrase" in error_msg or "decrypt" in error_msg:
            reason = "encrypted"
        elif "format" in error_msg or "invalid" in error_msg:
            reason = "invalid_format"
        else:
            reason = "import_error"

        error = KeyLoadError(
            f"Unable to parse private key {candidate}: {e}",
            key_path=path,
            reason=reason,
            context=ErrorContext(original_error=str(e)),
        )
        return KeyCandidateResult(candidate, path, KeyOutcome.INVALID, error=error)

    return KeyCandidateResult(candidate, path, KeyOutcome.LOADED, key=key)


def scan_key_candidates(
    candidates: Sequence[str],
    sink: DiagnosticSink,
    home: Path | str | None = None,
) -> list[asyncssh.SSHKey]:
    """
    Load every usable key from the candidates, in order.

    Unreadable candidates are skipped silently. Unparseable ones are
    reported to the sink as a warning and the scan carries on.
    """
    signers: list[asyncssh.SSHKey] = []

    for candidate in candidates:
        result = load_key_candidate(candidate, home)
        if result.outcome == KeyOutcome.LOADED:
            assert result.key is not None
            signers.append(result.key)
        elif result.outcome == KeyOutcome.INVALID:
            sink.warning("%s", result.error)
        else:
            sink.debug("Skipping key candidate %r", candidate)

    return signers


@dataclass(frozen=True)
class ClientAuthConfig:
    """
    Everything asyncssh needs to authenticate one tunnel's connections.

    Built once per tunnel and never modified; safe to share between
    connection attempts.
    """
    username: str
    signers: tuple[asyncssh.SSHKey, ...]
    host_key_verifier: KnownHostsVerifier
    connect_timeout: float = CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        """Validate configuration."""
        assert self.username, "username required"
        assert self.signers, "at least one signer required"
        assert self.connect_timeout > 0, \
            f"connect_timeout must be positive, got {self.connect_timeout}"

    def connect_options(self) -> dict[str, Any]:
        """Keyword arguments for asyncssh.connect (host and port excluded)."""
        verifier = self.host_key_verifier
        return {
            "username": self.username,
            "client_keys": list(self.signers),
            "password": None,
            "agent_path": None,
            "config": None,
            "connect_timeout": self.connect_timeout,
            # Empty trust lists send every host key to validate_host_public_key
            "known_hosts": ([], [], []),
            "client_factory": lambda: HostKeyVerifyingClient(verifier),
        }

    def connection_options(self) -> asyncssh.SSHClientConnectionOptions:
        """The same options as a reusable asyncssh options object."""
        return asyncssh.SSHClientConnectionOptions(**self.connect_options())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (no key material)."""
        path = self.host_key_verifier.path
        return {
            "username": self.username,
            "signers": len(self.signers),
            "known_hosts": str(path) if path else None,
            "connect_timeout": self.connect_timeout,
        }


def build_client_config(
    user: str,
    identity_file: str,
    *,
    sink: DiagnosticSink | None = None,
    home: Path | str | None = None,
    known_hosts_path: Path | str | None = None,
) -> ClientAuthConfig:
    """
    Build the authentication config for a resolved user and identity file.

    Candidates are the identity file followed by ~/.ssh/id_rsa,
    ~/.ssh/id_ecdsa and ~/.ssh/id_ed25519. An empty identity file is
    kept as a candidate and simply fails to read.

    Args:
        user: Remote login name
        identity_file: Configured private key path, may be ""
        sink: Where key parse warnings go (stdout sink if omitted)
        home: Home directory for ~ expansion (HOME if omitted)
        known_hosts_path: Trust store (<home>/.ssh/known_hosts if omitted)

    Returns:
        ClientAuthConfig ready for the connection layer

    Raises:
        NoKeysFoundError: If no candidate yields a usable key
        TrustStoreError: If known_hosts cannot be loaded
    """
    if sink is None:
        sink = DiagnosticSink()
    home = Path(home) if home is not None else get_home_dir()

    candidates = [identity_file, *get_default_key_paths()]
    signers = scan_key_candidates(candidates, sink, home)
    if not signers:
        raise NoKeysFoundError(candidates, context=ErrorContext(username=user))

    if known_hosts_path is None:
        known_hosts_path = get_known_hosts_path(home)
    verifier = KnownHostsVerifier.from_path(known_hosts_path)

    return ClientAuthConfig(
        username=user,
        signers=tuple(signers),
        host_key_verifier=verifier,
    )
