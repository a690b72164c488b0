"""
Tunnel error taxonomy with structured data for logging.

Provides specific error types for each way resolving a tunnel can fail,
enabling:
- Programmatic error handling with specific exception types
- Rich context for debugging
- Structured data for log lines

Error hierarchy:
- TunnelError (base)
  - ConfigError
    - SSHConfigError (malformed ~/.ssh/config)
    - MissingFieldError (host, user or port unresolved)
  - AuthError
    - NoKeysFoundError (no usable private key)
    - KeyLoadError (a single key candidate failed to parse)
    - TrustStoreError (known_hosts missing, unreadable or malformed)
    - HostKeyError
      - HostKeyUnknown
      - HostKeyMismatch
      - HostKeyRevoked
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class ErrorContext:
    """
    Structured context for tunnel errors.

    Carries what is needed to debug the root cause and to render the
    error as a structured log record.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    key_path: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        # Invariant: port must be in valid TCP range if specified
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            else:
                result[key] = value
        return result


class TunnelError(Exception):
    """
    Base exception for everything that can fail while resolving a tunnel.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        # Precondition: message must be non-empty
        assert isinstance(message, str) and message.strip(), (
            f"TunnelError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for structured logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Configuration Errors
# ---------------------------------------------------------------------------

class ConfigError(TunnelError):
    """Base class for errors in the resolved connection parameters."""
    pass


class SSHConfigError(ConfigError):
    """
    The SSH config file exists but could not be decoded.

    A missing file is never an error; only a corrupt one is.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        line_no: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if path:
            context.extra["config_path"] = path
        if line_no is not None:
            context.extra["line"] = line_no
        super().__init__(message, context)
        self.path = path
        self.line_no = line_no


class MissingFieldError(ConfigError):
    """A required connection parameter is still empty after all sources."""

    def __init__(self, field_name: str, context: ErrorContext | None = None) -> None:
        assert field_name in ("hostname", "user", "port"), (
            f"Unknown required field {field_name!r}"
        )
        if context is None:
            context = ErrorContext()
        context.extra["field"] = field_name
        super().__init__(f"no {field_name} specified", context)
        self.field = field_name


# ---------------------------------------------------------------------------
# Authentication Errors
# ---------------------------------------------------------------------------

class AuthError(TunnelError):
    """Base class for errors building the client authentication config."""
    pass


class NoKeysFoundError(AuthError):
    """None of the key candidates could be read and parsed."""

    def __init__(
        self,
        candidates: list[str] | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if candidates is not None:
            context.extra["candidates"] = list(candidates)
        super().__init__("no key files found", context)


class KeyLoadError(AuthError):
    """
    Failed to load one private key candidate.

    This is raised when:
    - Key file format is invalid
    - Key is encrypted and no passphrase is available
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        # Precondition: key_path must be None or a non-empty string
        assert key_path is None or (isinstance(key_path, str) and key_path.strip()), (
            f"key_path must be None or a non-empty string, got {key_path!r}"
        )
        if context is None:
            context = ErrorContext()
        context.key_path = key_path
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)


class TrustStoreError(AuthError):
    """
    The known_hosts store could not be turned into a verifier.

    There is no fallback: connecting without host key verification
    must never happen implicitly.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        line_no: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if path:
            context.extra["known_hosts_path"] = path
        if line_no is not None:
            context.extra["line"] = line_no
        super().__init__(message, context)
        self.path = path
        self.line_no = line_no


class HostKeyError(AuthError):
    """Base class for host key verification failures."""

    def __init__(
        self,
        message: str,
        host: str,
        port: int,
        fingerprint: str | None = None,
    ) -> None:
        context = ErrorContext(host=host, port=port)
        if fingerprint:
            context.extra["fingerprint"] = fingerprint
        super().__init__(message, context)
        self.host = host
        self.port = port
        self.fingerprint = fingerprint


class HostKeyUnknown(HostKeyError):
    """The host has no entry in known_hosts."""
    pass


class HostKeyMismatch(HostKeyError):
    """
    Host key verification failed.

    The server's host key does not match the known_hosts file.
    This could indicate a man-in-the-middle attack or server reconfiguration.
    """
    pass


class HostKeyRevoked(HostKeyError):
    """The server presented a key marked @revoked in known_hosts."""
    pass
