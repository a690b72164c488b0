"""boring-tunnel: SSH tunnel parameter resolution and authentication setup."""

__version__ = "0.1.0"

from boring_tunnel.auth import (
    CONNECT_TIMEOUT,
    ClientAuthConfig,
    KeyCandidateResult,
    KeyOutcome,
    build_client_config,
    load_key_candidate,
    scan_key_candidates,
)
from boring_tunnel.config import HostConfigEntry, SSHConfig, read_host_config
from boring_tunnel.errors import (
    AuthError,
    ConfigError,
    ErrorContext,
    HostKeyError,
    HostKeyMismatch,
    HostKeyRevoked,
    HostKeyUnknown,
    KeyLoadError,
    MissingFieldError,
    NoKeysFoundError,
    SSHConfigError,
    TrustStoreError,
    TunnelError,
)
from boring_tunnel.known_hosts import (
    HostKeyResult,
    HostKeyVerifyingClient,
    KnownHostsVerifier,
    get_key_fingerprint,
)
from boring_tunnel.log import DiagnosticSink
from boring_tunnel.platform import (
    fill_home,
    get_config_path,
    get_default_key_paths,
    get_home_dir,
    get_known_hosts_path,
    get_ssh_dir,
)
from boring_tunnel.tunnel import (
    DEFAULT_PORT,
    Resolver,
    RunConfig,
    TunnelDeclaration,
    merge_sources,
    normalize_local_address,
    resolve,
)

__all__ = [
    # Resolution
    "TunnelDeclaration",
    "RunConfig",
    "Resolver",
    "resolve",
    "merge_sources",
    "normalize_local_address",
    "DEFAULT_PORT",
    # Config
    "SSHConfig",
    "HostConfigEntry",
    "read_host_config",
    # Auth
    "ClientAuthConfig",
    "KeyOutcome",
    "KeyCandidateResult",
    "build_client_config",
    "load_key_candidate",
    "scan_key_candidates",
    "CONNECT_TIMEOUT",
    # Known hosts
    "KnownHostsVerifier",
    "HostKeyVerifyingClient",
    "HostKeyResult",
    "get_key_fingerprint",
    # Diagnostics
    "DiagnosticSink",
    # Errors
    "TunnelError",
    "ConfigError",
    "SSHConfigError",
    "MissingFieldError",
    "AuthError",
    "NoKeysFoundError",
    "KeyLoadError",
    "TrustStoreError",
    "HostKeyError",
    "HostKeyUnknown",
    "HostKeyMismatch",
    "HostKeyRevoked",
    "ErrorContext",
    # Platform
    "get_home_dir",
    "get_ssh_dir",
    "get_config_path",
    "get_known_hosts_path",
    "get_default_key_paths",
    "fill_home",
]
