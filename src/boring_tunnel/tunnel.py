"""
Tunnel parameter resolution.

Provides:
- TunnelDeclaration: What the user declared for one tunnel
- RunConfig: Fully resolved, validated parameters for one tunnel
- Resolver: Folds declaration, SSH config and defaults into a RunConfig
- resolve: Convenience wrapper around Resolver
- normalize_local_address: "8080" -> "localhost:8080"

Precedence, highest first: fields set on the declaration, fields from
the SSH config entry for the alias, built-in defaults (port 22 only).
A hostname that is still unset falls back to the alias itself.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from boring_tunnel.auth import ClientAuthConfig, build_client_config
from boring_tunnel.config import HostConfigEntry, SSHConfig
from boring_tunnel.errors import (
    AuthError,
    ConfigError,
    ErrorContext,
    MissingFieldError,
    TunnelError,
)
from boring_tunnel.log import DiagnosticSink
from boring_tunnel.platform import get_config_path, get_home_dir

DEFAULT_PORT = 22

# A field source maps field names to values; "" and 0 mean unspecified
FieldSource = Mapping[str, Any]

DEFAULTS: FieldSource = {"port": DEFAULT_PORT}

_FIELDS = ("hostname", "user", "port", "identity_file")


@dataclass(frozen=True)
class TunnelDeclaration:
    """
    A tunnel as declared by the user.

    Attributes:
        host: Alias looked up in ~/.ssh/config, or a literal host name
        local_address: "port" or "host:port" to listen on
        remote_address: "host:port" to forward to
        user: Remote login name, "" if unspecified
        port: Remote SSH port, 0 if unspecified
        identity_file: Private key path, "" if unspecified
        name: Label for the tunnel, defaults to host
    """
    host: str
    local_address: str
    remote_address: str
    user: str = ""
    port: int = 0
    identity_file: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        assert isinstance(self.port, int) and self.port >= 0, \
            f"port must be a non-negative int, got {self.port!r}"
        if not self.name:
            object.__setattr__(self, "name", self.host)

    def as_source(self) -> FieldSource:
        """The declaration's explicit fields."""
        return {
            "user": self.user,
            "port": self.port,
            "identity_file": self.identity_file,
        }


@dataclass(frozen=True)
class RunConfig:
    """
    Resolved parameters for one tunnel, consumed by the connection layer.

    hostname, user and port are always set; identity_file may be "".
    """
    local_address: str
    remote_address: str
    hostname: str
    user: str
    port: int
    identity_file: str
    client_config: ClientAuthConfig = field(repr=False)


def normalize_local_address(address: str) -> str:
    """
    Qualify a bare port with localhost.

    "8080" becomes "localhost:8080"; anything containing ":" is returned
    unchanged, so normalising twice is the same as normalising once.
    """
    if ":" in address:
        return address
    return f"localhost:{address}"


def merge_sources(*sources: FieldSource) -> dict[str, Any]:
    """
    Fold field sources, highest precedence first.

    For every field the first source with a non-empty value wins.
    """
    merged: dict[str, Any] = {}
    for name in _FIELDS:
        merged[name] = ""
        for source in sources:
            value = source.get(name)
            if value:
                merged[name] = value
                break
    if not merged["port"]:
        merged["port"] = 0
    return merged


def _validate(fields: Mapping[str, Any], context: ErrorContext) -> None:
    """Raise MissingFieldError for the first required field left empty."""
    for name in ("hostname", "user", "port"):
        if not fields[name]:
            raise MissingFieldError(name, context)
    if fields["port"] > 65535:
        raise ConfigError(f"invalid port {fields['port']}", context)


class Resolver:
    """
    Resolves tunnel declarations into run configurations.

    Each call reads the SSH config, key files and known_hosts afresh and
    returns an independent RunConfig; a Resolver holds no state that one
    resolution could leak into another.

    Usage:
        resolver = Resolver(sink=DiagnosticSink())
        rc = resolver.resolve(TunnelDeclaration("myhost", "8080", "db:5432"))

    Args:
        sink: Receives warnings about unusable keys and config values
        home: Home directory for every default path (HOME if omitted)
        config_path: SSH config file (<home>/.ssh/config if omitted)
        known_hosts_path: Trust store (<home>/.ssh/known_hosts if omitted)
        reader: Alias -> HostConfigEntry, replaces reading config_path
    """

    def __init__(
        self,
        *,
        sink: DiagnosticSink | None = None,
        home: Path | str | None = None,
        config_path: Path | str | None = None,
        known_hosts_path: Path | str | None = None,
        reader: Callable[[str], HostConfigEntry] | None = None,
    ) -> None:
        self._sink = sink if sink is not None else DiagnosticSink()
        self._home = Path(home) if home is not None else None
        self._config_path = config_path
        self._known_hosts_path = known_hosts_path
        self._reader = reader

    def _home_dir(self) -> Path:
        return self._home if self._home is not None else get_home_dir()

    def read_host_config(self, alias: str) -> HostConfigEntry:
        """Look up the alias, wrapping config decode failures."""
        if self._reader is not None:
            return self._reader(alias)

        path = self._config_path
        if path is None:
            path = get_config_path(self._home_dir())
        try:
            return SSHConfig(path).lookup(alias)
        except ConfigError as e:
            raise ConfigError(
                f"could not parse SSH config: {e}",
                ErrorContext(host=alias, original_error=str(e), extra=dict(e.context.extra)),
            ) from e

    def _entry_source(self, entry: HostConfigEntry) -> FieldSource:
        port = entry.port_number
        if entry.port and port <= 0:
            self._sink.warning("Ignoring invalid Port %r in SSH config", entry.port)
            port = 0
        return {
            "hostname": entry.hostname,
            "user": entry.user,
            "port": port,
            "identity_file": entry.identity_file,
        }

    def resolve(self, declaration: TunnelDeclaration) -> RunConfig:
        """
        Resolve one declaration.

        Raises:
            ConfigError: Config file malformed, or hostname/user/port missing
            AuthError: No usable key, or known_hosts unusable
        """
        entry = self.read_host_config(declaration.host)

        fields = merge_sources(
            declaration.as_source(),
            self._entry_source(entry),
            DEFAULTS,
        )
        if not fields["hostname"]:
            fields["hostname"] = declaration.host

        context = ErrorContext(
            host=fields["hostname"] or None,
            username=fields["user"] or None,
            extra={"tunnel": declaration.name},
        )
        _validate(fields, context)

        try:
            client_config = build_client_config(
                fields["user"],
                fields["identity_file"],
                sink=self._sink,
                home=self._home_dir(),
                known_hosts_path=self._known_hosts_path,
            )
        except AuthError as e:
            raise AuthError(
                f"could not make client config: {e}",
                ErrorContext(
                    host=fields["hostname"],
                    port=fields["port"],
                    username=fields["user"],
                    original_error=str(e),
                    extra={"tunnel": declaration.name, "cause": e.error_type},
                ),
            ) from e

        return RunConfig(
            local_address=normalize_local_address(declaration.local_address),
            remote_address=declaration.remote_address,
            hostname=fields["hostname"],
            user=fields["user"],
            port=fields["port"],
            identity_file=fields["identity_file"],
            client_config=client_config,
        )

    def resolve_all(
        self,
        declarations: Iterable[TunnelDeclaration],
    ) -> dict[str, RunConfig | TunnelError]:
        """
        Resolve several declarations independently.

        Returns:
            Tunnel name -> RunConfig, or the TunnelError that tunnel failed with
        """
        results: dict[str, RunConfig | TunnelError] = {}
        for declaration in declarations:
            try:
                results[declaration.name] = self.resolve(declaration)
            except TunnelError as e:
                results[declaration.name] = e
        return results


def resolve(
    declaration: TunnelDeclaration,
    *,
    sink: DiagnosticSink | None = None,
    home: Path | str | None = None,
    reader: Callable[[str], HostConfigEntry] | None = None,
) -> RunConfig:
    """Resolve a single declaration with default paths."""
    return Resolver(sink=sink, home=home, reader=reader).resolve(declaration)
