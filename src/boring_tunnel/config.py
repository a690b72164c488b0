"""
SSH config file reading for tunnel host aliases.

Provides:
- SSHConfig: Parser for ~/.ssh/config
- HostConfigEntry: The four per-alias fields a tunnel cares about
- read_host_config: Look up one alias in the per-user config

Supports:
- Host pattern matching with wildcards (*, ?) and negation (!)
- Global options before the first Host block
- First match wins for every directive
- Include, with globs resolved relative to ~/.ssh

A missing config file is the common case and yields an empty entry.
A file that exists but cannot be decoded raises SSHConfigError.
"""
from __future__ import annotations

import fnmatch
import glob
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from boring_tunnel.errors import SSHConfigError
from boring_tunnel.platform import fill_home, get_config_path, get_ssh_dir

logger = logging.getLogger(__name__)

# Include files may themselves include, up to this depth
MAX_INCLUDE_DEPTH = 5

_INLINE_COMMENT = re.compile(r"\s#")


@dataclass(frozen=True)
class HostConfigEntry:
    """
    Per-alias fields read from the SSH config.

    Every field is "" when the alias does not set it. Empty means
    unspecified, never explicitly cleared.
    """
    hostname: str = ""
    user: str = ""
    port: str = ""
    identity_file: str = ""
    identity_files: tuple[str, ...] = ()

    @property
    def port_number(self) -> int:
        """The port as an integer, or 0 when absent or not a number."""
        try:
            return int(self.port)
        except ValueError:
            return 0


@dataclass
class _HostBlock:
    """Internal representation of a Host block in config."""
    patterns: list[str]
    options: dict[str, list[str]] = field(default_factory=dict)
    # Patterns of the Host blocks an Include was nested in
    guards: tuple[tuple[str, ...], ...] = ()


class SSHConfig:
    """
    Parser for an SSH config file and the files it includes.

    Matches OpenSSH behaviour for the directives it surfaces:
    - Options before the first Host line apply to every host
    - First match wins across matching Host blocks
    - Host patterns support * and ? wildcards and ! negation
    - Directive names are case-insensitive, "Key Value" and "Key=Value"

    Usage:
        config = SSHConfig()  # ~/.ssh/config
        entry = config.lookup("myhost")

        config = SSHConfig(Path("/path/to/config"))
    """

    # Directives surfaced in HostConfigEntry, keyed by lowercased name
    FIELDS: dict[str, str] = {
        "hostname": "hostname",
        "user": "user",
        "port": "port",
        "identityfile": "identity_file",
    }

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else get_config_path()
        self._global_options: dict[str, list[str]] = {}
        self._host_blocks: list[_HostBlock] = []
        self._load_file(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _load_file(
        self,
        config_path: Path,
        depth: int = 0,
        enclosing: _HostBlock | None = None,
    ) -> None:
        """Load and parse a config file, tolerating its absence."""
        try:
            with open(config_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.debug("Ignoring unreadable SSH config %s: %s", config_path, e)
            return

        self._parse(content, config_path, depth, enclosing)

    def _parse(
        self,
        content: str,
        path: Path,
        depth: int = 0,
        enclosing: _HostBlock | None = None,
    ) -> None:
        """
        Parse SSH config content.

        enclosing is the Host block an Include line appeared in. It has
        already been recorded, and Host blocks read here only apply when
        it matches too.
        """
        current_block = enclosing

        def close(block: _HostBlock | None) -> None:
            if block is not None and block is not enclosing:
                self._host_blocks.append(block)

        for line_no, line in enumerate(content.splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            # Inline comments only count when preceded by whitespace
            comment = _INLINE_COMMENT.search(line)
            if comment:
                line = line[:comment.start()].rstrip()

            # SSH config allows both "Option Value" and "Option=Value"
            head = line.split(None, 1)[0]
            if "=" in head:
                option, value = line.split("=", 1)
            else:
                parts = line.split(None, 1)
                if len(parts) < 2:
                    raise self._error(f"missing value for {parts[0]}", path, line_no)
                option, value = parts
                # "Option = Value"
                if value.startswith("="):
                    value = value[1:]

            option = option.strip().lower()
            value = value.strip()
            if not value:
                raise self._error(f"missing value for {option}", path, line_no)

            if option == "host":
                patterns = self._parse_patterns(value, path, line_no)
                if not patterns:
                    raise self._error("Host line has no patterns", path, line_no)
                close(current_block)
                guards: tuple[tuple[str, ...], ...] = ()
                if enclosing is not None:
                    guards = enclosing.guards + (tuple(enclosing.patterns),)
                current_block = _HostBlock(patterns=patterns, guards=guards)

            elif option == "match":
                raise self._error("Match blocks are not supported", path, line_no)

            elif option == "include":
                close(current_block)
                self._include(value, path, line_no, depth, current_block)
                # Later lines of this block come after the included blocks
                if current_block is not None:
                    current_block = _HostBlock(
                        patterns=current_block.patterns,
                        guards=current_block.guards,
                    )

            else:
                value = self._unquote(value, path, line_no)
                options = (
                    current_block.options if current_block is not None
                    else self._global_options
                )
                options.setdefault(option, []).append(value)

        close(current_block)

    def _include(
        self,
        value: str,
        path: Path,
        line_no: int,
        depth: int,
        enclosing: _HostBlock | None,
    ) -> None:
        """Read every file an Include line names, in sorted glob order."""
        if depth >= MAX_INCLUDE_DEPTH:
            raise self._error("Include nested too deeply", path, line_no)

        for pattern in self._parse_patterns(value, path, line_no):
            pattern = fill_home(pattern)
            # Relative paths are taken from ~/.ssh, as ssh does for user config
            if not Path(pattern).is_absolute():
                pattern = str(get_ssh_dir() / pattern)
            for match in sorted(glob.glob(pattern)):
                if Path(match).is_file():
                    self._load_file(Path(match), depth + 1, enclosing)

    def _unquote(self, value: str, path: Path, line_no: int) -> str:
        """Strip one pair of surrounding double quotes."""
        if value.count('"') % 2:
            raise self._error("unbalanced quotes", path, line_no)
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            return value[1:-1]
        return value

    def _parse_patterns(self, value: str, path: Path, line_no: int) -> list[str]:
        """Parse a whitespace-separated, optionally quoted, argument list."""
        patterns = []
        in_quotes = False
        current: list[str] = []

        for char in value:
            if char == '"':
                in_quotes = not in_quotes
            elif char.isspace() and not in_quotes:
                if current:
                    patterns.append("".join(current))
                    current = []
            else:
                current.append(char)

        if in_quotes:
            raise self._error("unbalanced quotes", path, line_no)
        if current:
            patterns.append("".join(current))

        return patterns

    @staticmethod
    def _error(message: str, path: Path, line_no: int) -> SSHConfigError:
        return SSHConfigError(
            f"{path}:{line_no}: {message}",
            path=str(path),
            line_no=line_no,
        )

    @staticmethod
    def _matches_host_block(host: str, patterns: list[str]) -> bool:
        """Check if host matches a Host block's patterns.

        A host must match at least one positive pattern and no negated one.
        """
        matched_positive = False

        for pattern in patterns:
            if pattern.startswith("!"):
                if fnmatch.fnmatchcase(host.lower(), pattern[1:].lower()):
                    return False
            elif fnmatch.fnmatchcase(host.lower(), pattern.lower()):
                matched_positive = True

        return matched_positive

    def lookup(self, alias: str) -> HostConfigEntry:
        """
        Look up the tunnel fields for an alias.

        Args:
            alias: The host alias as declared by the user

        Returns:
            HostConfigEntry with whatever the config sets for the alias
        """
        merged: dict[str, list[str]] = {}

        def apply(options: dict[str, list[str]]) -> None:
            for key, values in options.items():
                if key in self.FIELDS:
                    merged.setdefault(key, []).extend(values)

        apply(self._global_options)
        for block in self._host_blocks:
            if self._matches_host_block(alias, block.patterns) and all(
                self._matches_host_block(alias, list(guard)) for guard in block.guards
            ):
                apply(block.options)

        def first(key: str) -> str:
            values = merged.get(key)
            return values[0] if values else ""

        return HostConfigEntry(
            hostname=first("hostname"),
            user=first("user"),
            port=first("port"),
            identity_file=first("identityfile"),
            identity_files=tuple(merged.get("identityfile", ())),
        )


def read_host_config(alias: str, path: Path | str | None = None) -> HostConfigEntry:
    """
    Read the config entry for one alias from the per-user SSH config.

    Raises:
        SSHConfigError: If the file exists but is malformed
    """
    return SSHConfig(path).lookup(alias)
