"""
Home directory and SSH path handling.

Provides:
- Home directory resolution from the HOME environment variable
- Paths of the per-user SSH config, known_hosts and default keys
- Leading ~ expansion for key paths
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping

# Conventional private key names tried after the configured identity file
DEFAULT_KEY_NAMES: tuple[str, ...] = ("id_rsa", "id_ecdsa", "id_ed25519")


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_home_dir(environ: Mapping[str, str] | None = None) -> Path:
    """
    Get the home directory used for every path expansion.

    Reads HOME from the given environment (os.environ by default) and only
    falls back to Path.home() when HOME is unset.
    """
    if environ is None:
        environ = os.environ
    home = environ.get("HOME")
    if home:
        return Path(home)
    return Path.home()


def get_ssh_dir(home: Path | str | None = None) -> Path:
    """
    Get the per-user SSH directory.

    Returns:
        <home>/.ssh
    """
    if home is None:
        home = get_home_dir()
    return Path(home) / ".ssh"


def get_config_path(home: Path | str | None = None) -> Path:
    """Get the per-user SSH config file path."""
    return get_ssh_dir(home) / "config"


def get_known_hosts_path(home: Path | str | None = None) -> Path:
    """Get the per-user known_hosts file path."""
    return get_ssh_dir(home) / "known_hosts"


def get_default_key_paths() -> list[str]:
    """
    Get the default private key candidates, unexpanded.

    Order is id_rsa, id_ecdsa, id_ed25519. The paths keep their leading ~
    so that diagnostics name them the way a user would write them.
    """
    return [f"~/.ssh/{name}" for name in DEFAULT_KEY_NAMES]


def fill_home(path: str, home: Path | str | None = None) -> str:
    """
    Expand a leading ~ in a key path.

    Only a bare "~" or a "~/" prefix is expanded; "~otheruser/..." and
    every other path are returned unchanged, including the empty string.
    """
    if home is None:
        home = get_home_dir()
    if path == "~":
        return str(home)
    if path.startswith("~/"):
        return str(Path(home) / path[2:])
    return path
