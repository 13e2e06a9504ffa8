"""Resolve a ConfigSnapshot from defaults, the environment and command-line flags.

Precedence, lowest first: built-in defaults, the ``PORT`` variable, the
``ZERVER`` variable, command-line flags, the positional directory.
Bad environment values are ignored with a warning; a bad ``--port`` flag
aborts startup.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from typer import BadParameter

from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.constants import (
    DEFAULT_API_DIR,
    DEFAULT_PORT,
    ENV_CONFIG_VAR,
    ENV_PORT_VAR,
)
from zerver.models import ConfigSnapshot, FlagOverrides

logger = get_logger(DevLogComponent.CONFIG)

ENV_PAIR_PATTERN = re.compile(r"([^,]+)=([^,]+)")

_ENV_BOOL_KEYS: dict[str, str] = {
    "d": "debug",
    "debug": "debug",
    "r": "refresh",
    "refresh": "refresh",
    "l": "logging",
    "logging": "logging",
    "b": "verbose",
    "verbose": "verbose",
    "p": "production",
    "production": "production",
}


def _parse_port(value: str) -> int | None:
    try:
        port = int(value.strip())
    except ValueError:
        return None
    return port if port > 0 else None


def _warn_invalid(key: str, value: str) -> None:
    logger.warning(f"ignoring invalid env {key}={value}")


def parse_env_config(raw: str) -> dict[str, Any]:
    """Parse the ``key=value,key=value`` grammar of the ZERVER variable.

    Returns only the settings that parsed cleanly, keyed by ConfigSnapshot
    field name. Later pairs override earlier ones.
    """
    settings: dict[str, Any] = {}
    for key, value in ENV_PAIR_PATTERN.findall(raw):
        if key in _ENV_BOOL_KEYS:
            if value == "true":
                settings[_ENV_BOOL_KEYS[key]] = True
            elif value == "false":
                settings[_ENV_BOOL_KEYS[key]] = False
            else:
                _warn_invalid(_ENV_BOOL_KEYS[key], value)
        elif key == "port":
            port = _parse_port(value)
            if port is None:
                _warn_invalid(key, value)
            else:
                settings["port"] = port
        elif key == "host":
            settings["api_host"] = value
        else:
            _warn_invalid(key, value)
    return settings


def _default_settings(env: Mapping[str, str], base_dir: Path) -> dict[str, Any]:
    port = DEFAULT_PORT
    raw_port = env.get(ENV_PORT_VAR)
    if raw_port:
        parsed = _parse_port(raw_port)
        if parsed is None:
            logger.warning(f"ignoring invalid env {ENV_PORT_VAR}={raw_port}")
        else:
            port = parsed

    return {
        "port": port,
        "api_dir": DEFAULT_API_DIR,
        "debug": False,
        "refresh": False,
        "logging": False,
        "verbose": False,
        "production": False,
        "manifests": [],
        "api_host": None,
        "cwd": base_dir,
    }


def _apply_flags(settings: dict[str, Any], flags: FlagOverrides, base_dir: Path):
    for name in ("debug", "refresh", "logging", "verbose", "production"):
        if getattr(flags, name):
            settings[name] = True

    if flags.port is not None:
        port = _parse_port(flags.port)
        if port is None:
            raise BadParameter(
                f"port must be an integer, got {flags.port}", param_hint="'--port'"
            )
        settings["port"] = port

    if flags.host is not None:
        settings["api_host"] = flags.host

    if flags.zerver_dir is not None:
        settings["api_dir"] = flags.zerver_dir

    settings["manifests"] = [*settings["manifests"], *flags.manifests]

    if flags.directory is not None:
        settings["cwd"] = (base_dir / flags.directory).resolve()


def resolve_config(
    flags: FlagOverrides | None = None,
    *,
    env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> ConfigSnapshot:
    """Merge defaults, environment and flags into one immutable snapshot.

    Args:
        flags: Command-line layer (defaults to no flags)
        env: Environment mapping (defaults to ``os.environ``)
        base_dir: Directory the positional argument is relative to
            (defaults to the process's current directory)

    Raises:
        BadParameter: If the ``--port`` flag is not a positive integer
    """
    if flags is None:
        flags = FlagOverrides()
    if env is None:
        env = os.environ
    if base_dir is None:
        base_dir = Path.cwd()

    settings = _default_settings(env, base_dir)

    raw = env.get(ENV_CONFIG_VAR)
    if raw:
        settings.update(parse_env_config(raw))

    _apply_flags(settings, flags, base_dir)

    return ConfigSnapshot(**settings)
