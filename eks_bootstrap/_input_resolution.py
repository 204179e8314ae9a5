"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Blank environment values count as unset, matching how the shell tooling
    this replaces treated ``-z`` checks.

    Examples
    --------
    >>> resolve_input(None, InputResolution(env_key="DOMAIN"), env={"DOMAIN": "x.io"})
    'x.io'
    >>> resolve_input("cli", InputResolution(env_key="DOMAIN"), env={"DOMAIN": "x.io"})
    'cli'
    >>> resolve_input(None, InputResolution(env_key="DOMAIN", default="d"), env={"DOMAIN": ""})
    'd'
    """

    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(resolution.env_key)
    if env_value:
        return Path(env_value) if resolution.as_path else env_value

    return resolution.default


def parse_bool(value: str | bool | None, *, default: bool = True) -> bool:
    """Parse a boolean string value.

    Examples
    --------
    >>> parse_bool("yes")
    True
    >>> parse_bool(None, default=False)
    False
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")
