"""Command helpers for driving the external collaborator CLIs.

All collaborators (``aws``, ``eksctl``, ``kubectl``, ``cdk`` and the platform
installer) are invoked through :func:`run_command` or :func:`probe_command`.
The former raises on any failure; the latter separates "the resource does not
exist" from "the call failed" by matching the tool's not-found markers.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from ._errors import CollaboratorCallFailure

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    stdin: str | None = None
    cwd: Path | None = None
    timeout: int | None = None


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of an existence probe.

    Examples
    --------
    >>> ProbeResult(found=False).stdout
    ''
    """

    found: bool
    stdout: str = ""


def build_tool_env(**overrides: str | None) -> dict[str, str]:
    """Return a copy of the process environment with *overrides* applied.

    ``None`` values remove the key so an unset profile does not leak through.

    Examples
    --------
    >>> build_tool_env(KUBECONFIG="/tmp/kc")["KUBECONFIG"]
    '/tmp/kc'
    """

    env = os.environ.copy()
    for key, value in overrides.items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env


def _execute(
    command: str,
    args: tuple[str, ...],
    ctx: CommandContext,
) -> tuple[int, str, str]:
    # Only the tool and subcommand are logged; arguments may carry secrets.
    logger.debug("running %s %s", command, args[0] if args else "")
    try:
        bound = local[command][list(args)]
    except CommandNotFound as exc:
        raise CollaboratorCallFailure(command, None, "executable not found on PATH") from exc
    if ctx.stdin is not None:
        bound = bound << ctx.stdin
    kwargs: dict[str, object] = {"retcode": None, "timeout": ctx.timeout}
    if ctx.env is not None:
        kwargs["env"] = ctx.env
    if ctx.cwd is not None:
        kwargs["cwd"] = str(ctx.cwd)
    try:
        return_code, stdout, stderr = bound.run(**kwargs)
    except ProcessTimedOut as exc:
        msg = f"timed out after {ctx.timeout}s"
        raise CollaboratorCallFailure(command, None, msg) from exc
    return return_code, stdout, stderr


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Execute an external command and return its standard output.

    Examples
    --------
    >>> run_command('printf', 'hello')
    'hello'
    """

    ctx = context or CommandContext()
    return_code, stdout, stderr = _execute(command, args, ctx)
    if return_code != 0:
        raise CollaboratorCallFailure(command, return_code, stderr)
    return stdout


def probe_command(
    command: str,
    *args: str,
    not_found: Iterable[str],
    context: CommandContext | None = None,
) -> ProbeResult:
    """Run an existence check, treating only *not_found* markers as absence.

    A non-zero exit whose stderr contains one of the *not_found* markers
    (case-insensitive) yields ``ProbeResult(found=False)``. Any other failure
    raises :class:`CollaboratorCallFailure` so transient faults are never
    mistaken for a missing resource.

    Examples
    --------
    >>> probe_command('sh', '-c', 'echo NoSuchEntity >&2; exit 254', not_found=['NoSuchEntity'])
    ProbeResult(found=False, stdout='')
    """

    ctx = context or CommandContext()
    return_code, stdout, stderr = _execute(command, args, ctx)
    if return_code == 0:
        return ProbeResult(found=True, stdout=stdout)
    lowered = stderr.lower()
    if any(marker.lower() in lowered for marker in not_found):
        return ProbeResult(found=False)
    raise CollaboratorCallFailure(command, return_code, stderr)


__all__ = [
    "CommandContext",
    "ProbeResult",
    "build_tool_env",
    "probe_command",
    "run_command",
]
