"""Exception hierarchy for the EKS platform bootstrap.

Every failure the orchestrator reports derives from :class:`BootstrapError`
so the CLI can translate any of them into a diagnostic and exit status ``1``
at a single point.

Exceptions
----------
BootstrapError
ConfigurationError
ConfigNotFound
PrerequisiteMissing
CollaboratorCallFailure
StackOutputError
ConvergenceTimeout
StepOrderError
MissingContextKey
"""

from __future__ import annotations


class BootstrapError(Exception):
    """Base error for bootstrap orchestration."""


class ConfigurationError(BootstrapError):
    """Raised when a required configuration fact is missing or invalid."""


class ConfigNotFound(ConfigurationError):
    """Raised when a referenced configuration file does not exist."""


class PrerequisiteMissing(BootstrapError):
    """Raised when an external resource the run depends on does not exist."""


class CollaboratorCallFailure(BootstrapError):
    """Raised when an external command exits with a failure status.

    Parameters
    ----------
    command
        Name of the tool that failed (``aws``, ``eksctl``, ...).
    return_code
        Exit status reported by the tool.
    stderr
        Captured standard error, surfaced verbatim.

    Examples
    --------
    >>> str(CollaboratorCallFailure("kubectl", 1, "boom"))
    "Command 'kubectl' failed (exit 1): boom"
    """

    def __init__(self, command: str, return_code: int | None, stderr: str) -> None:
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        super().__init__(
            f"Command {command!r} failed (exit {return_code}): {stderr.strip()}"
        )


class StackOutputError(BootstrapError):
    """Raised when a stack output is missing or matches more than one stack."""


class ConvergenceTimeout(BootstrapError):
    """Raised when a polled status value stays empty past its deadline."""


class StepOrderError(BootstrapError):
    """Raised when a step reads a context key no earlier step writes."""


class MissingContextKey(BootstrapError, KeyError):
    """Raised when a run context key is read before any step produced it."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
