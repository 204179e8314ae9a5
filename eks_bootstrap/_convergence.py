"""Poll an external status value until it becomes non-empty."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ._errors import ConvergenceTimeout

logger = logging.getLogger(__name__)


def wait_for_value(
    probe: Callable[[], str | None],
    *,
    description: str,
    interval: float = 5.0,
    timeout: float | None = None,
    sleep: Callable[[float], object] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Call *probe* every *interval* seconds until it returns a non-empty value.

    With ``timeout=None`` the wait is unbounded and only process termination
    ends it. Otherwise :class:`ConvergenceTimeout` is raised once the next
    attempt would start after the deadline.

    Parameters
    ----------
    probe
        Returns the current status value; empty or ``None`` means not ready.
    description
        Human-readable name of the value, used in the timeout message.
    interval
        Seconds to sleep between attempts.
    timeout
        Upper bound in seconds, or ``None`` to wait indefinitely.
    sleep, clock
        Injection points for tests.

    Examples
    --------
    >>> values = iter(["", "", "lb.example.com"])
    >>> wait_for_value(lambda: next(values), description="ingress", sleep=lambda _: None)
    'lb.example.com'
    """

    deadline = None if timeout is None else clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        value = probe()
        if value:
            logger.debug("%s converged after %d attempt(s)", description, attempts)
            return value
        if deadline is not None and clock() + interval > deadline:
            msg = f"Timed out after {timeout}s waiting for {description}"
            raise ConvergenceTimeout(msg)
        sleep(interval)
