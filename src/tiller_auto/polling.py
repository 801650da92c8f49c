"""Bounded retry loops.

Every wait in tiller-auto goes through one of these helpers. The deadline
is computed once, on entry, from a monotonic clock; the interval and the
maximum wait are explicit arguments.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from icecream import ic

from tiller_auto.exceptions import WaitTimeoutError

T = TypeVar("T")


def _sleep_until_next_attempt(deadline: float, interval: float) -> bool:
    """Sleep for one interval, capped at the deadline.

    Returns:
        False if the deadline has already passed, True otherwise.

    """
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        return False
    time.sleep(min(interval, remaining))
    return True


def wait_until(
    condition: Callable[[], bool],
    *,
    resource: str,
    max_wait: float,
    interval: float,
) -> float:
    """Poll ``condition`` until it returns True or ``max_wait`` elapses.

    The condition is evaluated at least once.

    Args:
        condition: Callable returning True when the wait is over.
        resource: Description of what is being waited on, for errors.
        max_wait: Maximum number of seconds to wait.
        interval: Seconds between evaluations.

    Returns:
        The number of seconds spent waiting.

    Raises:
        WaitTimeoutError: If the condition never became true.

    """
    started = time.monotonic()
    deadline = started + max_wait

    while True:
        if condition():
            return time.monotonic() - started
        if not _sleep_until_next_attempt(deadline, interval):
            raise WaitTimeoutError(resource, time.monotonic() - started)


def retry_until(
    attempt: Callable[[], T],
    *,
    max_wait: float,
    interval: float,
) -> T:
    """Call ``attempt`` until it succeeds or ``max_wait`` elapses.

    A failing attempt is retried after ``interval`` seconds.

    Args:
        attempt: Callable to invoke.
        max_wait: Maximum number of seconds to keep retrying.
        interval: Seconds between attempts.

    Returns:
        The value returned by the first successful attempt.

    Raises:
        Exception: The error of the last attempt once the deadline passed.

    """
    deadline = time.monotonic() + max_wait
    attempts = 0

    while True:
        attempts += 1
        try:
            return attempt()
        except Exception as e:
            ic(attempts, e)
            if not _sleep_until_next_attempt(deadline, interval):
                raise
