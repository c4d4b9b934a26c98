"""Timeout-bounded polling shared by every readiness wait.

A wait is a tiny state machine: it starts *waiting*, becomes *ready* as soon
as a check result satisfies the predicate, and *times out* once the elapsed
time reaches the timeout. Between checks it sleeps a fixed interval.

Example:
    state = poll_until(
        lambda: describe_state(instance_id),
        lambda s: s == "running",
        timeout=300,
        interval=5,
        resource_id=instance_id,
        waiting_for="running",
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from tenacity import RetryCallState, RetryError, Retrying, retry_if_result, wait_fixed

from ec2cli.exceptions import ReadinessTimeoutError

log = logger.bind(component="polling")

type Clock = Callable[[], float]
type Sleep = Callable[[float], None]


def poll_until[T](
    check: Callable[[], T],
    ready: Callable[[T], bool],
    *,
    timeout: float,
    interval: float,
    resource_id: str,
    waiting_for: str,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> T:
    """Call ``check`` until ``ready(result)`` holds or ``timeout`` elapses.

    Exceptions raised by ``check`` are not retried; they propagate unchanged.

    Args:
        check: Queries the provider and returns the observed status.
        ready: Predicate over the observed status.
        timeout: Maximum seconds to keep polling.
        interval: Fixed seconds to sleep between checks.
        resource_id: Resource being waited on (for errors and logs).
        waiting_for: Human readable target state (for errors and logs).
        clock: Monotonic time source.
        sleep: Sleep function.

    Returns:
        The first check result satisfying ``ready``.

    Raises:
        ReadinessTimeoutError: If ``timeout`` elapses first.
    """
    started = clock()

    def _timed_out(_: RetryCallState) -> bool:
        return clock() - started >= timeout

    def _log_tick(state: RetryCallState) -> None:
        observed = state.outcome.result() if state.outcome else None
        log.debug(
            "{resource_id} not {waiting_for} yet (attempt {n}, observed={observed})",
            resource_id=resource_id,
            waiting_for=waiting_for,
            n=state.attempt_number,
            observed=observed,
        )

    retrying = Retrying(
        stop=_timed_out,
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not ready(result)),
        before_sleep=_log_tick,
        sleep=sleep,
    )

    try:
        return retrying(check)
    except RetryError as e:
        raise ReadinessTimeoutError(resource_id, waiting_for, timeout) from e
