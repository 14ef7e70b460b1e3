"""
Bounded fixed-interval polling.

Every wait in the tool (deployment availability, load balancer address,
driver pods, namespace deletion) goes through ``wait_until``. Callers decide
whether running out of attempts is fatal (``raise_on_timeout=True``) or
advisory (``None`` is returned and the caller logs a warning).
"""

import logging
import math
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from .exceptions import WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_until(
    predicate: Callable[[], Optional[T]],
    *,
    interval: float,
    description: str,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    raise_on_timeout: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[T]:
    """
    Poll ``predicate`` until it returns a truthy value.

    Args:
        predicate: Zero-argument callable. Exceptions it raises propagate.
        interval: Seconds to sleep between attempts.
        description: Human readable name of the awaited state.
        timeout: Wall-clock bound in seconds.
        max_attempts: Attempt bound. Derived from ``timeout`` when omitted.
        on_attempt: Called with the attempt number after each miss.
        raise_on_timeout: Raise ``WaitTimeoutError`` instead of returning None.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The first truthy predicate result, or None when the bound is hit.
    """
    if timeout is None and max_attempts is None:
        raise ValueError("wait_until needs a timeout or max_attempts bound")
    if max_attempts is None:
        max_attempts = max(1, math.ceil(timeout / interval)) if interval else 1

    stop = stop_after_attempt(max_attempts)
    if timeout is not None:
        stop = stop | stop_after_delay(timeout)

    def _after(retry_state) -> None:
        logger.debug(
            "Waiting for %s (attempt %d/%d)",
            description,
            retry_state.attempt_number,
            max_attempts,
        )
        if on_attempt:
            on_attempt(retry_state.attempt_number)

    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not result),
        after=_after,
        sleep=sleep,
    )
    try:
        return retrying(predicate)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        if raise_on_timeout:
            raise WaitTimeoutError(description, attempts) from None
        logger.debug("Gave up waiting for %s after %d attempts", description, attempts)
        return None
