"""Common utilities and types for terraformer orchestration."""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5


class WaitTimeoutError(Exception):
    """Raised when a polled condition is not met before its deadline."""

    def __init__(self, timeout: float, what: str = 'condition'):
        self.timeout = timeout
        self.what = what
        super().__init__(f"Timed out after {timeout}s waiting for {what}")


@dataclass
class ActionResult:
    """Result returned by an action."""
    success: bool
    message: str = ''
    duration: float = 0.0


def wait_until(
    condition: Callable[[], bool],
    interval: float = DEFAULT_INTERVAL,
    timeout: float = 60,
    what: str = 'condition'
) -> None:
    """Poll condition until it returns True.

    The condition is checked immediately, then every `interval` seconds.
    Exceptions raised by the condition abort the wait and propagate.

    Raises:
        WaitTimeoutError: If the condition is still False after `timeout` seconds
    """
    start = time.time()
    while True:
        if condition():
            return
        if time.time() - start >= timeout:
            raise WaitTimeoutError(timeout, what)
        time.sleep(interval)


def retry(
    log: logging.Logger,
    timeout: float,
    condition: Callable[[], bool],
    interval: float = DEFAULT_INTERVAL,
    what: str = 'retry condition'
) -> None:
    """Retry condition on a fixed interval until it succeeds or times out.

    Same contract as wait_until, but logs every unsuccessful attempt and the
    final exhaustion on `log`.
    """
    attempts = 0

    def _attempt() -> bool:
        nonlocal attempts
        attempts += 1
        done = condition()
        if not done:
            log.debug(f"Attempt {attempts} for {what} not successful, retrying in {interval}s...")
        return done

    try:
        wait_until(_attempt, interval=interval, timeout=timeout, what=what)
    except WaitTimeoutError:
        log.error(f"Giving up on {what} after {attempts} attempts ({timeout}s)")
        raise


def merge_maps(base: Optional[dict], override: Optional[dict]) -> dict:
    """Deep-merge two dicts; values from override win.

    Nested dicts are merged recursively, everything else is replaced.
    Neither input is modified.
    """
    result = copy.deepcopy(base) if base else {}
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_maps(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result
