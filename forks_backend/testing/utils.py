"""Shared test utilities to avoid duplication across test files."""

from collections.abc import Callable

from tenacity import RetryError, Retrying, stop_after_delay, wait_fixed


def wait_until(predicate: Callable[[], bool], *, timeout_seconds: float = 5.0, interval_seconds: float = 0.05) -> bool:
    """Poll `predicate` until it returns True or timeout elapses.

    Returns True if the condition became true within the timeout; False otherwise.
    """

    def _check() -> bool:
        result = predicate()
        if not result:
            raise RuntimeError("predicate not yet true")
        return result

    try:
        Retrying(stop=stop_after_delay(timeout_seconds), wait=wait_fixed(interval_seconds), reraise=True)(_check)
        return True
    except (RetryError, RuntimeError):
        return False
