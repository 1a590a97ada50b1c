from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

import httpx


LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

# Connection resets and timeouts. PostgREST errors (bad column, constraint) are not retried.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (httpx.TransportError,)


def call_with_retry(
    func: Callable[[], T],
    label: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            last_error = exc
            if attempt >= max_attempts:
                break
            wait_seconds = attempt * base_delay_seconds
            LOGGER.warning(
                "Storage retry op=%s attempt=%s/%s wait=%ss error=%s",
                label,
                attempt,
                max_attempts,
                wait_seconds,
                exc,
            )
            sleep(wait_seconds)
    if last_error is None:
        raise ValueError("max_attempts must be at least 1.")
    raise last_error
