from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from config import get_settings
from core.services.exceptions import classify_rpc_error

T = TypeVar("T")

logger = logging.getLogger(__name__)


def call_with_retry(
    fn: Callable[[], T],
    *,
    max_retries: Optional[int] = None,
    base_delay_sec: Optional[float] = None,
    label: str = "rpc",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `fn`, retrying only errors classified as retryable.

    Backoff doubles on every attempt: base, 2*base, 4*base...
    Non-retryable errors (reverts, bad params) are raised on the first failure.
    Exhausted retries raise the last classified error.
    """
    s = get_settings()
    attempts = int(max_retries if max_retries is not None else s.RPC_MAX_RETRIES)
    delay = float(base_delay_sec if base_delay_sec is not None else s.RPC_BASE_DELAY_SEC)
    attempts = max(1, attempts)

    for i in range(attempts):
        try:
            return fn()
        except Exception as exc:
            err = classify_rpc_error(exc)
            if not err.retryable or i == attempts - 1:
                if err is exc:
                    raise
                raise err from exc
            logger.warning(
                "%s: transient error (%s), retry %d/%d in %.1fs",
                label, err.msg, i + 1, attempts - 1, delay,
            )
            sleep(delay)
            delay *= 2

    raise RuntimeError("unreachable")  # pragma: no cover
