# Overview: Optimistic-concurrency retry for version-checked store updates.

from __future__ import annotations

import logging
import time

from sqlalchemy.orm.exc import StaleDataError


logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a read-compute-write operation, retrying on optimistic locking conflicts.

    Only StaleDataError (another writer bumped version_id first) is retried.
    Timeouts and availability errors propagate untouched.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.debug("Version conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
