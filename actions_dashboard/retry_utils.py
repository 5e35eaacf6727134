"""Backoff and retry for outbound HTTP calls (GitHub, Mistral).

Transient failures -- connection resets, timeouts, 429 and 5xx gateway
statuses -- are retried with exponential backoff plus jitter.  Everything
else is handed back to the caller untouched so it can map the status onto
its own error type.
"""

from __future__ import annotations

import logging
import random
import time

import requests

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY = 1.0
MAX_JITTER = 0.5
MAX_RETRY_AFTER = 30.0
RETRY_STATUSES = (429, 500, 502, 503, 504)


def backoff_delay(attempt: int, base: float = BASE_DELAY, max_jitter: float = MAX_JITTER) -> float:
    """``base * 2^(attempt-1) + uniform(0, max_jitter)``: about 1s, 2s, 4s with defaults."""
    return base * (2 ** (attempt - 1)) + random.uniform(0, max_jitter)


def _retry_after(resp: requests.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if not value:
        return None
    try:
        return min(float(value), MAX_RETRY_AFTER)
    except ValueError:
        return None


def request_with_retry(
    method: str,
    url: str,
    *,
    session: requests.Session | None = None,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY,
    retry_statuses: tuple[int, ...] = RETRY_STATUSES,
    sleep=time.sleep,
    **kwargs,
) -> requests.Response:
    """Send a request, retrying transient failures.

    The last response is returned even if its status is retryable, so the
    caller sees the real status once attempts run out.  Network errors on
    the final attempt propagate.  ``Retry-After`` is honoured (capped) when
    the server sends it.  ``kwargs`` go straight to ``requests``.
    """
    send = session.request if session is not None else requests.request
    for attempt in range(1, max_attempts + 1):
        try:
            resp = send(method, url, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            if attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "%s %s failed (%s); retry %d/%d in %.1fs",
                method, url, exc, attempt, max_attempts - 1, delay,
            )
            sleep(delay)
            continue

        if resp.status_code in retry_statuses and attempt < max_attempts:
            delay = _retry_after(resp)
            if delay is None:
                delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "%s %s returned %d; retry %d/%d in %.1fs",
                method, url, resp.status_code, attempt, max_attempts - 1, delay,
            )
            sleep(delay)
            continue
        return resp

    raise RuntimeError("request_with_retry: max_attempts must be >= 1")
