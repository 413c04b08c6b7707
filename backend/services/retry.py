"""Retry policy for upstream HTTP calls."""

import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


def is_retryable(error: Optional[Exception] = None, response: Optional[requests.Response] = None) -> bool:
    """Network errors and 5xx responses are transient; everything else is not."""
    if error is not None:
        return isinstance(error, (requests.ConnectionError, requests.Timeout))
    if response is not None:
        return 500 <= response.status_code <= 599
    return False


class RetryPolicy:
    """Exponential backoff around a single HTTP call.

    Delays follow ``base_delay * 2 ** (attempt - 1)``, so the defaults wait
    1s, 2s and 4s before giving up.
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0,
                 retryable: Callable = is_retryable, sleep: Callable = time.sleep):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.retryable = retryable
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    def call(self, send: Callable[[], requests.Response], description: str = "request") -> requests.Response:
        """Run ``send`` until it returns a non-retryable response.

        Network errors that survive every retry are re-raised. A 5xx response
        that survives every retry is returned so the caller can report it.
        """
        attempt = 0
        while True:
            try:
                response = send()
            except requests.RequestException as e:
                if not self.retryable(error=e) or attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.delay_for(attempt)
                logger.warning(f"{description} failed ({e}), retry {attempt}/{self.max_retries} in {delay:.1f}s")
                self.sleep(delay)
                continue

            if response.status_code == 429:
                retry_after = response.headers.get("retry-after", "unknown")
                logger.warning(f"{description} rate limited, retry after {retry_after}s")
                return response

            if self.retryable(response=response) and attempt < self.max_retries:
                attempt += 1
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} returned {response.status_code}, "
                    f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self.sleep(delay)
                continue

            return response
