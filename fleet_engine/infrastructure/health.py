# fleet_engine/infrastructure/health.py
"""HTTP readiness probe for freshly restarted backends."""

import logging
import time
from typing import Callable

import requests

logger = logging.getLogger(__name__)


class HttpHealthProbe:

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        retries: int = 5,
        interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        session: requests.Session = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._session = session or requests.Session()

    def check(self, url: str) -> bool:
        """True once ``url`` answers 2xx/3xx within the retry budget."""
        for attempt in range(1, self.retries + 1):
            try:
                response = self._session.get(url, timeout=self.timeout_seconds)
                if 200 <= response.status_code < 400:
                    logger.info(f"[health] {url} OK ({response.status_code})")
                    return True
                logger.warning(f"[health] {url} returned {response.status_code} (attempt {attempt})")
            except requests.exceptions.RequestException as e:
                logger.warning(f"[health] {url} error: {e} (attempt {attempt})")

            if attempt < self.retries:
                self._sleep(self.interval_seconds)

        return False
