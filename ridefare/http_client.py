"""Bounded-retry HTTP GET used by the geocoder and router clients."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import requests

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="http_client")

DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_RETRIES = 2


class ResilientFetcher:
    """GET with a per-attempt timeout and up to `max_retries` immediate retries.

    Only transport failures (timeouts, connection errors) are retried; any HTTP
    response, including non-2xx, is returned to the caller. There is no delay
    between attempts.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.headers = {"User-Agent": user_agent} if user_agent else {}

    def fetch(self, url: str, params: Optional[Mapping[str, Any]] = None) -> requests.Response:
        """Return the first response received; re-raise the last error when every attempt fails."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.session.get(url, params=params, headers=self.headers, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == attempts:
                    logger.error(
                        "Request failed after retries",
                        extra={"url": url, "attempts": attempts, "error": str(exc)},
                    )
                    raise
                logger.warning(
                    "Request attempt failed; retrying",
                    extra={"url": url, "attempt": attempt, "error": str(exc)},
                )
        raise AssertionError("unreachable")  # pragma: no cover
