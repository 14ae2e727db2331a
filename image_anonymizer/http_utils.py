"""
HTTP helpers shared by the Google API clients.

Transient failures (connection errors, timeouts, 429 and 5xx responses) are
retried with exponential backoff; everything else is raised to the caller.
"""

import logging
import threading
from typing import Any, Dict, Optional

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class HTTPStatusError(Exception):
    """Raised when a service answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


class TransientHTTPError(HTTPStatusError):
    """Non-2xx status worth retrying (rate limiting or server error)."""


class ThreadLocalSession:
    """Hands out one requests.Session per thread; sessions are not thread-safe."""

    def __init__(self):
        self._local = threading.local()

    def get(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session


_RETRYABLE = (
    requests.ConnectionError,
    requests.Timeout,
    TransientHTTPError,
)


def _post_once(
    session: requests.Session,
    url: str,
    payload: Dict[str, Any],
    params: Optional[Dict[str, str]],
    timeout: float
) -> Dict[str, Any]:
    response = session.post(url, params=params, json=payload, timeout=timeout)

    if response.status_code == 429 or response.status_code >= 500:
        raise TransientHTTPError(response.status_code, response.text)
    if not 200 <= response.status_code < 300:
        raise HTTPStatusError(response.status_code, response.text)

    text = response.text
    if len(text) > 1000:
        logger.debug("Response text (first 1000 chars): %s", text[:1000])
        logger.debug("Response text length: %d", len(text))
    else:
        logger.debug("Response text: %s", text)

    return response.json()


def post_json(
    session: requests.Session,
    url: str,
    payload: Dict[str, Any],
    params: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    max_retries: int = 3
) -> Dict[str, Any]:
    """
    POST a JSON payload and return the decoded JSON body.

    Args:
        session: Requests session to send with
        url: Endpoint URL
        payload: JSON-serializable request body
        params: Optional query parameters (API key)
        timeout: Per-attempt timeout in seconds
        max_retries: Total attempts for transient failures

    Returns:
        Decoded JSON response

    Raises:
        requests.RequestException: Connection problems after the last attempt
        HTTPStatusError: Non-2xx status (after retries for transient ones)
        ValueError: Response body is not valid JSON
    """
    retryer = Retrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_RETRYABLE),
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return retryer(_post_once, session, url, payload, params, timeout)
