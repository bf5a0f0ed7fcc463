"""HTTP client utilities with retry and connection pooling.

Purpose: one place for how the board talks HTTP to the queue backend.

Pattern: requests.Session with urllib3 retries for HTTP-level failures,
tenacity retries with exponential backoff for connection-level failures,
and a circuit breaker in front of the whole thing.

Client errors (4xx other than 429) are never retried: a rejected lane
transition is an answer, not an outage.
"""
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.util.retry import Retry

from queueboard import config
from queueboard.circuit_breaker import CircuitBreaker
from queueboard.logging_config import generate_request_id

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = [429, 500, 502, 503, 504]


def is_retryable(exc: BaseException) -> bool:
    """Connection problems, timeouts and server-side HTTP errors are retryable."""
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError):
        response = exc.response
        return response is None or response.status_code in RETRY_STATUS_CODES
    return False


def create_http_session(
    max_retries: int = config.HTTP_MAX_RETRIES,
    backoff_factor: float = 1.0,
    timeout: float = config.HTTP_TIMEOUT_SECONDS,
    clinic_id: Optional[str] = None,
    wait=None,
) -> requests.Session:
    """
    Create HTTP session with retry and connection pooling.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        backoff_factor: urllib3 backoff multiplier
        timeout: Default per-request timeout in seconds
        clinic_id: Sent as X-Clinic-ID on every request
        wait: tenacity wait strategy (default: exponential 1s, 2s, 4s ... max 8s)

    Returns:
        Configured requests.Session whose get/post/patch/delete retry and
        raise for non-2xx responses
    """
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    if clinic_id:
        session.headers["X-Clinic-ID"] = clinic_id

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=["GET", "POST", "PATCH", "DELETE"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        max_retries=retry_strategy,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    if wait is None:
        wait = wait_exponential(multiplier=1, min=1, max=8)

    def with_retry(send):
        @retry(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait,
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def send_with_retry(*args, **kwargs):
            kwargs.setdefault("timeout", timeout)
            headers = dict(kwargs.pop("headers", None) or {})
            headers.setdefault("X-Request-ID", generate_request_id())
            response = send(*args, headers=headers, **kwargs)
            response.raise_for_status()
            return response

        return send_with_retry

    session.get = with_retry(session.get)
    session.post = with_retry(session.post)
    session.patch = with_retry(session.patch)
    session.delete = with_retry(session.delete)

    return session


def api_call_with_protection(
    session: requests.Session,
    breaker: CircuitBreaker,
    method: str,
    url: str,
    **kwargs,
) -> requests.Response:
    """
    Make API call with circuit breaker protection.

    Only retryable failures count against the breaker; a 4xx answer means
    the backend is up.

    Raises:
        CircuitBreakerOpen: If circuit is open
        requests.exceptions.*: If request fails
        ValueError: For unsupported methods
    """
    senders = {
        "GET": session.get,
        "POST": session.post,
        "PATCH": session.patch,
        "DELETE": session.delete,
    }
    send = senders.get(method.upper())
    if send is None:
        raise ValueError(f"Unsupported HTTP method: {method}")

    client_error = []

    def make_request():
        try:
            return send(url, **kwargs)
        except requests.exceptions.HTTPError as e:
            if is_retryable(e):
                raise
            client_error.append(e)
            return None

    response = breaker.call(make_request)
    if client_error:
        raise client_error[0]
    return response
