from __future__ import annotations

import logging
import time
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from declarant.config import http_timeout
from declarant.errors import ProviderResponseError

logger = logging.getLogger(__name__)

THROTTLED_STATUS_CODE = 429


def decode_payload(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def build_retrying_session(total: int = 5, backoff_factor: float = 1.0) -> requests.Session:
    """Session whose transport waits out 429 answers, honouring Retry-After."""
    session = requests.Session()
    retry_strategy = Retry(
        total=total,
        status_forcelist=[THROTTLED_STATUS_CODE],
        backoff_factor=backoff_factor,
        # the token exchange is a POST
        allowed_methods=None,
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def retry_after_seconds(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class JsonHttpClient:
    """Thin JSON wrapper around a requests session.

    Any non-2xx answer raises ProviderResponseError with the remote body as payload.
    A 429 is retried ``throttle_retries`` times before being raised.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        throttle_retries: int = 0,
        throttle_backoff: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.headers = dict(headers or {})
        self.params = dict(params or {})
        self.timeout = timeout if timeout is not None else http_timeout()
        self.throttle_retries = throttle_retries
        self.throttle_backoff = throttle_backoff
        self.sleep = time.sleep

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        params = {**self.params, **(kwargs.pop("params", None) or {})}
        headers = {**self.headers, **(kwargs.pop("headers", None) or {})}
        attempt = 0
        while True:
            response = self.session.request(
                method,
                self.url(path),
                params=params or None,
                headers=headers or None,
                timeout=self.timeout,
                **kwargs,
            )
            if response.status_code != THROTTLED_STATUS_CODE or attempt >= self.throttle_retries:
                break
            delay = retry_after_seconds(response)
            if delay is None:
                delay = self.throttle_backoff * 2**attempt
            attempt += 1
            logger.info("throttled on %s %s, retrying in %.1fs", method, path, delay)
            self.sleep(delay)
        if not 200 <= response.status_code < 300:
            raise ProviderResponseError(response.status_code, decode_payload(response))
        return response

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params).json()

    def post_json(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs).json()
