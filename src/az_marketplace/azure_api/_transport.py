"""Authenticated, throttled and retried GET requests against ARM."""

from __future__ import annotations

import logging
from typing import Any

import requests

from az_marketplace.azure_api._auth import TokenProvider
from az_marketplace.azure_api._rate_limit import SlidingWindowRateLimiter
from az_marketplace.azure_api._retry import RetryPolicy
from az_marketplace.errors import NetworkError, ValidationError, classify_http_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class ArmTransport:
    """The raw call under the retry policy: throttle, token, GET, classify.

    Each attempt re-acquires the token and passes through the rate limiter,
    so a retried request is throttled like any other.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        retry: RetryPolicy | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.token_provider = token_provider
        self.retry = retry or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        token = self.token_provider.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def send(self, url: str) -> Any:
        """Issue one GET and return the decoded JSON body (no retries)."""
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

        headers = self._headers()
        try:
            resp = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise NetworkError("Request timed out", original_error=exc) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Network request failed: {exc}", original_error=exc) from exc

        if not resp.ok:
            raise classify_http_status(
                resp.status_code, resp.text, resp.headers.get("Retry-After")
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ValidationError(
                f"Invalid JSON in response from {url}", resp.status_code, exc
            ) from exc

    def get_json(self, url: str) -> Any:
        return self.retry.call(lambda: self.send(url))

    def get_all(self, url: str) -> list[dict]:
        """Fetch every page of an ARM list endpoint and merge the values."""
        items: list[dict] = []
        next_url: str | None = url
        while next_url:
            data = self.get_json(next_url)
            if not isinstance(data, dict) or not isinstance(data.get("value"), list):
                raise ValidationError(f"Invalid response format from {url}")
            items.extend(data["value"])
            next_url = data.get("nextLink")
        return items


def extract_items(data: Any) -> list | None:
    """Return the item list from a bare array or a ``{"value": [...]}`` body."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("value"), list):
        return data["value"]
    return None
