import asyncio
import json
import time
from typing import Any, Dict, Optional

import requests
from loguru import logger

from onramp.config import HTTP_TIMEOUT
from onramp.utils.retry_utils import RetryPolicy, retry_async


class ApiClientError(Exception):
    """Base exception for API client errors."""
    pass


class ApiTimeoutError(ApiClientError):
    """Exception raised when an API request times out."""
    pass


class ApiBadResponseError(ApiClientError):
    """Exception raised when the API returns a non-2xx status code."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def is_retryable_client_error(error: BaseException) -> bool:
    """
    Classify a client error for retry.

    Rejections of the request itself (4xx other than 429) are not retried.
    """
    if isinstance(error, ApiBadResponseError):
        return not (400 <= error.status_code < 500) or error.status_code == 429
    return isinstance(error, (ApiClientError, asyncio.TimeoutError))


class ApiClient:
    """Base client for the JSON HTTP APIs the backend talks to."""

    def __init__(self, base_url: str, timeout: float = HTTP_TIMEOUT, headers: Optional[Dict[str, str]] = None):
        """
        Initialize the API client.

        Args:
            base_url: The base URL for the API
            timeout: Request timeout in seconds
            headers: Headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if headers:
            self.session.headers.update(headers)

    def _make_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (get, post, etc.)
            endpoint: API endpoint, appended to the base URL
            **kwargs: Additional arguments to pass to requests

        Returns:
            The JSON response data

        Raises:
            ApiTimeoutError: If the request times out
            ApiBadResponseError: If the API returns a non-2xx status code
            ApiClientError: For connection failures and unparseable bodies
        """
        url = f"{self.base_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)

        start_time = time.time()

        try:
            logger.debug(
                f"Making {method.upper()} request to {url}",
                extra={"method": method, "url": url, "params": kwargs.get("params")}
            )

            response = self.session.request(method.upper(), url, **kwargs)
            elapsed = time.time() - start_time

            logger.debug(
                f"Received response from {endpoint or url} in {elapsed:.2f}s",
                extra={
                    "status_code": response.status_code,
                    "elapsed_time": elapsed,
                    "payload_size": len(response.content),
                }
            )

            if not 200 <= response.status_code < 300:
                logger.error(
                    f"API error: {response.status_code} {response.text[:500]}",
                    extra={"status_code": response.status_code, "url": url}
                )
                raise ApiBadResponseError(
                    f"API returned {response.status_code}: {response.text[:500]}",
                    status_code=response.status_code,
                    body=response.text,
                )

            try:
                return response.json()
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse JSON response from {url}: {str(e)}")
                raise ApiClientError(f"Failed to parse JSON response: {str(e)}")

        except requests.exceptions.Timeout:
            logger.error(
                f"Request to {url} timed out after {kwargs['timeout']}s",
                extra={"url": url, "timeout": kwargs["timeout"]}
            )
            raise ApiTimeoutError(f"Request to {url} timed out")

        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {url} failed: {str(e)}", extra={"url": url, "error": str(e)})
            raise ApiClientError(f"Request failed: {str(e)}")

    async def _request_async(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        Run `_make_request` off the event loop, cancelled after the timeout.
        """
        return await asyncio.wait_for(
            asyncio.to_thread(self._make_request, method, endpoint, **kwargs),
            timeout=self.timeout,
        )

    async def _request_with_retry_async(
        self,
        method: str,
        endpoint: str,
        policy: Optional[RetryPolicy] = None,
        **kwargs,
    ) -> Any:
        """
        Async request with capped exponential backoff on transport and server errors.

        Raises:
            ApiClientError: If every attempt fails, or at once on a 4xx response
        """
        policy = policy or RetryPolicy(timeout=self.timeout)
        return await retry_async(
            lambda: self._request_async(method, endpoint, **kwargs),
            policy=policy,
            is_retryable=is_retryable_client_error,
            description=f"{method.upper()} {self.base_url}{endpoint}",
        )

    def close(self):
        self.session.close()
