"""Shared async HTTP plumbing for the source and target clients.

Requests are throttled per client, logged as structured events, and any
status >= 400 is turned into the matching APIError subclass before the
caller sees the response.
"""

import asyncio
import time
from typing import Any

import httpx

from cms_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from cms_migration.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)

logger = get_logger(__name__)

ERRORS_BY_STATUS: dict[int, tuple[type[APIError], str]] = {
    401: (AuthenticationError, "Authentication failed"),
    403: (AuthorizationError, "Authorization failed"),
    404: (NotFoundError, "Resource not found"),
    409: (ConflictError, "Resource conflict (may already exist)"),
}


def error_message(body: dict[str, Any]) -> str:
    """First readable message in a JSON:API, collection API or plain error body."""
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict):
            return str(first.get("detail") or first.get("message") or first.get("title") or first)
        return str(first)
    return str(body.get("detail", body.get("message", "Unknown error")))


def error_for_response(response: httpx.Response) -> APIError:
    """Exception describing an error response."""
    try:
        body = response.json()
    except ValueError:
        body = {"detail": response.text}
    if not isinstance(body, dict):
        body = {"detail": str(body)}

    status = response.status_code
    if status in ERRORS_BY_STATUS:
        error_cls, message = ERRORS_BY_STATUS[status]
        return error_cls(message, status_code=status, response=body)
    if status == 429:
        retry_after = response.headers.get("Retry-After", "")
        return RateLimitError(
            "Rate limit exceeded",
            status_code=status,
            response=body,
            retry_after=int(retry_after) if retry_after.isdigit() else None,
        )
    if status >= 500:
        message = f"Server error: {error_message(body)}"
        return ServerError(message, status_code=status, response=body)
    return APIError(f"API error: {error_message(body)}", status_code=status, response=body)


class RequestThrottle:
    """Spaces consecutive requests at least ``1 / rate`` seconds apart (0 disables)."""

    def __init__(self, rate: float):
        self.interval = 1.0 / rate if rate > 0 else 0.0
        self._lock = asyncio.Lock()
        self._last = 0.0

    async def wait(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            delay = self._last + self.interval - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


class BaseAPIClient:
    """Pooled ``httpx.AsyncClient`` with throttling and error mapping.

    Authentication comes from the subclass or caller as extra headers, an
    ``httpx.Auth`` or cookies. ``transport`` lets tests replace the network.
    """

    accept = "application/json"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
        cookies: dict[str, str] | None = None,
        verify_ssl: bool = True,
        timeout: int = 30,
        rate_limit: int = 10,
        force_ipv4: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
    ):
        self.base_url = base_url.rstrip("/")
        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size
        self.throttle = RequestThrottle(rate_limit)

        if transport is None and force_ipv4:
            # binding to the IPv4 wildcard keeps resolution off IPv6
            transport = httpx.AsyncHTTPTransport(local_address="0.0.0.0", verify=verify_ssl)

        # Content-Type is left to httpx so JSON, form and multipart bodies each get theirs
        self.client = httpx.AsyncClient(
            headers={"Accept": self.accept, **(headers or {})},
            auth=auth,
            cookies=cookies,
            timeout=httpx.Timeout(timeout, connect=10.0),
            verify=verify_ssl,
            transport=transport,
            follow_redirects=True,
        )
        logger.debug("client_initialized", client=type(self).__name__, base_url=self.base_url)

    def url_for(self, endpoint: str) -> str:
        """Absolute URLs pass through; anything else hangs off ``base_url``."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _log_payload(self, event: str, payload: Any, **fields: Any) -> None:
        if payload is not None and should_log_payloads(logger, self.log_payloads):
            logger.debug(
                event,
                payload=truncate_payload(sanitize_payload(payload), self.max_payload_size),
                **fields,
            )

    async def send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | list[Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and return the raw response.

        Raises:
            NetworkError: On timeouts and transport failures
            APIError: Or a subclass, for any status >= 400
        """
        url = self.url_for(endpoint)
        await self.throttle.wait()
        self._log_payload("api_request_payload", json_data, method=method, url=url)

        started = time.monotonic()
        try:
            response = await self.client.request(
                method, url, params=params, json=json_data, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.error("request_timeout", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.error("request_transport_failed", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        if response.status_code >= 400:
            raise error_for_response(response)
        return response

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | list[Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON body (``{}`` when empty)."""
        response = await self.send(method, endpoint, params=params, json_data=json_data, **kwargs)
        if not response.content:
            return {}
        data = response.json()
        self._log_payload(
            "api_response_payload", data, url=str(response.url), status_code=response.status_code
        )
        return data

    async def get(
        self, endpoint: str, params: dict[str, Any] | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(
        self,
        endpoint: str,
        json_data: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return await self.request("POST", endpoint, params=params, json_data=json_data, **kwargs)

    async def close(self) -> None:
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
