"""Collection API target client.

This client provides item read/create/update and file upload against a
Directus-style REST API where every response body is wrapped in
``{"data": ...}``.
"""

import json
from typing import Any

import httpx

from cms_migration.client.base_client import BaseAPIClient
from cms_migration.client.exceptions import AuthenticationError
from cms_migration.config import TargetConfig
from cms_migration.utils.logging import get_logger
from cms_migration.utils.retry import RetryPolicy, fetch_policy

logger = get_logger(__name__)

SYSTEM_PREFIX = "directus_"
RETRYABLE_METHODS = frozenset({"GET", "PATCH"})


def _unwrap(body: dict[str, Any]) -> Any:
    return body.get("data") if isinstance(body, dict) else body


def collection_path(collection: str) -> str:
    """Endpoint for a collection; system collections (``directus_users``) have their own."""
    if collection.startswith(SYSTEM_PREFIX):
        return "/" + collection[len(SYSTEM_PREFIX) :]
    return f"/items/{collection}"


class TargetClient(BaseAPIClient):
    """Client for the target collection API.

    Authentication uses the configured static token, or an access token
    obtained from ``POST /auth/login`` on first use.
    """

    def __init__(
        self,
        config: TargetConfig,
        rate_limit: int = 10,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
    ):
        """Initialize target client.

        Args:
            config: Target platform configuration
            rate_limit: Maximum requests per second
            retry_policy: Policy applied to reads and updates
            transport: Custom transport (used by tests)
            log_payloads: Enable request/response payload logging
            max_payload_size: Maximum payload size to log before truncation
        """
        headers = {}
        if config.static_token:
            headers["Authorization"] = f"Bearer {config.static_token}"

        super().__init__(
            base_url=config.url,
            headers=headers,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=rate_limit,
            transport=transport,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
        )
        self.config = config
        self.retry_policy = retry_policy or fetch_policy()
        self._authenticated = bool(config.static_token)
        logger.info("target_client_initialized", url=config.url)

    async def login(self) -> None:
        """Exchange email/password for an access token.

        Raises:
            AuthenticationError: If the login response carries no token
        """
        body = await self.post(
            "/auth/login",
            json_data={"email": self.config.email, "password": self.config.password},
        )
        token = (_unwrap(body) or {}).get("access_token")
        if not token:
            raise AuthenticationError("Target login returned no access_token")

        self.client.headers["Authorization"] = f"Bearer {token}"
        self._authenticated = True
        logger.info("target_login_succeeded", email=self.config.email)

    async def ensure_authenticated(self) -> None:
        """Log in once unless a static token is configured.

        Raises:
            AuthenticationError: If the login response carries no token
        """
        if not self._authenticated:
            await self.login()

    async def _call(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send one API call and unwrap ``data``.

        Only idempotent methods go through the retry policy; a create whose
        response was lost may already be stored, so it is sent once.
        """
        await self.ensure_authenticated()
        if method in RETRYABLE_METHODS:
            body = await self.retry_policy.run(self.request, method, endpoint, **kwargs)
        else:
            body = await self.request(method, endpoint, **kwargs)
        return _unwrap(body)

    async def read_items(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
        fields: list[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Query a collection.

        Args:
            collection: Collection name
            filter: Filter object, e.g. ``{"drupal_uuid": {"_eq": "abc"}}``
            fields: Fields to return (defaults to all)
            limit: Maximum number of items

        Returns:
            List of matching items
        """
        params: dict[str, Any] = {}
        if filter:
            params["filter"] = json.dumps(filter)
        if fields:
            params["fields"] = ",".join(fields)
        if limit is not None:
            params["limit"] = limit

        items = await self._call("GET", collection_path(collection), params=params)
        return items or []

    async def find_one(self, collection: str, field: str, value: Any) -> dict[str, Any] | None:
        """Return the first item whose ``field`` equals ``value``."""
        items = await self.read_items(
            collection, filter={field: {"_eq": value}}, fields=["id"], limit=1
        )
        return items[0] if items else None

    async def create_item(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create one item and return it as stored."""
        item = await self._call("POST", collection_path(collection), json_data=data)
        logger.info("item_created", collection=collection, item_id=(item or {}).get("id"))
        return item or {}

    async def update_item(
        self, collection: str, item_id: str | int, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Patch one item."""
        item = await self._call("PATCH", f"{collection_path(collection)}/{item_id}", json_data=data)
        logger.info("item_updated", collection=collection, item_id=item_id)
        return item or {}

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        mime_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Upload a file as multipart form data.

        Metadata fields (title, folder, uploaded_by ...) are sent before the
        file part, which the target requires.
        """
        await self.ensure_authenticated()
        form = {key: str(value) for key, value in (metadata or {}).items() if value is not None}
        files = {"file": (filename, content, mime_type or "application/octet-stream")}

        body = await self.request("POST", "/files", data=form, files=files)
        uploaded = _unwrap(body) or {}
        logger.info(
            "file_uploaded", filename=filename, file_id=uploaded.get("id"), size=len(content)
        )
        return uploaded
