"""JSON:API source client.

Thin wrapper over BaseAPIClient that speaks the compound-document media
type and can download binary files from the source host.
"""

from typing import Any

import httpx

from cms_migration.client.base_client import BaseAPIClient
from cms_migration.config import SourceConfig
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

JSONAPI_MEDIA_TYPE = "application/vnd.api+json"


class SourceClient(BaseAPIClient):
    """Authenticated client for the JSON:API source platform.

    Instances are produced by the credential broker; ``strategy`` records
    which authentication strategy produced the handle.
    """

    accept = JSONAPI_MEDIA_TYPE

    def __init__(
        self,
        config: SourceConfig,
        strategy: str,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
        cookies: dict[str, str] | None = None,
        rate_limit: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
    ):
        super().__init__(
            base_url=config.api_url,
            headers=headers,
            auth=auth,
            cookies=cookies,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=rate_limit,
            force_ipv4=config.force_ipv4,
            transport=transport,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
        )
        self.config = config
        self.strategy = strategy
        logger.info("source_client_initialized", url=config.api_url, strategy=strategy)

    async def get_document(
        self, path_or_url: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Fetch one compound document (``data``/``included``/``links``)."""
        return await self.get(path_or_url, params=params)

    async def probe(self) -> None:
        """Request the configured probe endpoint; raises on any error status."""
        await self.send("GET", self.config.probe_path)

    def absolute_url(self, url: str) -> str:
        """Resolve a site-relative file URL against the source base URL."""
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.config.url}/{url.lstrip('/')}"

    async def download(self, url: str) -> bytes:
        """Download a binary file from the source site."""
        response = await self.send("GET", self.absolute_url(url), headers={"Accept": "*/*"})
        return response.content
