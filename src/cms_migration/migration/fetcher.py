"""Paginated fetcher for JSON:API collections.

Follows ``links.next.href`` from page to page, accumulating primary
records and the side-loaded ``included`` records of every page.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from cms_migration.client.credentials import CredentialBroker
from cms_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthExhaustedError,
    CMSMigrationError,
)
from cms_migration.migration.models import FetchResult, SourceRecord
from cms_migration.utils.logging import get_logger
from cms_migration.utils.retry import RetryPolicy, fetch_policy

if TYPE_CHECKING:
    from cms_migration.reporting.report import RunReporter

logger = get_logger(__name__)


def _records(payload: Any) -> list[SourceRecord]:
    """Normalize a ``data``/``included`` member into SourceRecords."""
    if not payload:
        return []
    if isinstance(payload, dict):
        payload = [payload]
    return [SourceRecord.from_dict(item) for item in payload if isinstance(item, dict)]


def _next_link(document: dict[str, Any]) -> str | None:
    links = document.get("links") or {}
    next_link = links.get("next")
    if isinstance(next_link, dict):
        return next_link.get("href") or None
    return next_link or None


class PaginatedFetcher:
    """Fetch every page of a source collection.

    Args:
        broker: Credential broker owning the authenticated source client
        reporter: Run reporter receiving non-auth HTTP failures (optional)
        retry_policy: Policy applied to each page request
        page_limit: ``page[limit]`` sent on the first request
        page_delay: Seconds to wait between pages
        sleep: Coroutine used for the inter-page delay (swapped out in tests)
    """

    def __init__(
        self,
        broker: CredentialBroker,
        reporter: "RunReporter | None" = None,
        retry_policy: RetryPolicy | None = None,
        page_limit: int = 50,
        page_delay: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.broker = broker
        self.reporter = reporter
        self.retry_policy = retry_policy or fetch_policy()
        self.page_limit = page_limit
        self.page_delay = page_delay
        self._sleep = sleep

    async def fetch_all(
        self, resource_path: str, params: dict[str, Any] | None = None
    ) -> FetchResult:
        """Fetch all pages starting at ``resource_path``.

        ``params`` are sent with the first request only; later pages use the
        server-provided next link verbatim.

        Raises:
            AuthenticationError: On 401, after the broker handle was reset
            APIError: On any other HTTP error once retries are exhausted
        """
        first_params = {"page[limit]": self.page_limit, **(params or {})}
        result = FetchResult()
        next_url: str | None = resource_path

        while next_url:
            page_number = result.pages + 1
            document = await self._get_page(
                next_url, first_params if page_number == 1 else None, page_number
            )

            primary = _records(document.get("data"))
            if not primary:
                logger.info("fetch_empty_page", path=resource_path, page=page_number)
                break

            result.add_page(primary, _records(document.get("included")))
            logger.info(
                "fetch_page_complete",
                path=resource_path,
                page=page_number,
                records=len(primary),
                total=len(result.primary),
            )

            next_url = _next_link(document)
            if next_url and self.page_delay > 0:
                await self._sleep(self.page_delay)

        logger.info(
            "fetch_complete",
            path=resource_path,
            pages=result.pages,
            records=len(result.primary),
            included=len(result.included),
        )
        return result

    async def fetch_entity(self, resource_path: str, entity_id: str) -> SourceRecord | None:
        """Fetch one resource (paragraph, media entity, file) by id.

        Returns None on any failure; a 401 still resets the broker so the
        next request re-authenticates.

        Raises:
            AuthExhaustedError: If re-authentication after a reset fails
        """
        path = f"{resource_path.rstrip('/')}/{entity_id}"
        try:
            document = await self._get_page(path, None, 1, record_errors=False)
        except AuthenticationError:
            return None
        except AuthExhaustedError:
            raise
        except CMSMigrationError as e:
            logger.warning("fetch_entity_failed", path=path, error=str(e))
            return None

        records = _records(document.get("data"))
        return records[0] if records else None

    async def _get_page(
        self,
        url: str,
        params: dict[str, Any] | None,
        page_number: int,
        record_errors: bool = True,
    ) -> dict[str, Any]:
        async def request() -> dict[str, Any]:
            client = await self.broker.get_authenticated_client()
            return await client.get_document(url, params=params)

        try:
            return await self.retry_policy.run(request)
        except AuthenticationError:
            logger.warning("fetch_unauthorized", url=url, page=page_number)
            await self.broker.reset_authentication()
            raise
        except APIError as e:
            logger.error(
                "fetch_page_failed",
                url=url,
                page=page_number,
                status_code=e.status_code,
                error=str(e),
            )
            if record_errors and self.reporter is not None:
                self.reporter.record_failure(url, f"fetch failed on page {page_number}", e)
            raise
