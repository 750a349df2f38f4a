"""Create-or-skip upserts keyed by a natural key.

Existing target records are never updated; a record found by its natural
key is reported as skipped with its existing id.
"""

from typing import TYPE_CHECKING, Any

from cms_migration.client.target_client import TargetClient
from cms_migration.migration.models import UpsertAction, UpsertResult
from cms_migration.utils.logging import get_logger

if TYPE_CHECKING:
    from cms_migration.reporting.report import RunReporter

logger = get_logger(__name__)


class UpsertEngine:
    """Check-by-natural-key then create.

    Successful results are remembered per ``(collection, field, value)`` for
    the lifetime of the engine, so a repeated key in the same run returns the
    first result without another round-trip.
    """

    def __init__(self, target: TargetClient, reporter: "RunReporter | None" = None):
        self.target = target
        self.reporter = reporter
        self._seen: dict[tuple[str, str, str], UpsertResult] = {}

    async def upsert_entity(
        self,
        collection: str,
        natural_key_field: str,
        natural_key_value: Any,
        payload: dict[str, Any],
    ) -> UpsertResult:
        """Skip if a record with the natural key exists, otherwise create it.

        Any exception is logged to the run error log and reported as
        ``failed``; it never propagates.
        """
        seen_key = (collection, natural_key_field, str(natural_key_value))
        if seen_key in self._seen:
            logger.debug(
                "upsert_seen_in_run", collection=collection, key=natural_key_value
            )
            return self._seen[seen_key]

        try:
            existing = await self.target.find_one(collection, natural_key_field, natural_key_value)
            if existing:
                result = UpsertResult(id=existing.get("id"), action=UpsertAction.SKIPPED)
                logger.info(
                    "upsert_skipped",
                    collection=collection,
                    key=natural_key_value,
                    target_id=result.id,
                )
            else:
                created = await self.target.create_item(collection, payload)
                result = UpsertResult(
                    id=created.get("id", payload.get("id")), action=UpsertAction.CREATED
                )
                logger.info(
                    "upsert_created",
                    collection=collection,
                    key=natural_key_value,
                    target_id=result.id,
                )
        except Exception as e:
            logger.error(
                "upsert_failed",
                collection=collection,
                key=natural_key_value,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.reporter is not None:
                self.reporter.record_failure(
                    f"{collection}:{natural_key_value}", "upsert failed", e
                )
            return UpsertResult(id=None, action=UpsertAction.FAILED)

        self._seen[seen_key] = result
        return result

    async def create_secondary(self, collection: str, payload: dict[str, Any]) -> Any:
        """Create a dependent record (contact, gallery item, junction row).

        Returns the created item (possibly empty), or None after logging the
        failure.
        """
        try:
            created = await self.target.create_item(collection, payload)
        except Exception as e:
            logger.warning("secondary_create_failed", collection=collection, error=str(e))
            if self.reporter is not None:
                self.reporter.record_failure(collection, "secondary record create failed", e)
            return None
        return created
