"""Stage context and the base class for migration stages.

A StageContext owns every collaborator a stage needs for one run: the
credential broker, target client, fetcher, media pipeline, upsert engine,
identity store and reporter. It has an explicit open/flush/close
lifecycle instead of module-level singletons.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from cms_migration.client.credentials import CredentialBroker
from cms_migration.client.exceptions import AuthExhaustedError, TransformationError
from cms_migration.client.target_client import TargetClient
from cms_migration.config import MigrationConfig
from cms_migration.migration.audit import AuditLedger
from cms_migration.migration.fetcher import PaginatedFetcher
from cms_migration.migration.identity import IdentityMapStore
from cms_migration.migration.media import ImageCache, MediaPipeline
from cms_migration.migration.models import SourceRecord, UpsertAction, UpsertResult
from cms_migration.migration.resolver import RelationshipIndex
from cms_migration.migration.upsert import UpsertEngine
from cms_migration.reporting.report import RunReporter, StageStats
from cms_migration.utils.logging import get_logger, log_stage_progress
from cms_migration.utils.retry import fetch_policy, media_policy

logger = get_logger(__name__)


class StageContext:
    """Collaborators shared by the stages of one migration run."""

    def __init__(
        self,
        config: MigrationConfig,
        broker: CredentialBroker,
        target: TargetClient,
        fetcher: PaginatedFetcher,
        media: MediaPipeline,
        upsert: UpsertEngine,
        identity: IdentityMapStore,
        reporter: RunReporter,
    ):
        self.config = config
        self.broker = broker
        self.target = target
        self.fetcher = fetcher
        self.media = media
        self.upsert = upsert
        self.identity = identity
        self.reporter = reporter

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        reporter: RunReporter | None = None,
        source_transport: httpx.AsyncBaseTransport | None = None,
        target_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "StageContext":
        """Wire every collaborator from configuration.

        Transports and ``sleep`` are injection points for tests.
        """
        perf = config.performance
        paths = config.paths
        reporter = reporter or RunReporter(paths.error_log_path)

        fetch = fetch_policy(
            perf.fetch_retry_attempts, perf.fetch_backoff_min, perf.fetch_backoff_max
        ).with_sleep(sleep)
        media = media_policy(perf.media_retries, perf.media_backoff_step).with_sleep(sleep)

        broker = CredentialBroker(
            config.source,
            rate_limit=perf.rate_limit,
            transport=source_transport,
            log_payloads=config.logging.log_payloads,
        )
        target = TargetClient(
            config.target,
            rate_limit=perf.rate_limit,
            retry_policy=fetch,
            transport=target_transport,
            log_payloads=config.logging.log_payloads,
            max_payload_size=config.logging.max_payload_size,
        )
        fetcher = PaginatedFetcher(
            broker,
            reporter=reporter,
            retry_policy=fetch,
            page_limit=perf.page_limit,
            page_delay=perf.page_delay,
            sleep=sleep,
        )
        identity = IdentityMapStore(paths.csv_path)
        pipeline = MediaPipeline(
            broker,
            fetcher,
            target,
            ImageCache(paths.image_map_path),
            paths.image_error_log_path,
            retry_policy=media,
            identity=identity,
            default_uploader=config.default_uploader,
        )
        return cls(
            config=config,
            broker=broker,
            target=target,
            fetcher=fetcher,
            media=pipeline,
            upsert=UpsertEngine(target, reporter),
            identity=identity,
            reporter=reporter,
        )

    async def open(self) -> "StageContext":
        """Load the image cache and authenticate against the target."""
        self.media.cache.load()
        await self.target.ensure_authenticated()
        logger.info("stage_context_opened")
        return self

    def flush(self) -> None:
        """Persist identity maps; the image cache persists itself."""
        self.identity.flush_all()

    async def close(self) -> None:
        self.flush()
        await self.broker.close()
        await self.target.close()
        logger.info("stage_context_closed")

    async def __aenter__(self) -> "StageContext":
        return await self.open()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def ledger(self, entity: str, fields: list[str]) -> AuditLedger:
        return AuditLedger(self.config.paths.csv_path / f"{entity}_migration_backup.csv", fields)

    def media_folder(self, kind: str) -> str | None:
        return self.config.media_folders.get(kind)


class MigrationStage(ABC):
    """One entity type migrated from a source collection into a target collection.

    Subclasses set the class attributes and implement :meth:`build_payload`;
    :meth:`create_secondary` runs only for primaries that were created in
    this run, never for skipped ones.
    """

    name: str = "stage"
    resource_path: str = ""
    params: dict[str, Any] = {}
    collection: str = ""
    natural_key: str = "drupal_uuid"
    mapping_entity: str | None = None
    audit_fields: list[str] = ["id", "drupal_id", "drupal_uuid"]

    def __init__(self, ctx: StageContext):
        self.ctx = ctx
        self.index = RelationshipIndex()

    @property
    def label(self) -> str:
        """Name used for counters, ledgers and log events."""
        return self.name

    @property
    def stats(self) -> StageStats:
        return self.ctx.reporter.stage(self.label)

    async def fetch(self) -> list[SourceRecord]:
        """Fetch every page of ``resource_path`` and index the included records.

        Returns:
            Primary records in fetch order, duplicates included

        Raises:
            AuthExhaustedError: If the source cannot be re-authenticated
            APIError: If a page still fails once retries are exhausted
        """
        result = await self.ctx.fetcher.fetch_all(self.resource_path, dict(self.params))
        self.index = RelationshipIndex(result.included)
        logger.debug("relationship_index_built", stage=self.label, included=len(self.index))
        return result.primary

    async def run(self) -> None:
        """Fetch, then process every distinct primary record in fetch order.

        A failed fetch or auth exhaustion propagates to the caller; item
        failures are recorded and the loop continues.
        """
        logger.info("stage_started", stage=self.label, path=self.resource_path)
        records = await self.fetch()
        ledger = self.ctx.ledger(self.label, self.audit_fields)

        seen: set[tuple[str, str]] = set()
        distinct: list[SourceRecord] = []
        for record in records:
            if record.key not in seen:
                seen.add(record.key)
                distinct.append(record)

        try:
            for position, record in enumerate(distinct, start=1):
                if self.should_skip(record):
                    logger.info("record_ignored", stage=self.label, source_id=record.id)
                    continue
                await self.process(record, ledger)
                if position % 20 == 0:
                    log_stage_progress(logger, self.label, position, len(distinct))
        finally:
            ledger.write()
            if self.mapping_entity:
                self.ctx.identity.flush(self.mapping_entity)

        stats = self.stats
        logger.info(
            "stage_completed",
            stage=self.label,
            created=stats.created,
            skipped=stats.skipped,
            failed=stats.failed,
        )

    async def process(self, record: SourceRecord, ledger: AuditLedger) -> UpsertResult:
        """Build, upsert and audit one record.

        Payload and upsert failures become a ``failed`` result and an audit
        row; credential exhaustion is re-raised so the run aborts.

        Args:
            record: Primary source record
            ledger: Audit ledger of the running stage

        Returns:
            Outcome of the upsert
        """
        try:
            payload = await self.build_payload(record)
            key = payload.get(self.natural_key)
            if key in (None, ""):
                raise TransformationError(f"Payload has no {self.natural_key}")
            result = await self.ctx.upsert.upsert_entity(
                self.collection, self.natural_key, key, payload
            )

            if result.ok and self.mapping_entity:
                for source_key in self.mapping_keys(record, payload):
                    self.ctx.identity.record_mapping(self.mapping_entity, source_key, result.id)

            if result.action is UpsertAction.CREATED:
                await self.create_secondary(record, payload, result.id)
        except AuthExhaustedError:
            raise
        except Exception as e:
            self.ctx.reporter.record_failure(
                f"{self.label}:{record.id}", "processing failed", e
            )
            ledger.add_failure(self.failure_row(record))
            self.ctx.reporter.record(self.label, UpsertAction.FAILED)
            return UpsertResult(id=None, action=UpsertAction.FAILED)

        status = "failed" if result.action is UpsertAction.FAILED else "success"
        if result.action is UpsertAction.SKIPPED:
            status = "skipped"
        ledger.add({**payload, "id": result.id or payload.get("id")}, status, result.action.value)
        self.ctx.reporter.record(self.label, result.action)
        return result

    def should_skip(self, record: SourceRecord) -> bool:
        return False

    def mapping_keys(self, record: SourceRecord, payload: dict[str, Any]) -> list[Any]:
        """Source keys recorded in the identity map for this record."""
        return [record.id]

    def failure_row(self, record: SourceRecord) -> dict[str, Any]:
        return {"id": record.id, "drupal_id": record.internal_id, "drupal_uuid": record.id}

    @abstractmethod
    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        """Transform a source record into the target payload."""

    async def create_secondary(
        self, record: SourceRecord, payload: dict[str, Any], target_id: Any
    ) -> None:
        """Create dependent records for a freshly created primary."""

    async def create_rows(self, kind: str, collection: str, rows: list[dict[str, Any]]) -> int:
        """Create secondary rows, counting the successes under ``kind``."""
        created = 0
        for row in rows:
            if await self.ctx.upsert.create_secondary(collection, row) is not None:
                created += 1
        self.ctx.reporter.record_secondary(self.label, kind, created)
        return created
