"""Shared building blocks for content node stages (companies, projects)."""

from collections.abc import Callable
from typing import Any

from cms_migration.migration.models import RelationshipRef, SourceRecord
from cms_migration.migration.stage import MigrationStage
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

# (source attribute, target collection suffix, junction column, identity map)
TAXONOMY_FIELDS: tuple[tuple[str, str, str, str], ...] = (
    ("field_country", "countries", "countries_id", "countries"),
    ("field_region", "regions", "regions_id", "regions"),
    ("field_sector", "sectors", "sectors_id", "sectors"),
    ("field_type", "types", "types_id", "project_types"),
)


def to_number(value: Any, cast: Callable[[Any], Any] = float) -> Any:
    """Parse a numeric attribute; empty or malformed values become None."""
    if value in (None, "", [], False):
        return None
    try:
        return cast(float(value)) if cast is int else cast(value)
    except (TypeError, ValueError):
        return None


def path_slug(record: SourceRecord, prefix: str) -> str:
    alias = (record.attr("path", {}) or {}).get("alias") or ""
    return alias.replace(prefix, "", 1).strip("/") if alias else ""


def geo(record: SourceRecord) -> tuple[Any, Any]:
    points = record.attr("field_location_geo", [])
    if isinstance(points, list) and points and isinstance(points[0], dict):
        return points[0].get("lat"), points[0].get("lng")
    return None, None


def publish_status(record: SourceRecord) -> str:
    return "published" if record.attr("status") else "draft"


def as_list(value: Any) -> list[Any]:
    if value in (None, ""):
        return []
    return value if isinstance(value, list) else [value]


class NodeStage(MigrationStage):
    """Content node stage with paragraph, gallery and junction helpers.

    ``owner_field`` is the column secondary rows use to point back at the
    primary (``company``, ``project``); ``junction_prefix`` names junction
    collections (``companies_countries``, ``projects_sectors``).
    """

    owner_field: str = ""
    junction_prefix: str = ""
    junction_owner_column: str = ""

    async def fetch_paragraph(
        self, paragraph_type: str, ref: RelationshipRef
    ) -> SourceRecord | None:
        return await self.ctx.fetcher.fetch_entity(f"/paragraph/{paragraph_type}", ref.id)

    async def fetch_media(self, media_type: str, ref: RelationshipRef) -> SourceRecord | None:
        return await self.ctx.fetcher.fetch_entity(f"/media/{media_type}", ref.id)

    async def transfer(self, ref: RelationshipRef | None, folder_kind: str) -> str | None:
        """Target file id for a file relationship, uploading it on first sight.

        Args:
            ref: ``file--file`` relationship, or None
            folder_kind: Key into ``media.folders`` for the destination folder

        Returns:
            Target file id, or None when there is no file or the transfer failed
        """
        if ref is None:
            return None
        return await self.ctx.media.transfer_asset(ref.id, self.ctx.media_folder(folder_kind))

    async def contact_rows(
        self,
        record: SourceRecord,
        field: str,
        owner_column: str,
        owner_id: Any,
        folder_kind: str,
    ) -> list[dict[str, Any]]:
        """Rows for the ``contacts`` collection from ``teams`` paragraphs."""
        rows = []
        for ref in record.relationship_refs(field):
            paragraph = await self.fetch_paragraph("teams", ref)
            if paragraph is None:
                continue
            photo = await self.transfer(paragraph.relationship_ref("field_photo"), folder_kind)
            rows.append(
                {
                    "id": paragraph.id,
                    "drupal_id": paragraph.internal_id,
                    "drupal_uuid": paragraph.id,
                    "name": paragraph.attr("field_name", ""),
                    "role": paragraph.attr("field_role", ""),
                    "email": paragraph.attr("field_email", ""),
                    "phone": paragraph.attr("field_phone", ""),
                    "facebook": paragraph.attr("field_facebook", ""),
                    "twitter": paragraph.attr("field_twitter", ""),
                    "linkedin": paragraph.attr("field_linkedin", ""),
                    "photo": photo,
                    owner_column: owner_id,
                    "status": "published",
                }
            )
        return rows

    async def news_rows(
        self, record: SourceRecord, field: str, owner_id: Any
    ) -> list[dict[str, Any]]:
        """Rows for ``news_updates`` from ``news_updates`` paragraphs."""
        rows = []
        for ref in record.relationship_refs(field):
            paragraph = await self.fetch_paragraph("news_updates", ref)
            if paragraph is None:
                continue
            rows.append(
                {
                    "id": paragraph.id,
                    "drupal_id": paragraph.internal_id,
                    "drupal_uuid": paragraph.id,
                    "title": paragraph.attr("field_event_type", ""),
                    "content": paragraph.processed("field_news"),
                    "author": paragraph.attr("field_author_new", ""),
                    "date": paragraph.attr("field_news_date"),
                    self.owner_field: owner_id,
                    "status": "published",
                }
            )
        return rows

    def gallery_row(
        self,
        media: SourceRecord,
        file_ref: RelationshipRef,
        file_id: str,
        owner_id: Any,
        sort: int,
        name: str,
        row_id: str,
    ) -> dict[str, Any]:
        return {
            "id": row_id,
            "drupal_uuid": row_id,
            "drupal_id": file_ref.meta.get("drupal_internal__target_id") or media.internal_id,
            "type": "image",
            "name": name,
            "caption": file_ref.meta.get("title", ""),
            "alt_text": file_ref.meta.get("alt", ""),
            "file": file_id,
            self.owner_field: owner_id,
            "sort": sort,
            "status": "published",
        }

    def taxonomy_junction_rows(
        self, record: SourceRecord, owner_id: Any
    ) -> list[tuple[str, dict[str, Any]]]:
        """Junction rows for every taxonomy code that resolves through the identity maps."""
        rows = []
        for attribute, suffix, column, entity in TAXONOMY_FIELDS:
            for code in as_list(record.attr(attribute)):
                term_id = self.ctx.identity.lookup(entity, code)
                if term_id is None:
                    logger.debug("taxonomy_code_unmapped", entity=entity, code=code)
                    continue
                rows.append(
                    (
                        f"{self.junction_prefix}_{suffix}",
                        {self.junction_owner_column: owner_id, column: term_id},
                    )
                )
        return rows

    async def create_junctions(self, rows: list[tuple[str, dict[str, Any]]]) -> int:
        """Create ``(collection, row)`` junction rows and count the ones stored."""
        created = 0
        for collection, row in rows:
            if await self.ctx.upsert.create_secondary(collection, row) is not None:
                created += 1
        self.ctx.reporter.record_secondary(self.label, "junction_rows", created)
        return created
