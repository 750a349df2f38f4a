"""Company stage.

Companies keep their source UUID as target id and are matched on
``drupal_uuid``. Contacts, team members, news, awards, certifications,
gallery items and taxonomy junction rows are only created for companies
created in this run.
"""

from typing import Any

from cms_migration.migration.models import SourceRecord
from cms_migration.migration.stages.common import (
    NodeStage,
    geo,
    path_slug,
    publish_status,
    to_number,
)

COMPANY_AUDIT_FIELDS = [
    "id",
    "drupal_id",
    "drupal_uuid",
    "name",
    "slug",
    "status",
    "activities",
    "company_role",
    "headquarters",
    "employees",
    "projects_completed",
    "ongoing_projects",
    "address",
    "latitude",
    "longitude",
    "phone",
    "fax",
    "email",
    "company_email",
    "website",
    "facebook",
    "twitter",
    "linkedin",
    "is_free_company",
    "date_created",
    "date_updated",
    "user_created",
    "logo",
]


def transform_company(record: SourceRecord) -> dict[str, Any]:
    """Target payload for a ``node--company`` record, without media."""
    latitude, longitude = geo(record)
    author = record.relationship_ref("uid")
    return {
        "id": record.id,
        "drupal_id": record.attr("drupal_internal__nid"),
        "drupal_uuid": record.id,
        "name": record.attr("title", ""),
        "slug": path_slug(record, "/company/"),
        "status": publish_status(record),
        "description": record.processed("body"),
        "activities": record.attr("field_activities", ""),
        "company_role": record.attr("field_company_role", ""),
        "headquarters": record.attr("field_headquater", ""),
        "employees": to_number(record.attr("field_employees"), int),
        "projects_completed": to_number(record.attr("field_projects_completed"), int),
        "ongoing_projects": to_number(record.attr("field_on_going_projects"), int),
        "address": record.attr("field_address", ""),
        "location_details": record.processed("field_location_details"),
        "latitude": latitude,
        "longitude": longitude,
        "map_iframe": record.processed("field_map_iframe"),
        "phone": record.attr("field_phone", ""),
        "fax": record.attr("field_fax", ""),
        "email": record.attr("field_email", ""),
        "company_email": record.attr("field_company_email", ""),
        "website": record.attr("field_website", ""),
        "facebook": record.attr("field_facebook", ""),
        "twitter": record.attr("field_twitter", ""),
        "linkedin": record.attr("field_linkedin", ""),
        "awards": record.attr("field_awards", ""),
        "certifications": record.attr("field_certifications", ""),
        "is_free_company": bool(record.attr("field_free_company", False)),
        "date_created": record.attr("created"),
        "date_updated": record.attr("changed"),
        "user_created": author.id if author else None,
        "logo": None,
    }


class CompaniesStage(NodeStage):
    name = "companies"
    resource_path = "/node/company"
    collection = "companies"
    natural_key = "drupal_uuid"
    mapping_entity = "company"
    audit_fields = COMPANY_AUDIT_FIELDS
    owner_field = "company"
    junction_prefix = "companies"
    junction_owner_column = "companies_id"

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        payload = transform_company(record)
        logo_ref = record.relationship_ref("field_logo")
        payload["logo"] = await self.transfer(logo_ref, "company_logos")
        return payload

    async def create_secondary(
        self, record: SourceRecord, payload: dict[str, Any], target_id: Any
    ) -> None:
        contacts = await self.contact_rows(
            record, "field_key_contacts_companies", "company", target_id, "company_contacts"
        )
        await self.create_rows("contacts", "contacts", contacts)

        team = await self.contact_rows(
            record, "field_team", "company_team", target_id, "company_team"
        )
        await self.create_rows("team_members", "contacts", team)

        news = await self.news_rows(record, "field_news_updates_paragraph_com", target_id)
        await self.create_rows("news", "news_updates", news)

        awards = await self.award_rows(record, "field_awards_companies", "award", target_id)
        await self.create_rows("awards", "company_awards", awards)

        certifications = await self.award_rows(
            record, "field_certifications_companies", "certification", target_id
        )
        await self.create_rows("certifications", "company_awards", certifications)

        gallery = await self.gallery_rows(record, target_id)
        await self.create_rows("gallery_items", "media_gallery", gallery)

        await self.create_junctions(self.taxonomy_junction_rows(record, target_id))

    async def award_rows(
        self, record: SourceRecord, field: str, award_type: str, company_id: Any
    ) -> list[dict[str, Any]]:
        """Rows for ``company_awards`` from ``image_with_link`` paragraphs."""
        rows = []
        for ref in record.relationship_refs(field):
            paragraph = await self.fetch_paragraph("image_with_link", ref)
            if paragraph is None:
                continue
            logo_ref = paragraph.relationship_ref("field_logo")
            link = paragraph.attr("field_link", {})
            rows.append(
                {
                    "id": paragraph.id,
                    "drupal_id": paragraph.internal_id,
                    "drupal_uuid": paragraph.id,
                    "name": logo_ref.meta.get("alt", "") if logo_ref else "",
                    "link": link.get("uri") if isinstance(link, dict) else None,
                    "type": award_type,
                    "company": company_id,
                    "logo": await self.transfer(logo_ref, "company_awards_certifications"),
                    "status": publish_status(paragraph),
                }
            )
        return rows

    async def gallery_rows(self, record: SourceRecord, company_id: Any) -> list[dict[str, Any]]:
        """Rows for ``media_gallery`` from the company's gallery media entity.

        The entity's main image gets sort 1; its gallery images follow in
        order. A file appearing twice is only added once.
        """
        gallery_ref = record.relationship_ref("field_gallery")
        if gallery_ref is None:
            return []
        gallery = await self.fetch_media("gallery", gallery_ref)
        if gallery is None:
            return []

        gallery_name = gallery.attr("name", "")
        image_refs = []
        main_ref = gallery.relationship_ref("field_media_image")
        if main_ref is not None:
            image_refs.append((main_ref, gallery.id, gallery_name or "Featured Image"))
        for position, ref in enumerate(gallery.relationship_refs("field_gallery_images"), start=1):
            image_refs.append((ref, ref.id, f"{gallery_name} - Image {position}"))

        rows = []
        seen_files: set[str] = set()
        for ref, row_id, name in image_refs:
            file_id = await self.transfer(ref, "company_gallery")
            if not file_id or file_id in seen_files:
                continue
            seen_files.add(file_id)
            rows.append(
                self.gallery_row(gallery, ref, file_id, company_id, len(rows) + 1, name, row_id)
            )
        return rows
