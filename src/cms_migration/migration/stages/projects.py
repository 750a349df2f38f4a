"""Project stage.

Projects are matched on the legacy node id. Company roles on a project
(client, architect, main contractor...) become ``projects_<role>``
junction rows resolved through the company identity map written by the
companies stage.
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
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

COMPANY_RELATIONSHIP_FIELDS: tuple[str, ...] = (
    "field_client_owner",
    "field_developer",
    "field_authority",
    "field_architect",
    "field_design_consultant",
    "field_project_manager",
    "field_civil_engineer",
    "field_structural_engineer",
    "field_mep_engineer",
    "field_electrical_engineer",
    "field_geotechnical_engineer",
    "field_cost_consultants",
    "field_quantity_surveyor",
    "field_landscape_architect",
    "field_legal_adviser",
    "field_transaction_advisor",
    "field_study_consultant",
    "field_funding",
    "field_main_contractor",
    "field_main_contract_bidder",
    "field_main_contract_prequalified",
    "field_mep_subcontractor",
    "field_piling_subcontractor",
    "field_facade_subcontractor",
    "field_lift_subcontractor",
    "field_other_subcontractor",
    "field_operator",
    "field_feed",
)

# target field -> source attribute
DATE_FIELDS: dict[str, str] = {
    "project_launch_at": "field_project_launch",
    "pq_issue_date": "field_pq_issue_date_eoi_issue_da",
    "pq_document_submission_date": "field_pq_document_submission_dat",
    "tender_advertised_at": "field_tender_advertised",
    "main_contract_tender_issue_date": "field_main_contract_tender_issue",
    "main_contract_bid_submission_date": "field_main_contract_bid_submissi",
    "consultant_awarded_at": "field_consultant_award",
    "contract_awarded_at": "field_contract_awarded",
    "main_contract_award_date": "field_main_contract_award",
    "financial_close_date": "field_financial_close",
    "design_completion_date": "field_design_completion",
    "construction_start_date": "field_construction_start",
    "construction_completion_date": "field_construction_completion",
    "estimated_completion_date": "field_estimated_completion",
    "commissioning_date": "field_commissioning",
    "handover_date": "field_handover",
    "completed_at": "field_completed",
    "cancelled_at": "field_cancelled",
}

DECIMAL_FIELDS: dict[str, str] = {
    "contract_value_usd": "field_contract_value_us_m_",
    "estimated_project_value_usd": "field_estimated_project_value_us",
    "revised_budget_value_usd": "field_revised_budget_value_us_m_",
    "gross_floor_area_m2": "field_gross_floor_area_m2_",
    "volume_concrete_m3": "field_volume_of_concrete_used_m3",
    "total_steel_weight": "field_total_weight_of_steel_rods",
    "total_cement_tonnage": "field_total_weight_tonnage_of_ce",
    "cost_cement_per_ton": "field_cost_of_cement_per_ton_us_",
    "cost_steel_per_ton": "field_cost_of_steel_rods_per_ton",
    "seaport_water_depth": "field_seaport_water_depth_met",
}

PROJECT_AUDIT_FIELDS = [
    "id",
    "drupal_id",
    "drupal_uuid",
    "title",
    "slug",
    "status",
    "value_range",
    "contract_value_usd",
    "current_stage",
    "address",
    "latitude",
    "longitude",
    "is_free_project",
    "date_created",
    "date_updated",
    "featured_image",
]


def junction_name(field: str) -> str:
    """``field_main_contractor`` -> ``projects_main_contractor``."""
    return "projects_" + field.removeprefix("field_")


def _metatag(record: SourceRecord, position: int) -> str:
    tags = record.attr("metatag", [])
    if isinstance(tags, list) and len(tags) > position and isinstance(tags[position], dict):
        return (tags[position].get("attributes") or {}).get("content", "")
    return ""


def transform_project(record: SourceRecord) -> dict[str, Any]:
    """Target payload for a ``node--projects`` record, without media."""
    latitude, longitude = geo(record)
    body = record.attr("body", {})
    editor_notes = record.attr("field_editor", [])

    payload = {
        "id": record.id,
        "drupal_id": record.attr("drupal_internal__nid"),
        "drupal_uuid": record.id,
        "title": record.attr("title", ""),
        "slug": path_slug(record, "/project/"),
        "status": publish_status(record),
        "body": record.processed("body"),
        "summary": body.get("summary", "") if isinstance(body, dict) else "",
        "value_range": record.attr("field_value", ""),
        "in_operation": record.attr("field_in_operation"),
        "study_completion_date": record.attr("field_study_completion"),
        "address": record.attr("field_address", ""),
        "location": record.attr("field_location_details", ""),
        "gps_coordinates": record.attr("field_gps_coordinates", ""),
        "map_iframe": record.processed("field_map_iframe"),
        "latitude": latitude,
        "longitude": longitude,
        "specifications": record.attr("field_specifications", []),
        "total_cement_bags": to_number(record.attr("field_total_number_of_cement_bag"), int),
        "current_stage": record.attr("field_current_stage", ""),
        "moderation_state": record.attr("moderation_state", ""),
        "is_free_project": bool(record.attr("field_free_projects", False)),
        "in_planning": bool(record.attr("field_in_planning", False)),
        "under_construction": bool(record.attr("field_under_construction", False)),
        "bid_evaluation": record.attr("field_bid_evaluation", ""),
        "call_for_eoi": record.attr("field_call_for_expression_of_int", ""),
        "phone": record.attr("field_phone", ""),
        "fax": record.attr("field_fax", ""),
        "email": record.attr("field_email", ""),
        "website": record.attr("field_website_project", ""),
        "facebook": record.attr("field_facebook", ""),
        "twitter": record.attr("field_twitter", ""),
        "linkedin": record.attr("field_linkedin", ""),
        "editor_notes": (
            editor_notes[0].get("processed", "")
            if isinstance(editor_notes, list) and editor_notes
            else ""
        ),
        "transport": record.attr("field_transport", ""),
        "consultant": record.attr("field_consultant", ""),
        "main_contractor_note": record.attr("field_main_contractor_", ""),
        "keywords": _metatag(record, 2),
        "meta_description": _metatag(record, 1),
        "date_created": record.attr("created"),
        "date_updated": record.attr("changed"),
        "featured_image": None,
    }
    payload.update({target: record.attr(source) for target, source in DATE_FIELDS.items()})
    payload.update(
        {target: to_number(record.attr(source)) for target, source in DECIMAL_FIELDS.items()}
    )
    return payload


class ProjectsStage(NodeStage):
    name = "projects"
    resource_path = "/node/projects"
    params = {"sort": "-created"}
    collection = "projects"
    natural_key = "drupal_id"
    mapping_entity = "project"
    audit_fields = PROJECT_AUDIT_FIELDS
    owner_field = "project"
    junction_prefix = "projects"
    junction_owner_column = "projects_id"

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        payload = transform_project(record)
        payload["featured_image"] = await self.transfer(
            record.relationship_ref("field_listing_image"), "project_images"
        )
        return payload

    async def create_secondary(
        self, record: SourceRecord, payload: dict[str, Any], target_id: Any
    ) -> None:
        contacts = await self.contact_rows(
            record, "field_key_contacts", "project", target_id, "contacts"
        )
        await self.create_rows("contacts", "contacts", contacts)

        news = await self.news_rows(record, "field_news_updates_paragraph", target_id)
        await self.create_rows("news", "news_updates", news)

        await self.create_project_stages(record, target_id)

        gallery = await self.gallery_rows(record, target_id)
        await self.create_rows("gallery_items", "media_gallery", gallery)

        await self.create_junctions(
            self.company_junction_rows(record, target_id)
            + self.taxonomy_junction_rows(record, target_id)
        )

    def company_junction_rows(
        self, record: SourceRecord, project_id: Any
    ) -> list[tuple[str, dict[str, Any]]]:
        """``projects_<role>`` rows for every referenced company that was migrated."""
        rows = []
        for field in COMPANY_RELATIONSHIP_FIELDS:
            for ref in record.relationship_refs(field):
                company_id = self.ctx.identity.lookup("company", ref.id)
                if company_id is None:
                    logger.debug("company_unmapped", field=field, company=ref.id)
                    continue
                rows.append(
                    (junction_name(field), {"projects_id": project_id, "companies_id": company_id})
                )
        return rows

    async def create_project_stages(self, record: SourceRecord, project_id: Any) -> None:
        """``project_stages`` rows plus their ``stages`` detail rows."""
        created_stages = 0
        created_details = 0
        for ref in record.relationship_refs("field_stages"):
            paragraph = await self.fetch_paragraph("stages", ref)
            if paragraph is None:
                continue
            stage_row = {
                "id": paragraph.id,
                "drupal_id": paragraph.internal_id,
                "drupal_uuid": paragraph.id,
                "name": paragraph.attr("field_stage_title", ""),
                "total_sub_stages": paragraph.attr("field_total_sub_stages_count", 0),
                "project": project_id,
            }
            if await self.ctx.upsert.create_secondary("project_stages", stage_row) is None:
                continue
            created_stages += 1

            for detail_ref in paragraph.relationship_refs("field_stage"):
                detail = await self.fetch_paragraph("stage", detail_ref)
                if detail is None:
                    continue
                detail_row = {
                    "id": detail.id,
                    "drupal_id": detail.internal_id,
                    "drupal_uuid": detail.id,
                    "date": detail.attr("field_stage_date"),
                    "info": detail.attr("field_stage_info", ""),
                    "project_stage": paragraph.id,
                }
                if await self.ctx.upsert.create_secondary("stages", detail_row) is not None:
                    created_details += 1

        self.ctx.reporter.record_secondary(self.label, "project_stages", created_stages)
        self.ctx.reporter.record_secondary(self.label, "stage_details", created_details)

    async def gallery_rows(self, record: SourceRecord, project_id: Any) -> list[dict[str, Any]]:
        """Rows for ``media_gallery`` from the project's image media entities."""
        rows = []
        for media_ref in record.relationship_refs("field_gallery_"):
            media = await self.fetch_media("image", media_ref)
            file_ref = media.relationship_ref("field_media_image") if media else None
            if media is None or file_ref is None:
                logger.debug("gallery_media_unresolved", media=media_ref.id)
                continue
            file_id = await self.transfer(file_ref, "project_gallery")
            if not file_id:
                continue
            rows.append(
                self.gallery_row(
                    media,
                    file_ref,
                    file_id,
                    project_id,
                    len(rows) + 1,
                    media.attr("name", ""),
                    media.id,
                )
            )
        return rows
