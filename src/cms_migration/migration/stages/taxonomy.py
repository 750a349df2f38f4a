"""Taxonomy stages: countries, regions, sectors, project types and statuses.

Each vocabulary gets its own identity map keyed by source UUID and by the
term codes that companies and projects reference in their attributes.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any

from cms_migration.migration.models import SourceRecord
from cms_migration.migration.stage import MigrationStage, StageContext

TAXONOMY_AUDIT_FIELDS = ["id", "drupal_id", "drupal_uuid", "drupal_key", "name"]


@dataclass(frozen=True)
class Vocabulary:
    """A source vocabulary and the target collection it migrates into."""

    name: str
    vocabulary_id: str
    collection: str
    code_field: str


VOCABULARIES: tuple[Vocabulary, ...] = (
    Vocabulary("countries", "country", "countries", "field_country_code"),
    Vocabulary("regions", "region", "regions", "field_region_code"),
    Vocabulary("sectors", "sector", "sectors", "field_sector_code"),
)

# Allowed values of the source project type and status list fields; not fetchable vocabularies.
PROJECT_TYPES: tuple[tuple[str, str], ...] = (
    ("hospital", "Hospital"),
    ("hotel", "Hotel"),
    ("clinic", "Clinic"),
    ("diagnosticcenter", "Diagnostic Center"),
    ("residentialbuilding", "Residential Building"),
    ("commercialbuilding", "Commercial Building"),
    ("officebuilding", "Office Building"),
    ("mall", "Mall"),
    ("shoppingcentre", "Shopping Centre"),
    ("supermarket", "Supermarket"),
    ("school", "School"),
    ("university", "University"),
    ("library", "Library"),
    ("governmentbuilding", "Government Building"),
    ("theatre", "Theatre"),
    ("auditorium", "Auditorium"),
    ("stadium", "Stadium"),
    ("mixeduseddevelopment", "Mixed Use Development"),
    ("market", "Market"),
    ("carpark", "Car Park"),
    ("worshipfacility", "Worship Facility"),
    ("park", "Park"),
    ("aquaticcentre", "Aquatic Centre"),
    ("science&technologypark", "Science & Technology Park"),
    ("roadshighways", "Roads / Highways"),
    ("airport", "Airport"),
    ("bridge", "Bridge"),
    ("seaport", "Seaport"),
    ("sportsfacility", "Sports Facility"),
    ("railway", "Railway"),
    ("busterminus", "Bus Terminus"),
    ("brt", "BRT"),
    ("aerialtramway(cablecar)", "Aerial Tramway (Cable Car)"),
    ("tunnel", "Tunnel"),
    ("storageterminal", "Storage Terminal"),
    ("watertreatmentplant", "Water Treatment Plant"),
    ("sewagetreatmentplant", "Sewage Treatment Plant"),
    ("waterpipeline", "Water Pipeline"),
    ("sewagepipeline", "Sewage Pipeline"),
    ("waterstoragereservoir", "Water Storage Reservoir"),
    ("dam", "Dam"),
    ("datacentre", "Data Centre"),
    ("submarinecable", "Submarine Cable"),
    ("fibreopticnetwork", "Fibre Optic Network"),
    ("telecomfacility", "Telecom Facility"),
    ("productionfacility", "Production Facility"),
    ("warehouse", "Warehouse"),
    ("others", "Others"),
    ("hydroelectric", "Hydro-Electric"),
    ("solarenergy(over100watts)", "Solar Energy (over 100 Watts)"),
    ("windenergy", "Wind Energy"),
    ("powertransmission", "Power Transmission"),
    ("nuclearenergy", "Nuclear Energy"),
    ("geothermalenergy", "Geothermal Energy"),
    ("biomassenergy", "Biomass Energy"),
)

PROJECT_STATUSES: tuple[tuple[str, str], ...] = (
    ("conceptplanning", "Concept / Planning"),
    ("studyfeasibility", "Study / Feasibility"),
    ("design", "Design"),
    ("eoi", "Main Contract Prequalification / Call for Expression of Interest (EOI)"),
    ("maincontractbid", "Main Contract Bid"),
    ("maincontractidevaluation", "Main Contract Bid Evaluation"),
    ("executionunderconstruction", "Execution / Under Construction"),
    ("onhold", "On Hold"),
    ("cancelled", "Cancelled"),
    ("complete", "Complete"),
)


def machine_name(label: str | None) -> str:
    """Lowercase, underscore-separated key derived from a term label."""
    return re.sub(r"[^a-z0-9]+", "_", (label or "").lower()).strip("_")


def term_code(record: SourceRecord, code_field: str) -> str:
    code = record.attr(code_field)
    if code:
        return str(code)
    if record.internal_id is not None:
        return str(record.internal_id)
    return record.id


class TaxonomyStage(MigrationStage):
    """Migrate one vocabulary, keyed on the legacy term id."""

    name = "taxonomies"
    natural_key = "drupal_id"
    audit_fields = TAXONOMY_AUDIT_FIELDS

    def __init__(self, ctx: StageContext, vocabulary: Vocabulary):
        super().__init__(ctx)
        self.vocabulary = vocabulary
        self.resource_path = f"/taxonomy_term/{vocabulary.vocabulary_id}"
        self.collection = vocabulary.collection
        self.mapping_entity = vocabulary.name

    @property
    def label(self) -> str:
        return self.vocabulary.name

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        name = record.attr("name", "")
        return {
            "id": str(uuid.uuid4()),
            "drupal_id": record.internal_id,
            "drupal_uuid": record.id,
            "drupal_key": record.attr("field_region_key") or machine_name(name),
            "name": name,
            "description": record.processed("description"),
        }

    def mapping_keys(self, record: SourceRecord, payload: dict[str, Any]) -> list[Any]:
        return [record.id, term_code(record, self.vocabulary.code_field), payload["drupal_key"]]


class FixedListStage(MigrationStage):
    """Create rows from a fixed ``(key, label)`` allowed-values list."""

    natural_key = "drupal_key"
    audit_fields = ["id", "drupal_key", "name"]
    record_type = "allowed_value"
    values: tuple[tuple[str, str], ...] = ()

    async def fetch(self) -> list[SourceRecord]:
        return [
            SourceRecord(type=self.record_type, id=value, attributes={"name": label})
            for value, label in self.values
        ]

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        return {"drupal_key": record.id, "name": record.attr("name", "")}

    def mapping_keys(self, record: SourceRecord, payload: dict[str, Any]) -> list[Any]:
        return [record.id]

    def failure_row(self, record: SourceRecord) -> dict[str, Any]:
        return {"drupal_key": record.id, "name": record.attr("name", "")}


class ProjectTypeStage(FixedListStage):
    name = "project_types"
    collection = "project_types"
    mapping_entity = "project_types"
    record_type = "project_type"
    values = PROJECT_TYPES


class ProjectStatusStage(FixedListStage):
    name = "project_status"
    collection = "project_status"
    mapping_entity = "project_status"
    record_type = "project_status"
    values = PROJECT_STATUSES


def taxonomy_stages(ctx: StageContext) -> list[MigrationStage]:
    """Every taxonomy stage in run order."""
    stages: list[MigrationStage] = [TaxonomyStage(ctx, vocabulary) for vocabulary in VOCABULARIES]
    stages.extend([ProjectTypeStage(ctx), ProjectStatusStage(ctx)])
    return stages
