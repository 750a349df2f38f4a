"""Role stage.

Source roles collapse onto a smaller set of target roles. Each target role
is created once, keeping the UUID of the first source role that maps to it,
and the roles identity map records every source role UUID, machine name and
target role name so the users stage can resolve a user's role.
"""

from dataclasses import dataclass
from typing import Any

from cms_migration.migration.models import SourceRecord
from cms_migration.migration.stage import MigrationStage, StageContext
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoleMapping:
    """Target role for a source role machine name.

    Attributes:
        target_role: Target role name
        priority: Higher wins when a user holds several roles
        subscription_type: Subscription recorded on users holding the role
        description: Description given to the target role
    """

    target_role: str
    priority: int
    subscription_type: str | None = None
    description: str = ""


ROLE_MAPPING: dict[str, RoleMapping] = {
    "administrator": RoleMapping("Administrator", 100, None, "Administrator role for full access"),
    "publisher": RoleMapping("Publisher", 95, None, "Publisher role for content publishing"),
    "super_editor": RoleMapping("Super Editor", 90, None, "Super Editor role for full access"),
    "editor": RoleMapping("Editor", 80, None, "Editor role for content creation"),
    "basic_content_editor": RoleMapping(
        "Content Editor", 70, None, "Content Editor for limited content access"
    ),
    "coordinator": RoleMapping("Coordinator", 60, None, "Coordinator for view-only access"),
    "premium": RoleMapping("Subscriber", 50, "premium", "Subscriber for premium content access"),
    "paid_corporate": RoleMapping("Subscriber", 50, "corporate"),
    "paid_individual": RoleMapping("Subscriber", 50, "individual"),
    "subscriber": RoleMapping("Subscriber", 40, "basic"),
    "reports": RoleMapping("Subscriber", 40, "reports"),
    "demo": RoleMapping("Authenticated", 30, "demo"),
    "newsletter": RoleMapping("Authenticated", 20),
    "opinion": RoleMapping("Authenticated", 20),
    "free": RoleMapping("Authenticated", 10),
    "authenticated": RoleMapping("Authenticated", 5, None, "Authenticated user for basic access"),
    "anonymous": RoleMapping("Public", 0, None, "Public role for anonymous access"),
}

DEFAULT_ROLE = "authenticated"
ADMIN_ROLE = "Administrator"


def role_mapping(record: SourceRecord) -> RoleMapping | None:
    """Mapping for a source role by machine name, None when unmapped."""
    return ROLE_MAPPING.get(record.attr("drupal_internal__id", ""))


def primary_role(roles: list[SourceRecord]) -> tuple[RoleMapping, SourceRecord | None]:
    """Highest-priority mapped role among ``roles`` (Authenticated when none map)."""
    best = ROLE_MAPPING[DEFAULT_ROLE]
    best_record = None
    for role in roles:
        mapping = role_mapping(role)
        if mapping and (best_record is None or mapping.priority > best.priority):
            best, best_record = mapping, role
    return best, best_record


class RolesStage(MigrationStage):
    """Create one target role per distinct mapped role name."""

    name = "roles"
    resource_path = "/user_role/user_role"
    collection = "directus_roles"
    natural_key = "name"
    mapping_entity = "roles"
    audit_fields = ["id", "name", "description", "admin_access", "app_access"]

    def __init__(self, ctx: StageContext):
        super().__init__(ctx)
        self._members: dict[str, list[SourceRecord]] = {}

    async def fetch(self) -> list[SourceRecord]:
        """Fetch source roles and keep the first one per target role name."""
        self._members = {}
        representatives: list[SourceRecord] = []
        for record in await super().fetch():
            mapping = role_mapping(record)
            if mapping is None:
                logger.info(
                    "role_unmapped", source_id=record.id, role=record.attr("drupal_internal__id")
                )
                continue
            members = self._members.setdefault(mapping.target_role, [])
            if not members:
                representatives.append(record)
            members.append(record)
        return representatives

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        mapping = role_mapping(record)
        return {
            "id": record.id,
            "name": mapping.target_role,
            "description": mapping.description,
            "admin_access": bool(record.attr("is_admin")) or mapping.target_role == ADMIN_ROLE,
            "app_access": True,
        }

    def mapping_keys(self, record: SourceRecord, payload: dict[str, Any]) -> list[Any]:
        members = self._members.get(payload["name"], [record])
        keys: list[Any] = [payload["name"]]
        for member in members:
            keys.extend([member.id, member.attr("drupal_internal__id")])
        return keys

    def failure_row(self, record: SourceRecord) -> dict[str, Any]:
        mapping = role_mapping(record)
        return {"id": record.id, "name": mapping.target_role if mapping else None}
