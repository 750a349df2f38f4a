"""User account stage.

Source user UUIDs are kept as target user ids, so later stages and the
media pipeline can refer to users without a lookup.
"""

from typing import Any

from cms_migration.migration.models import SourceRecord
from cms_migration.migration.stage import MigrationStage
from cms_migration.migration.stages.roles import primary_role


class UsersStage(MigrationStage):
    name = "users"
    resource_path = "/user/user"
    params = {"include": "roles,user_picture"}
    collection = "directus_users"
    natural_key = "drupal_uuid"
    mapping_entity = "users"
    audit_fields = [
        "id",
        "drupal_id",
        "drupal_uuid",
        "email",
        "first_name",
        "last_name",
        "status",
        "role",
        "subscription_type",
        "avatar",
    ]

    def should_skip(self, record: SourceRecord) -> bool:
        # uid 0 is the anonymous account
        return record.attr("drupal_internal__uid") == 0

    def role_id(self, target_role: str, role_record: SourceRecord | None) -> str | None:
        """Configured role id, else the migrated role, else the source role UUID."""
        return (
            self.ctx.config.role_ids.get(target_role)
            or self.ctx.identity.lookup("roles", target_role)
            or (role_record.id if role_record else None)
        )

    async def build_payload(self, record: SourceRecord) -> dict[str, Any]:
        roles = self.index.resolve_many(record.relationship_refs("roles"))
        mapping, role_record = primary_role(roles)
        role_id = self.role_id(mapping.target_role, role_record)

        picture = record.relationship_ref("user_picture")
        avatar = await self.ctx.media.transfer_asset(
            picture.id if picture else None, self.ctx.media_folder("users")
        )

        return {
            "id": record.id,
            "drupal_id": record.internal_id,
            "drupal_uuid": record.id,
            "email": record.attr("mail") or None,
            "first_name": record.attr("field_user_first_name", ""),
            "last_name": record.attr("field_user_last_name", ""),
            "status": "active" if record.attr("status") else "suspended",
            "role": role_id,
            "title": record.attr("field_job_t", ""),
            "description": record.processed("field_bio"),
            "company": record.attr("field_company", ""),
            "phone": record.attr("field_phone", ""),
            "subscription_type": mapping.subscription_type,
            "drupal_roles": [role.attr("drupal_internal__id") for role in roles],
            "avatar": avatar,
            "date_created": record.attr("created"),
        }

    def mapping_keys(self, record: SourceRecord, payload: dict[str, Any]) -> list[Any]:
        return [record.id, record.internal_id]
