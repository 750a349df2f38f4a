"""Migration stages in dependency order.

Taxonomies, roles and users come first because companies and projects
resolve their foreign keys through the identity maps those stages write.
"""

from collections.abc import Callable

from cms_migration.migration.stage import MigrationStage, StageContext
from cms_migration.migration.stages.companies import CompaniesStage
from cms_migration.migration.stages.projects import ProjectsStage
from cms_migration.migration.stages.roles import RolesStage
from cms_migration.migration.stages.taxonomy import taxonomy_stages
from cms_migration.migration.stages.users import UsersStage

StageFactory = Callable[[StageContext], list[MigrationStage]]

STAGE_ORDER: tuple[str, ...] = ("taxonomies", "roles", "users", "companies", "projects")

STAGES: dict[str, StageFactory] = {
    "taxonomies": taxonomy_stages,
    "roles": lambda ctx: [RolesStage(ctx)],
    "users": lambda ctx: [UsersStage(ctx)],
    "companies": lambda ctx: [CompaniesStage(ctx)],
    "projects": lambda ctx: [ProjectsStage(ctx)],
}

__all__ = [
    "STAGES",
    "STAGE_ORDER",
    "CompaniesStage",
    "ProjectsStage",
    "RolesStage",
    "UsersStage",
    "taxonomy_stages",
]
