"""
Migration module for CMS Bridge.

Source record models, relationship resolution and the identity map store.
Stages and their collaborators live in :mod:`cms_migration.migration.stage`.
"""

from cms_migration.migration.identity import IdentityMapStore
from cms_migration.migration.models import (
    FetchResult,
    MediaAsset,
    RelationshipRef,
    SourceRecord,
    UpsertAction,
    UpsertResult,
)
from cms_migration.migration.resolver import RelationshipIndex, resolve, resolve_many

__all__ = [
    "FetchResult",
    "IdentityMapStore",
    "MediaAsset",
    "RelationshipIndex",
    "RelationshipRef",
    "SourceRecord",
    "UpsertAction",
    "UpsertResult",
    "resolve",
    "resolve_many",
]
