"""Identity mapping store.

One JSON object per entity type, ``<entity>_mapping.json``, mapping source
UUIDs (and secondary lookup keys such as taxonomy codes) to target ids.
These files are how later stages resolve foreign keys produced by earlier
ones.
"""

import json
from pathlib import Path
from typing import Any

from cms_migration.client.exceptions import StateError
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

TargetId = str | int


class IdentityMapStore:
    """In-memory identity maps with explicit flush to disk.

    Args:
        directory: Directory holding the ``<entity>_mapping.json`` files
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._maps: dict[str, dict[str, TargetId]] = {}
        self._dirty: set[str] = set()

    def path_for(self, entity_type: str) -> Path:
        """File backing the map for an entity type.

        Args:
            entity_type: Mapping entity (``companies``, ``roles`` ...)

        Returns:
            ``<directory>/<entity_type>_mapping.json``
        """
        return self.directory / f"{entity_type}_mapping.json"

    def record_mapping(self, entity_type: str, source_id: Any, target_id: TargetId) -> None:
        """Remember ``source_id -> target_id``; persisted on the next flush."""
        if source_id in (None, "") or target_id in (None, ""):
            return
        self._entity(entity_type)[str(source_id)] = target_id
        self._dirty.add(entity_type)

    def flush(self, entity_type: str) -> Path:
        """Write the full map for ``entity_type`` to disk.

        Raises:
            StateError: If the file cannot be written
        """
        path = self.path_for(entity_type)
        mapping = self._entity(entity_type)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(mapping, indent=2), encoding="utf-8")
        except OSError as e:
            raise StateError(f"Failed to write {path}: {e}") from e

        self._dirty.discard(entity_type)
        logger.info("identity_map_flushed", entity_type=entity_type, entries=len(mapping))
        return path

    def flush_all(self) -> list[Path]:
        """Flush every map that changed since its last flush."""
        return [self.flush(entity_type) for entity_type in sorted(self._dirty)]

    def load(self, entity_type: str) -> dict[str, TargetId]:
        """Read ``<entity>_mapping.json``; a missing or unreadable file yields ``{}``."""
        path = self.path_for(entity_type)
        if not path.exists():
            logger.warning("identity_map_missing", entity_type=entity_type, path=str(path))
            return {}

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("identity_map_unreadable", entity_type=entity_type, error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.warning("identity_map_invalid", entity_type=entity_type, path=str(path))
            return {}
        return data

    def lookup(self, entity_type: str, source_id: Any) -> TargetId | None:
        """Target id for ``source_id``, loading the map from disk on first use."""
        if source_id in (None, ""):
            return None
        return self._entity(entity_type).get(str(source_id))

    def entries(self, entity_type: str) -> dict[str, TargetId]:
        """Copy of the map for ``entity_type``, including unflushed entries.

        Args:
            entity_type: Mapping entity name

        Returns:
            Source id (as a string) to target id
        """
        return dict(self._entity(entity_type))

    def _entity(self, entity_type: str) -> dict[str, TargetId]:
        if entity_type not in self._maps:
            self._maps[entity_type] = self.load(entity_type)
        return self._maps[entity_type]
