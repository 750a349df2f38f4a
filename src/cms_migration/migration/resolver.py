"""Relationship resolution against side-loaded records."""

from collections.abc import Iterable

from cms_migration.migration.models import RelationshipRef, SourceRecord


def resolve(ref: RelationshipRef | None, included: Iterable[SourceRecord]) -> SourceRecord | None:
    """Return the included record matching ``ref`` by ``(type, id)``, or None."""
    if ref is None:
        return None
    for record in included:
        if record.type == ref.type and record.id == ref.id:
            return record
    return None


def resolve_many(
    refs: Iterable[RelationshipRef], included: Iterable[SourceRecord]
) -> list[SourceRecord]:
    """Resolve each ref in order, dropping the ones with no match."""
    index = RelationshipIndex(included)
    return index.resolve_many(refs)


class RelationshipIndex:
    """``(type, id)`` lookup table built once per fetch.

    Same semantics as :func:`resolve`; the first record seen for a key wins.
    """

    def __init__(self, included: Iterable[SourceRecord] = ()):
        self._records: dict[tuple[str, str], SourceRecord] = {}
        for record in included:
            self._records.setdefault(record.key, record)

    def __len__(self) -> int:
        return len(self._records)

    def resolve(self, ref: RelationshipRef | None) -> SourceRecord | None:
        """Included record for ``ref``.

        Args:
            ref: Relationship reference, possibly None for an empty relationship

        Returns:
            The matching record, or None when absent from ``included``
        """
        if ref is None:
            return None
        return self._records.get(ref.key)

    def resolve_many(self, refs: Iterable[RelationshipRef]) -> list[SourceRecord]:
        """Resolve ``refs`` in order; unresolved refs are dropped."""
        return [record for record in map(self.resolve, refs) if record is not None]
