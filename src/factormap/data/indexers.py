"""
Indexing utilities that map external identifiers to contiguous integer ranges.

Readers push every identifier they see through an `EntityMapping`, so the rest
of the toolkit only ever deals with dense internal indices `0..N-1`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Hashable, Iterable


@dataclass
class EntityMapping:
    """Bidirectional mapping between external IDs and contiguous indices."""

    id_to_index: dict[Hashable, int] = field(default_factory=dict)
    index_to_id: list[Hashable] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.index_to_id)

    def __contains__(self, external_id: Hashable) -> bool:
        return external_id in self.id_to_index

    def to_internal_id(self, external_id: Hashable) -> int:
        """Return the internal index, allocating the next one on first sight."""
        index = self.id_to_index.get(external_id)
        if index is None:
            index = len(self.index_to_id)
            self.id_to_index[external_id] = index
            self.index_to_id.append(external_id)
        return index

    def lookup(self, external_id: Hashable) -> int:
        try:
            return self.id_to_index[external_id]
        except KeyError as exc:
            raise KeyError(f"ID '{external_id}' missing from entity mapping") from exc

    def to_external_id(self, index: int) -> Hashable:
        if index < 0:
            raise IndexError(f"Index {index} out of bounds for mapping")
        try:
            return self.index_to_id[index]
        except IndexError as exc:
            raise IndexError(f"Index {index} out of bounds for mapping") from exc


def build_index_mapping(values: Iterable[Hashable]) -> EntityMapping:
    """
    Create an EntityMapping that preserves the order of first appearance.

    Parameters
    ----------
    values:
        Iterable of external identifiers (user IDs, item IDs, attribute IDs).
    """
    mapping = EntityMapping()
    for value in values:
        mapping.to_internal_id(value)
    return mapping
