"""
Sparse binary relations over internal entity indices.

A relation stores, for every row entity, the set of column indices for which
the relation holds. The same structure backs user-user trust relations and
item-attribute incidence. The expected text format is one pair per line::

    ENTITY_ID <whitespace> ENTITY_ID

Blank lines are ignored; any other token count aborts the read.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, TextIO

import numpy as np
from loguru import logger
from scipy import sparse

from .indexers import EntityMapping


class RelationFormatError(ValueError):
    """Raised when a relation or attribute line cannot be parsed."""


_EMPTY: frozenset[int] = frozenset()


class SparseBinaryRelation:
    """
    Boolean matrix stored as per-row index sets.

    Entries that were never set are false. The relation is directional: setting
    ``[a, b]`` says nothing about ``[b, a]``.
    """

    def __init__(self) -> None:
        self._rows: dict[int, set[int]] = {}
        self._num_rows = 0
        self._num_columns = 0

    def __getitem__(self, key: tuple[int, int]) -> bool:
        row, column = key
        return column in self._rows.get(row, _EMPTY)

    def __setitem__(self, key: tuple[int, int], value: bool) -> None:
        row, column = key
        if row < 0 or column < 0:
            raise IndexError(f"Negative index in relation entry {key}")
        if value:
            self._rows.setdefault(row, set()).add(column)
            self._num_rows = max(self._num_rows, row + 1)
            self._num_columns = max(self._num_columns, column + 1)
        elif row in self._rows:
            self._rows[row].discard(column)

    def row(self, index: int) -> frozenset[int]:
        """Return the set of column indices related to ``index``."""
        values = self._rows.get(index)
        if not values:
            return _EMPTY
        return frozenset(values)

    def row_size(self, index: int) -> int:
        return len(self._rows.get(index, _EMPTY))

    @property
    def num_rows(self) -> int:
        return self._num_rows

    @property
    def num_columns(self) -> int:
        return self._num_columns

    @property
    def num_entities(self) -> int:
        """Largest index inserted on either side, plus one."""
        return max(self._num_rows, self._num_columns)

    @property
    def nnz(self) -> int:
        return sum(len(values) for values in self._rows.values())

    def rows(self, num_rows: int | None = None) -> list[frozenset[int]]:
        """Materialize the per-entity sets for indices ``0..num_rows-1``."""
        count = self.num_entities if num_rows is None else num_rows
        return [self.row(index) for index in range(count)]

    def pairs(self) -> Iterator[tuple[int, int]]:
        for row in sorted(self._rows):
            for column in sorted(self._rows[row]):
                yield row, column

    def transpose(self) -> "SparseBinaryRelation":
        transposed = SparseBinaryRelation()
        for row, column in self.pairs():
            transposed[column, row] = True
        return transposed

    def to_csr(self, shape: tuple[int, int] | None = None) -> sparse.csr_matrix:
        """Return the relation as a scipy CSR matrix of ones."""
        if shape is None:
            shape = (self._num_rows, self._num_columns)
        rows: list[int] = []
        columns: list[int] = []
        for row, column in self.pairs():
            if row < shape[0] and column < shape[1]:
                rows.append(row)
                columns.append(column)
        data = np.ones(len(rows), dtype=np.float64)
        return sparse.csr_matrix((data, (rows, columns)), shape=shape)


def _parse_pair(line: str, line_number: int) -> tuple[int, int] | None:
    if not line.strip():
        return None
    tokens = line.split()
    if len(tokens) != 2:
        raise RelationFormatError(
            f"Expected exactly two columns on line {line_number}: {line.rstrip()!r}"
        )
    try:
        first, second = int(tokens[0]), int(tokens[1])
    except ValueError as exc:
        raise RelationFormatError(
            f"Expected integer IDs on line {line_number}: {line.rstrip()!r}"
        ) from exc
    if first < 0 or second < 0:
        raise RelationFormatError(
            f"Expected non-negative IDs on line {line_number}: {line.rstrip()!r}"
        )
    return first, second


def _iter_pairs(lines: Iterable[str]) -> Iterator[tuple[int, int]]:
    for line_number, line in enumerate(lines, start=1):
        pair = _parse_pair(line, line_number)
        if pair is not None:
            yield pair


def read_relation(stream: TextIO | Iterable[str], mapping: EntityMapping) -> SparseBinaryRelation:
    """
    Read a binary relation between entities of the same kind.

    Both columns are mapped through ``mapping``. A malformed line raises
    `RelationFormatError` before that line touches the mapping or the matrix.
    """
    relation = SparseBinaryRelation()
    for first, second in _iter_pairs(stream):
        relation[mapping.to_internal_id(first), mapping.to_internal_id(second)] = True
    return relation


def read_relation_file(path: Path, mapping: EntityMapping) -> SparseBinaryRelation:
    if not path.exists():
        raise FileNotFoundError(f"Relation file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        relation = read_relation(handle, mapping)
    logger.info("Read relation over {} entities from {}", relation.num_entities, path)
    return relation


def read_attributes(
    stream: TextIO | Iterable[str], mapping: EntityMapping
) -> tuple[SparseBinaryRelation, int]:
    """
    Read binary entity attributes.

    The first column is an entity ID mapped through ``mapping``; the second is
    a raw attribute index. Returns the relation and the number of attributes.
    """
    relation = SparseBinaryRelation()
    for entity, attribute in _iter_pairs(stream):
        relation[mapping.to_internal_id(entity), attribute] = True
    return relation, relation.num_columns


def read_attributes_file(
    path: Path, mapping: EntityMapping
) -> tuple[SparseBinaryRelation, int]:
    if not path.exists():
        raise FileNotFoundError(f"Attribute file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        relation, num_attributes = read_attributes(handle, mapping)
    logger.info(
        "Read {} attributes for {} entities from {}",
        num_attributes,
        relation.num_rows,
        path,
    )
    return relation, num_attributes
