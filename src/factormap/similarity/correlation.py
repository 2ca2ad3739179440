"""
Dense similarity matrices over entities described by sparse binary vectors.

`CorrelationMatrix` owns the pairwise engine: it walks every pair ``i < j``,
skips entities without attributes, and writes each score into both halves of
the symmetric matrix. Subclasses plug in the pairwise similarity function.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import AbstractSet, Sequence

import numpy as np
from loguru import logger

from factormap.data.relations import SparseBinaryRelation

EntityData = SparseBinaryRelation | Sequence[AbstractSet[int]]


def _entity_sets(entity_data: EntityData, num_entities: int) -> list[AbstractSet[int]]:
    if isinstance(entity_data, SparseBinaryRelation):
        return entity_data.rows(num_entities)
    sets = list(entity_data)
    if len(sets) > num_entities:
        raise ValueError(
            f"Got attribute sets for {len(sets)} entities, matrix holds {num_entities}."
        )
    sets.extend(frozenset() for _ in range(num_entities - len(sets)))
    return sets


class CorrelationMatrix(ABC):
    """Symmetric ``num_entities x num_entities`` matrix of similarity scores."""

    def __init__(self, num_entities: int) -> None:
        if num_entities < 0:
            raise ValueError("num_entities must be non-negative.")
        self.num_entities = int(num_entities)
        self.data = np.zeros((self.num_entities, self.num_entities), dtype=np.float32)

    def __getitem__(self, key: tuple[int, int]) -> float:
        row, column = key
        return float(self.data[row, column])

    @abstractmethod
    def compute_correlation(self, vector_i: AbstractSet[int], vector_j: AbstractSet[int]) -> float:
        """Similarity of two attribute sets."""

    def compute_correlations(self, entity_data: EntityData) -> None:
        """
        Fill the matrix from per-entity attribute sets.

        The diagonal is set to 1 for every entity. Pairs where either side has
        no attributes are never computed and keep their default of 0.
        """
        sets = _entity_sets(entity_data, self.num_entities)
        logger.info(
            "Computing {} for {} entities", type(self).__name__, self.num_entities
        )

        for i in range(self.num_entities):
            self.data[i, i] = 1.0
            attributes_i = sets[i]
            if not attributes_i:
                continue

            if i % 5000 == 4999:
                logger.debug("{}/{} entities done", i + 1, self.num_entities)

            for j in range(i + 1, self.num_entities):
                attributes_j = sets[j]
                if not attributes_j:
                    continue
                correlation = self.compute_correlation(attributes_i, attributes_j)
                self.data[i, j] = correlation
                self.data[j, i] = correlation

    def nearest_neighbors(self, entity: int, k: int) -> list[int]:
        """Return the ``k`` most similar other entities, ties broken by index."""
        if k <= 0:
            return []
        scores = self.data[entity].astype(np.float64)
        scores[entity] = -np.inf
        order = np.argsort(-scores, kind="stable")
        return [int(index) for index in order[: min(k, self.num_entities - 1)]]

    def positively_correlated(self, entity: int) -> list[int]:
        """Return all other entities with a positive score, most similar first."""
        scores = self.data[entity]
        order = np.argsort(-scores.astype(np.float64), kind="stable")
        return [int(index) for index in order if index != entity and scores[index] > 0]


class Cosine(CorrelationMatrix):
    """Cosine similarity between binary vectors: ``|A & B| / sqrt(|A| |B|)``."""

    @staticmethod
    def compute_correlation(vector_i: AbstractSet[int], vector_j: AbstractSet[int]) -> float:
        smaller, larger = (vector_i, vector_j) if len(vector_i) <= len(vector_j) else (vector_j, vector_i)
        overlap = 0
        for attribute in smaller:
            if attribute in larger:
                overlap += 1
        return overlap / math.sqrt(len(vector_i) * len(vector_j))

    def compute_correlations_sparse(self, relation: SparseBinaryRelation) -> None:
        """
        Same result as `compute_correlations`, computed with a sparse product.

        Overlap counts come from ``X @ X.T`` on the CSR incidence matrix, which
        only touches pairs sharing at least one attribute.
        """
        incidence = relation.to_csr(shape=(self.num_entities, relation.num_columns))
        overlaps = (incidence @ incidence.T).toarray()
        sizes = np.asarray(incidence.sum(axis=1)).ravel()

        scores = np.zeros_like(overlaps)
        present = sizes > 0
        norms = np.sqrt(np.outer(sizes, sizes))
        both = np.outer(present, present)
        scores[both] = overlaps[both] / norms[both]

        self.data = scores.astype(np.float32)
        np.fill_diagonal(self.data, 1.0)


class BinaryPearson(CorrelationMatrix):
    """
    Pearson correlation between binary vectors of length ``num_attributes``.

    Pairs where either vector has zero variance (no attribute or every
    attribute set) score 0.
    """

    def __init__(self, num_entities: int, num_attributes: int) -> None:
        super().__init__(num_entities)
        if num_attributes <= 0:
            raise ValueError("num_attributes must be positive.")
        self.num_attributes = int(num_attributes)

    def compute_correlation(self, vector_i: AbstractSet[int], vector_j: AbstractSet[int]) -> float:
        n = self.num_attributes
        size_i = len(vector_i)
        size_j = len(vector_j)
        overlap = len(vector_i & vector_j)
        denominator = math.sqrt((n * size_i - size_i**2) * (n * size_j - size_j**2))
        if denominator == 0:
            return 0.0
        return (n * overlap - size_i * size_j) / denominator
