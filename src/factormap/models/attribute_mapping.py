"""
Attribute-to-feature mapping for items without directly trained factors.

A linear map sends an item's binary attributes into the latent space of a
trained factor model::

    map(item) = weights[bias_row] + sum(weights[a] for a in attributes(item))

The weights are learned by one-sided SGD against the items that do have both
trained factors and attributes. Training is restarted several times from
independent Normal initialisations; the final matrix takes, for every latent
dimension, the column of the restart that fitted that dimension best.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

import numpy as np
from loguru import logger

from factormap.data.ratings import RatingData
from factormap.data.relations import SparseBinaryRelation
from factormap.data.samplers import NoEligibleItemsError, sample_eligible_item
from factormap.utils.config import build_dataclass

from .latent_factor import LatentFactorModel

# Score for user/item pairs outside the trained matrices.
UNKNOWN_SCORE = -sys.float_info.max

_NO_ATTRIBUTES = np.zeros(0, dtype=np.int64)


class MappingMode(str, Enum):
    TRAINING = "training"
    FROZEN = "frozen"


@dataclass
class MappingConfig:
    num_init_mapping: int = 5
    num_iter_mapping: int = 10
    learn_rate_mapping: float = 0.01
    reg_mapping: float = 0.1
    init_mean: float = 0.0
    init_stdev: float = 0.1
    max_sampling_attempts: int | None = None

    def __post_init__(self) -> None:
        if self.num_init_mapping <= 0:
            raise ValueError("num_init_mapping must be positive.")
        if self.num_iter_mapping < 0:
            raise ValueError("num_iter_mapping must be non-negative.")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any] | None) -> "MappingConfig":
        return build_dataclass(cls, section)


@dataclass(frozen=True)
class MappingFit:
    """Mapping quality over all eligible items."""

    per_feature: np.ndarray
    rmse: float
    penalty: float
    num_items: int


def select_best_columns(
    restart_weights: Sequence[np.ndarray],
    restart_scores: Sequence[np.ndarray],
) -> tuple[np.ndarray, np.ndarray]:
    """
    Assemble a weight matrix column by column from several restarts.

    Column ``k`` is copied from the restart with the lowest score for ``k``;
    on ties the earliest restart wins. Returns the matrix and the chosen
    restart per column.
    """
    if not restart_weights or len(restart_weights) != len(restart_scores):
        raise ValueError("Need one score vector per restart and at least one restart.")
    scores = np.vstack([np.asarray(score, dtype=np.float64) for score in restart_scores])
    picks = np.argmin(scores, axis=0)
    final = np.empty_like(restart_weights[0])
    for column, restart in enumerate(picks):
        final[:, column] = restart_weights[restart][:, column]
    return final, picks


class AttributeToFeatureMapping:
    """
    Learns and applies the attribute-to-feature weight matrix.

    Parameters
    ----------
    user_factors, item_factors:
        Trained factor matrices of shape ``(U, K)`` and ``(I, K)``.
    item_attributes:
        Relation from item index to attribute index.
    num_attributes:
        Number of attribute rows; the weight matrix has one extra bias row.
    item_user_counts:
        Number of users that interacted with each item.
    rng:
        Random source for initialisation and item sampling.
    """

    def __init__(
        self,
        *,
        user_factors: np.ndarray,
        item_factors: np.ndarray,
        item_attributes: SparseBinaryRelation,
        num_attributes: int,
        item_user_counts: Sequence[int] | np.ndarray,
        config: MappingConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.user_factors = np.asarray(user_factors, dtype=np.float64)
        self.item_factors = np.asarray(item_factors, dtype=np.float64)
        if self.user_factors.ndim != 2 or self.item_factors.ndim != 2:
            raise ValueError("Factor matrices must be two-dimensional.")
        if self.user_factors.shape[1] != self.item_factors.shape[1]:
            raise ValueError("User and item factors must share the latent dimension.")
        if self.item_factors.shape[0] == 0:
            raise ValueError("item_factors must contain at least one item.")
        if num_attributes < item_attributes.num_columns:
            raise ValueError(
                f"Attribute index {item_attributes.num_columns - 1} exceeds "
                f"num_attributes={num_attributes}."
            )

        self.config = config or MappingConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.num_factors = self.item_factors.shape[1]
        self.num_items = self.item_factors.shape[0]
        self.max_item_id = self.num_items - 1
        self.num_attributes = int(num_attributes)

        counts = np.zeros(self.num_items, dtype=np.int64)
        given = np.asarray(item_user_counts, dtype=np.int64)[: self.num_items]
        counts[: given.shape[0]] = given
        self._attributes = [
            np.array(sorted(item_attributes.row(item)), dtype=np.int64)
            for item in range(self.num_items)
        ]
        self._incidence = item_attributes.to_csr(shape=(self.num_items, self.num_attributes))
        self._eligible = np.array(
            [counts[item] > 0 and self._attributes[item].size > 0 for item in range(self.num_items)],
            dtype=bool,
        )

        self.weights = np.zeros((self.num_attributes + 1, self.num_factors), dtype=np.float64)
        self.mode = MappingMode.TRAINING
        self._version = 0
        self._cache: dict[int, tuple[int, np.ndarray]] = {}

    @classmethod
    def from_model(
        cls,
        model: LatentFactorModel,
        ratings: RatingData,
        item_attributes: SparseBinaryRelation,
        num_attributes: int,
        *,
        config: MappingConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> "AttributeToFeatureMapping":
        return cls(
            user_factors=model.user_factor_array(),
            item_factors=model.item_factor_array(),
            item_attributes=item_attributes,
            num_attributes=num_attributes,
            item_user_counts=ratings.item_user_counts(model.num_items),
            config=config,
            rng=rng,
        )

    @property
    def bias_row(self) -> int:
        return self.num_attributes

    def eligible_items(self) -> np.ndarray:
        """Items with at least one interaction and at least one attribute."""
        return np.flatnonzero(self._eligible)

    def is_eligible(self, item: int) -> bool:
        return bool(self._eligible[item])

    def freeze(self) -> None:
        self.mode = MappingMode.FROZEN

    def set_weights(self, weights: np.ndarray) -> None:
        weights = np.array(weights, dtype=np.float64)
        if weights.shape != self.weights.shape:
            raise ValueError(f"Expected weights of shape {self.weights.shape}, got {weights.shape}.")
        self.weights = weights
        self._version += 1

    def _mapped(self, item: int, weights: np.ndarray) -> np.ndarray:
        attributes = self._attributes[item] if 0 <= item < self.num_items else _NO_ATTRIBUTES
        return weights[self.bias_row] + weights[attributes].sum(axis=0)

    def map_to_latent_space(self, item: int) -> np.ndarray:
        """
        Return the mapped feature vector of ``item``.

        While training the vector is recomputed from the live weights on every
        call. Once frozen, vectors are cached per item and tagged with the
        weight version they were computed from; a stale tag forces a recompute.
        """
        if self.mode is MappingMode.TRAINING:
            return self._mapped(item, self.weights)

        cached = self._cache.get(item)
        if cached is not None and cached[0] == self._version:
            return cached[1]
        vector = self._mapped(item, self.weights)
        vector.setflags(write=False)
        self._cache[item] = (self._version, vector)
        return vector

    def sample_item(self) -> int:
        return sample_eligible_item(
            self.rng,
            num_items=self.max_item_id + 1,
            is_eligible=self.is_eligible,
            max_attempts=self.config.max_sampling_attempts,
        )

    def iterate_mapping(self) -> int:
        """
        Run one SGD step on a sampled item and return that item.

        Only dimensions where the mapped value overshoots the trained factor
        are corrected, for the item's attribute rows and the bias row.
        """
        self.mode = MappingMode.TRAINING
        item = self.sample_item()
        diff = self._mapped(item, self.weights) - self.item_factors[item]
        dims = np.flatnonzero(diff > 0)
        if dims.size == 0:
            return item

        learn_rate = self.config.learn_rate_mapping
        reg = self.config.reg_mapping
        step = diff[dims]

        block = np.ix_(self._attributes[item], dims)
        current = self.weights[block]
        self.weights[block] = current - learn_rate * (step * current + reg * current)

        bias = self.weights[self.bias_row, dims]
        self.weights[self.bias_row, dims] = bias - learn_rate * (step * bias + reg * bias)
        self._version += 1
        return item

    def compute_mapping_fit(self, weights: np.ndarray | None = None) -> MappingFit:
        """
        Squared error plus ``reg * ||weights[:, k]||`` per latent dimension.

        Averages run over the eligible items; ``rmse`` and ``penalty`` are
        additionally averaged over the dimensions.
        """
        weights = self.weights if weights is None else weights
        items = self.eligible_items()
        if items.size == 0:
            raise NoEligibleItemsError("No item has both interactions and attributes.")

        mapped = self._incidence[items] @ weights[:-1] + weights[-1]
        errors = (mapped - self.item_factors[items]) ** 2
        reg_terms = self.config.reg_mapping * np.linalg.norm(weights, axis=0)

        num_items = int(items.size)
        per_feature = errors.sum(axis=0) / num_items + reg_terms
        rmse = float(errors.sum() / (self.num_factors * num_items))
        penalty = float(reg_terms.sum() / self.num_factors)
        logger.debug(
            "Mapping fit per feature {} > {:.4f} ({:.4f})",
            np.array2string(per_feature, precision=4),
            rmse,
            penalty,
        )
        return MappingFit(per_feature=per_feature, rmse=rmse, penalty=penalty, num_items=num_items)

    def _train_restart(self, restart: int, num_steps: int) -> np.ndarray:
        cfg = self.config
        logger.debug("Restart {} | {} steps from a fresh initialisation", restart, num_steps)
        self.mode = MappingMode.TRAINING
        self.set_weights(
            self.rng.normal(cfg.init_mean, cfg.init_stdev, size=self.weights.shape)
        )
        for _ in range(num_steps):
            self.iterate_mapping()
        return self.weights.copy()

    def learn_mapping(self) -> np.ndarray:
        """
        Train ``num_init_mapping`` restarts and keep the best column of each.

        Returns the restart index picked for every latent dimension. The
        mapping is frozen afterwards.
        """
        if not self._eligible.any():
            raise NoEligibleItemsError("No item has both interactions and attributes.")

        num_steps = self.config.num_iter_mapping * max(self.max_item_id, 1)
        logger.info(
            "Learning attribute mapping | restarts={} steps_per_restart={} eligible_items={}",
            self.config.num_init_mapping,
            num_steps,
            int(self._eligible.sum()),
        )

        restart_weights: list[np.ndarray] = []
        restart_scores: list[np.ndarray] = []
        for restart in range(self.config.num_init_mapping):
            weights = self._train_restart(restart, num_steps)
            fit = self.compute_mapping_fit(weights)
            restart_weights.append(weights)
            restart_scores.append(fit.per_feature)
            logger.debug("Restart {} | rmse={:.4f} penalty={:.4f}", restart, fit.rmse, fit.penalty)

        final, picks = select_best_columns(restart_weights, restart_scores)
        for feature, restart in enumerate(picks):
            logger.info("Feature {}, pick {}", feature, int(restart))

        self.set_weights(final)
        self.freeze()
        return picks

    def predict(self, user: int, item: int) -> float:
        """
        Score ``item`` for ``user`` through the mapped item features.

        Out-of-range indices return `UNKNOWN_SCORE` instead of raising.
        """
        if user < 0 or user >= self.user_factors.shape[0]:
            return UNKNOWN_SCORE
        if item < 0 or item >= self.num_items:
            return UNKNOWN_SCORE
        return float(self.user_factors[user] @ self.map_to_latent_space(item))

    def score_items(self, user: int, items: Sequence[int]) -> np.ndarray:
        return np.array([self.predict(user, int(item)) for item in items], dtype=np.float64)
