"""
Matrix factorization model for explicit ratings.

The model keeps dense user and item factor matrices plus optional bias terms
and exposes a one-epoch ``iterate`` step so iteration search can drive it one
pass at a time.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Sequence

import numpy as np
import torch
from loguru import logger
from torch import nn

from factormap.data.ratings import RatingData
from factormap.utils.config import build_dataclass


@dataclass
class FactorModelConfig:
    num_factors: int = 10
    learn_rate: float = 0.01
    regularization: float = 0.015
    num_iter: int = 30
    init_mean: float = 0.0
    init_stdev: float = 0.1
    use_biases: bool = False
    batch_size: int = 256
    min_rating: float = 1.0
    max_rating: float = 5.0
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.num_factors <= 0:
            raise ValueError("num_factors must be positive.")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        if self.min_rating > self.max_rating:
            raise ValueError("min_rating must not exceed max_rating.")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any] | None) -> "FactorModelConfig":
        return build_dataclass(cls, section)


def _index_tensor(values: Sequence[int] | torch.Tensor) -> torch.Tensor:
    if torch.is_tensor(values):
        return values.long()
    return torch.tensor(np.asarray(values), dtype=torch.long)


class LatentFactorModel(nn.Module):
    """
    Biased or plain matrix factorization trained with mini-batch SGD.

    Prediction is ``global_bias + user_bias[u] + item_bias[i] + <p_u, q_i>``,
    clipped to the rating range. Bias parameters stay at zero unless
    ``use_biases`` is set.
    """

    def __init__(
        self,
        num_users: int,
        num_items: int,
        config: FactorModelConfig | None = None,
        *,
        generator: torch.Generator | None = None,
    ) -> None:
        super().__init__()
        if num_users <= 0 or num_items <= 0:
            raise ValueError("num_users and num_items must be positive.")
        self.config = config or FactorModelConfig()
        self.num_users = int(num_users)
        self.num_items = int(num_items)
        if generator is None and self.config.seed is not None:
            generator = torch.Generator().manual_seed(int(self.config.seed))
        self.generator = generator

        num_factors = self.config.num_factors
        self.user_factors = nn.Parameter(torch.zeros(self.num_users, num_factors))
        self.item_factors = nn.Parameter(torch.zeros(self.num_items, num_factors))
        self.user_bias = nn.Parameter(
            torch.zeros(self.num_users), requires_grad=self.config.use_biases
        )
        self.item_bias = nn.Parameter(
            torch.zeros(self.num_items), requires_grad=self.config.use_biases
        )
        self.register_buffer("global_bias", torch.zeros(()))

        self.num_iter = 0
        self._users: torch.Tensor | None = None
        self._items: torch.Tensor | None = None
        self._values: torch.Tensor | None = None

    def __repr__(self) -> str:
        cfg = self.config
        name = "BiasedMatrixFactorization" if cfg.use_biases else "MatrixFactorization"
        return (
            f"{name} num_factors={cfg.num_factors} regularization={cfg.regularization} "
            f"learn_rate={cfg.learn_rate} num_iter={cfg.num_iter} "
            f"init_mean={cfg.init_mean} init_stdev={cfg.init_stdev}"
        )

    def hyperparameters(self) -> dict[str, Any]:
        return asdict(self.config)

    def set_ratings(self, ratings: RatingData) -> None:
        if len(ratings) == 0:
            raise ValueError("Cannot train on an empty rating set.")
        if ratings.num_users > self.num_users or ratings.num_items > self.num_items:
            raise ValueError(
                f"Ratings reference {ratings.num_users} users / {ratings.num_items} items, "
                f"model holds {self.num_users} / {self.num_items}."
            )
        self._users = torch.tensor(ratings.users, dtype=torch.long)
        self._items = torch.tensor(ratings.items, dtype=torch.long)
        self._values = torch.tensor(ratings.values, dtype=torch.float32)
        with torch.no_grad():
            self.global_bias.fill_(float(ratings.mean))

    def initialize(self) -> None:
        cfg = self.config
        with torch.no_grad():
            self.user_factors.normal_(cfg.init_mean, cfg.init_stdev, generator=self.generator)
            self.item_factors.normal_(cfg.init_mean, cfg.init_stdev, generator=self.generator)
            self.user_bias.zero_()
            self.item_bias.zero_()
        self.num_iter = 0

    def fit(self) -> None:
        """Initialize the factors and run ``config.num_iter`` epochs."""
        self.initialize()
        for _ in range(self.config.num_iter):
            self.iterate()
        logger.debug("Trained {} for {} iterations", type(self).__name__, self.num_iter)

    def iterate(self) -> None:
        """Run one shuffled pass of mini-batch SGD over the training ratings."""
        if self._users is None or self._items is None or self._values is None:
            raise RuntimeError("set_ratings() must be called before training.")

        cfg = self.config
        trainable = [param for param in self.parameters() if param.requires_grad]
        optimizer = torch.optim.SGD(trainable, lr=cfg.learn_rate)
        order = torch.randperm(self._values.shape[0], generator=self.generator)

        for start in range(0, order.shape[0], cfg.batch_size):
            batch = order[start : start + cfg.batch_size]
            users = self._users[batch]
            items = self._items[batch]
            targets = self._values[batch]

            optimizer.zero_grad()
            errors = self._score(users, items) - targets
            penalty = (
                self.user_factors[users].pow(2).sum(dim=-1)
                + self.item_factors[items].pow(2).sum(dim=-1)
            )
            if cfg.use_biases:
                penalty = penalty + self.user_bias[users].pow(2) + self.item_bias[items].pow(2)
            loss = 0.5 * (errors.pow(2) + cfg.regularization * penalty).mean()
            loss.backward()
            optimizer.step()

        self.num_iter += 1

    def _score(self, users: torch.Tensor, items: torch.Tensor) -> torch.Tensor:
        dot = (self.user_factors[users] * self.item_factors[items]).sum(dim=-1)
        return self.global_bias + self.user_bias[users] + self.item_bias[items] + dot

    def predict(
        self, users: Sequence[int] | torch.Tensor, items: Sequence[int] | torch.Tensor
    ) -> torch.Tensor:
        """
        Predict ratings for parallel user/item index sequences.

        Pairs with an index outside the trained matrices get the global bias.
        """
        users = _index_tensor(users)
        items = _index_tensor(items)
        known = (
            (users >= 0) & (users < self.num_users) & (items >= 0) & (items < self.num_items)
        )
        with torch.no_grad():
            scores = self.global_bias.expand(users.shape).clone()
            if bool(known.any()):
                scores[known] = self._score(users[known], items[known])
            return scores.clamp(self.config.min_rating, self.config.max_rating)

    def compute_fit(self) -> float:
        """RMSE on the training ratings."""
        if self._users is None or self._items is None or self._values is None:
            raise RuntimeError("set_ratings() must be called before computing the fit.")
        predictions = self.predict(self._users, self._items)
        return float(torch.sqrt(torch.mean((predictions - self._values) ** 2)))

    def user_factor_array(self) -> np.ndarray:
        return self.user_factors.detach().cpu().numpy().astype(np.float64)

    def item_factor_array(self) -> np.ndarray:
        return self.item_factors.detach().cpu().numpy().astype(np.float64)
