"""Rating-error and ranking metric utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import torch
from loguru import logger

from factormap.data.ratings import RatingData
from factormap.models.attribute_mapping import UNKNOWN_SCORE


def evaluate_rated(model: Any, ratings: RatingData) -> dict[str, float]:
    """
    Compare the model's predictions with held-out ratings.

    Returns a mapping with exactly the keys ``RMSE`` and ``MAE``; both are NaN
    for an empty evaluation set.
    """
    if len(ratings) == 0:
        logger.warning("Evaluation set is empty; RMSE and MAE are undefined.")
        return {"RMSE": float("nan"), "MAE": float("nan")}

    predictions = model.predict(ratings.users, ratings.items)
    if torch.is_tensor(predictions):
        predictions = predictions.detach().cpu().numpy()
    errors = np.asarray(predictions, dtype=np.float64) - ratings.values
    return {
        "RMSE": float(np.sqrt(np.mean(errors**2))),
        "MAE": float(np.mean(np.abs(errors))),
    }


def rank_items(
    scores: Sequence[float],
    candidates: Sequence[int],
    *,
    k: int,
    exclude: Iterable[int] = (),
) -> list[int]:
    """
    Return the ``k`` best-scored candidates.

    Candidates scored `UNKNOWN_SCORE` and candidates in ``exclude`` are
    dropped before ranking; ties keep the candidate order.
    """
    excluded = set(exclude)
    scores = np.asarray(scores, dtype=np.float64)
    order = np.argsort(-scores, kind="stable")
    ranked: list[int] = []
    for position in order:
        item = int(candidates[position])
        if scores[position] == UNKNOWN_SCORE or item in excluded:
            continue
        ranked.append(item)
        if len(ranked) == k:
            break
    return ranked


@dataclass(frozen=True)
class RankingMetrics:
    recall: dict[int, float]
    precision: dict[int, float]
    ndcg: dict[int, float]
    hit_rate: dict[int, float]
    map: dict[int, float]
    mrr: float
    num_users: int


def _ndcg(predicted: Sequence[int], relevant: set[int], k: int) -> float:
    discounts = 1.0 / np.log2(np.arange(2, k + 2))
    gains = np.array([1.0 if item in relevant else 0.0 for item in predicted[:k]])
    dcg = float(np.sum(gains * discounts[: gains.size]))
    ideal = float(np.sum(discounts[: min(k, len(relevant))]))
    return dcg / ideal if ideal > 0 else 0.0


def _average_precision(predicted: Sequence[int], relevant: set[int], k: int) -> float:
    if not relevant:
        return 0.0
    hits = 0
    total = 0.0
    for rank, item in enumerate(predicted[:k], start=1):
        if item in relevant:
            hits += 1
            total += hits / rank
    return total / min(len(relevant), k)


def per_user_metrics(
    predicted: Sequence[int],
    relevant: set[int],
    k_values: Iterable[int],
) -> dict[str, float]:
    metrics: dict[str, float] = {}
    for k in sorted(k_values):
        hits = len(set(predicted[:k]) & relevant)
        metrics[f"recall@{k}"] = hits / max(len(relevant), 1)
        metrics[f"precision@{k}"] = hits / max(k, 1)
        metrics[f"hit_rate@{k}"] = float(hits > 0)
        metrics[f"ndcg@{k}"] = _ndcg(predicted, relevant, k)
        metrics[f"map@{k}"] = _average_precision(predicted, relevant, k)
    metrics["mrr"] = next(
        (1.0 / rank for rank, item in enumerate(predicted, start=1) if item in relevant),
        0.0,
    )
    return metrics


def compute_ranking_metrics(
    predictions: dict[int, Sequence[int]],
    ground_truth: dict[int, set[int]],
    k_values: Iterable[int],
) -> RankingMetrics:
    """Average per-user ranking metrics over users with a non-empty ground truth."""
    k_values = sorted(k_values)
    rows = [
        per_user_metrics(ranked, ground_truth[user], k_values)
        for user, ranked in predictions.items()
        if ground_truth.get(user)
    ]

    def average(key: str) -> float:
        return float(np.mean([row[key] for row in rows])) if rows else 0.0

    return RankingMetrics(
        recall={k: average(f"recall@{k}") for k in k_values},
        precision={k: average(f"precision@{k}") for k in k_values},
        ndcg={k: average(f"ndcg@{k}") for k in k_values},
        hit_rate={k: average(f"hit_rate@{k}") for k in k_values},
        map={k: average(f"map@{k}") for k in k_values},
        mrr=average("mrr"),
        num_users=len(rows),
    )
