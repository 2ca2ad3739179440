import math

import numpy as np
import pytest
import torch

from factormap.data.ratings import RatingData
from factormap.evaluation.metrics import compute_ranking_metrics, evaluate_rated, rank_items
from factormap.models import UNKNOWN_SCORE


class TableModel:
    def __init__(self, predictions, as_tensor=False):
        self.predictions = predictions
        self.as_tensor = as_tensor

    def predict(self, users, items):
        values = np.asarray(self.predictions, dtype=np.float64)
        return torch.from_numpy(values) if self.as_tensor else values


def _ratings() -> RatingData:
    return RatingData(
        users=np.array([0, 1, 2]), items=np.array([0, 0, 1]), values=np.array([4.0, 2.0, 5.0])
    )


@pytest.mark.parametrize("as_tensor", [False, True])
def test_evaluate_rated(as_tensor):
    metrics = evaluate_rated(TableModel([3.0, 2.0, 3.0], as_tensor=as_tensor), _ratings())

    assert set(metrics) == {"RMSE", "MAE"}
    assert metrics["RMSE"] == pytest.approx(math.sqrt(5.0 / 3.0))
    assert metrics["MAE"] == pytest.approx(1.0)


def test_evaluate_rated_empty_set_is_nan():
    empty = RatingData(
        users=np.zeros(0, dtype=np.int64),
        items=np.zeros(0, dtype=np.int64),
        values=np.zeros(0),
    )

    metrics = evaluate_rated(TableModel([]), empty)

    assert math.isnan(metrics["RMSE"])
    assert math.isnan(metrics["MAE"])


def test_rank_items_drops_unknown_and_excluded():
    scores = [0.5, UNKNOWN_SCORE, 0.9, 0.5, 0.1]
    candidates = [10, 11, 12, 13, 14]

    assert rank_items(scores, candidates, k=3, exclude={12}) == [10, 13, 14]
    assert rank_items(scores, candidates, k=10) == [12, 10, 13, 14]


def test_compute_ranking_metrics():
    predictions = {
        0: [3, 2, 1],
        1: [4, 5, 6],
        2: [7],
    }
    ground_truth = {
        0: {1, 2},
        1: {4},
        2: set(),
    }
    metrics = compute_ranking_metrics(predictions, ground_truth, [1, 2, 3])

    assert metrics.num_users == 2  # user 2 has nothing to find
    assert metrics.recall[1] == 0.5  # user0 miss, user1 hit => (0 + 1)/2
    assert metrics.precision[1] == 0.5
    assert metrics.hit_rate[1] == 0.5
    assert metrics.recall[3] > metrics.recall[1]
    assert metrics.mrr == pytest.approx((0.5 + 1.0) / 2)
    assert metrics.ndcg[3] <= 1.0
