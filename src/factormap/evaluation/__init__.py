"""Evaluation helpers for rating error and ranking quality."""

from .metrics import (  # noqa: F401
    RankingMetrics,
    compute_ranking_metrics,
    evaluate_rated,
    per_user_metrics,
    rank_items,
)
