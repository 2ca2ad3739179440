"""
Rating prediction run orchestration.

Reads the rating, attribute and relation files named in the configuration,
drives the iteration search for the factor model, and optionally learns the
attribute-to-feature mapping and an item similarity matrix on top of it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path
from typing import Any, Mapping

import numpy as np
from loguru import logger

from factormap.data import (
    EntityMapping,
    RatingData,
    SparseBinaryRelation,
    read_attributes_file,
    read_ratings_file,
    read_relation_file,
)
from factormap.evaluation import (
    RankingMetrics,
    compute_ranking_metrics,
    evaluate_rated,
    rank_items,
)
from factormap.models import (
    AttributeToFeatureMapping,
    FactorModelConfig,
    LatentFactorModel,
    MappingConfig,
)
from factormap.reporting import save_metric_curves
from factormap.similarity import BinaryPearson, CorrelationMatrix, Cosine

from .iterative import IterationConfig, IterationHistory, IterativeTrainingController, TrainingState


@dataclass
class RatingPredictionResult:
    state: TrainingState
    iterations: int
    metrics: dict[str, float]
    history: IterationHistory
    model: LatentFactorModel
    mapping: AttributeToFeatureMapping | None = None
    mapping_metrics: RankingMetrics | None = None
    metric_plot_path: Path | None = None
    similarity_path: Path | None = None
    user_relation: SparseBinaryRelation | None = None


def _resolve(root: Path, name: str | None) -> Path | None:
    if not name:
        return None
    path = Path(name)
    return path if path.is_absolute() else root / path


def _build_similarity(
    method: str, attributes: SparseBinaryRelation, num_items: int, num_attributes: int
) -> CorrelationMatrix:
    if method == "cosine":
        matrix: CorrelationMatrix = Cosine(num_items)
    elif method == "pearson":
        matrix = BinaryPearson(num_items, num_attributes)
    else:
        raise ValueError(f"Unknown similarity method '{method}'.")
    matrix.compute_correlations(attributes)
    return matrix


def evaluate_mapped_ranking(
    mapping: AttributeToFeatureMapping,
    train: RatingData,
    test: RatingData,
    *,
    k_values: list[int],
) -> RankingMetrics:
    """Rank all items per test user by mapped score, skipping training items."""
    seen = train.items_by_user()
    candidates = np.arange(mapping.num_items)
    max_k = max(k_values)
    predictions: dict[int, list[int]] = {}
    for user, relevant in test.items_by_user().items():
        if user >= mapping.user_factors.shape[0] or not relevant:
            continue
        scores = mapping.score_items(user, candidates)
        predictions[user] = rank_items(
            scores, candidates, k=max_k, exclude=seen.get(user, set())
        )
    return compute_ranking_metrics(predictions, test.items_by_user(), k_values)


def run_rating_prediction(config: Mapping[str, Any]) -> RatingPredictionResult:
    experiment_cfg = dict(config.get("experiment", {}))
    seed = experiment_cfg.get("seed")
    data_cfg = dict(config.get("data", {}))
    root = Path(data_cfg.get("root", "data"))

    training_file = _resolve(root, data_cfg.get("training_file"))
    test_file = _resolve(root, data_cfg.get("test_file"))
    if training_file is None or test_file is None:
        raise ValueError("data.training_file and data.test_file are required.")

    user_mapping = EntityMapping()
    item_mapping = EntityMapping()

    logger.info("Loading training ratings from {}", training_file)
    train = read_ratings_file(training_file, user_mapping, item_mapping)

    attributes: SparseBinaryRelation | None = None
    num_attributes = 0
    attributes_file = _resolve(root, data_cfg.get("item_attributes"))
    if attributes_file is not None:
        attributes, num_attributes = read_attributes_file(attributes_file, item_mapping)
        logger.info("{} item attributes", num_attributes)

    user_relation: SparseBinaryRelation | None = None
    relation_file = _resolve(root, data_cfg.get("user_relation"))
    if relation_file is not None:
        user_relation = read_relation_file(relation_file, user_mapping)
        logger.info("User relation over {} users", user_relation.num_entities)

    # Entities first seen in the test file stay outside the trained matrices.
    num_users = len(user_mapping)
    num_items = len(item_mapping)
    test = read_ratings_file(test_file, user_mapping, item_mapping)

    model_cfg = FactorModelConfig.from_mapping(config.get("model"))
    if model_cfg.seed is None and seed is not None:
        model_cfg = replace(model_cfg, seed=int(seed))
    model = LatentFactorModel(num_users, num_items, model_cfg)
    model.set_ratings(train)

    iteration_cfg = IterationConfig.from_mapping(config.get("iteration"))
    controller = IterativeTrainingController(
        model, partial(evaluate_rated, model, test), iteration_cfg
    )
    state = controller.run()
    metrics = evaluate_rated(model, test)
    logger.info(
        "Final | state={} iterations={} RMSE={:.5f} MAE={:.5f}",
        state.value,
        controller.iteration,
        metrics["RMSE"],
        metrics["MAE"],
    )

    result = RatingPredictionResult(
        state=state,
        iterations=controller.iteration,
        metrics=metrics,
        history=controller.history,
        model=model,
        user_relation=user_relation,
    )

    similarity_cfg = dict(config.get("similarity") or {})
    similarity_output = similarity_cfg.get("output")
    if similarity_output and attributes is not None:
        matrix = _build_similarity(
            str(similarity_cfg.get("method", "cosine")), attributes, num_items, num_attributes
        )
        result.similarity_path = Path(similarity_output)
        result.similarity_path.parent.mkdir(parents=True, exist_ok=True)
        np.save(result.similarity_path, matrix.data)
        logger.info("Saved item similarity matrix to {}", result.similarity_path)

    if config.get("mapping") is not None:
        if attributes is None:
            raise ValueError("The mapping section requires data.item_attributes.")
        mapping_cfg = MappingConfig.from_mapping(config.get("mapping"))
        rng = np.random.default_rng(seed)
        mapping = AttributeToFeatureMapping.from_model(
            model, train, attributes, num_attributes, config=mapping_cfg, rng=rng
        )
        mapping.learn_mapping()
        k_values = [int(k) for k in config.get("evaluation", {}).get("k_values", [5, 10])]
        ranking = evaluate_mapped_ranking(mapping, train, test, k_values=k_values)
        for k in k_values:
            logger.info(
                "Mapped ranking @{} | recall={:.4f} precision={:.4f} ndcg={:.4f}",
                k,
                ranking.recall[k],
                ranking.precision[k],
                ranking.ndcg[k],
            )
        result.mapping = mapping
        result.mapping_metrics = ranking

    report_cfg = dict(config.get("report") or {})
    plot_path = report_cfg.get("metric_plot")
    if plot_path and controller.history.evaluations:
        history = controller.history
        series = {key: value for key, value in history.metric_series().items() if key in ("RMSE", "MAE", "fit")}
        result.metric_plot_path = save_metric_curves(
            series, iterations=history.iterations, output_path=plot_path
        )

    summary_path = report_cfg.get("summary")
    if summary_path:
        _write_summary(Path(summary_path), result)
    return result


def _write_summary(path: Path, result: RatingPredictionResult) -> None:
    payload = {
        "state": result.state.value,
        "iterations": result.iterations,
        "metrics": result.metrics,
        "evaluations": [
            {"iteration": record.iteration, **record.metrics, "fit": record.fit}
            for record in result.history.evaluations
        ],
        "timing": {
            name: {"min": stats.minimum, "max": stats.maximum, "avg": stats.mean}
            for name, stats in result.history.timing_stats().items()
        },
    }
    if result.mapping_metrics is not None:
        payload["mapping"] = {
            "recall": result.mapping_metrics.recall,
            "precision": result.mapping_metrics.precision,
            "ndcg": result.mapping_metrics.ndcg,
            "mrr": result.mapping_metrics.mrr,
        }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Wrote run summary to {}", path)
