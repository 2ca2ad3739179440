"""
Iteration search for iterative models.

`IterativeTrainingController` advances a model one training pass at a time.
Every ``find_iter`` iterations it evaluates held-out error, records the result,
and writes a checkpoint. Training halts on epsilon convergence, on a hard
RMSE/MAE cutoff, or when ``max_iter`` is reached; each halt is a distinct
`TrainingState`.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import numpy as np
import torch
from loguru import logger
from torch import nn

from factormap.models.persistence import load_model, save_model
from factormap.utils.config import build_dataclass

REQUIRED_METRICS = ("RMSE", "MAE")


class IterativeModel(Protocol):
    num_iter: int

    def fit(self) -> None: ...

    def iterate(self) -> None: ...

    def compute_fit(self) -> float: ...


class TrainingState(str, Enum):
    NOT_STARTED = "not_started"
    TRAINING = "training"
    CHECKPOINTING = "checkpointing"
    CONVERGED = "converged"
    CUTOFF_REACHED = "cutoff_reached"
    MAX_ITER_REACHED = "max_iter_reached"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"


HALTED_STATES = frozenset(
    {
        TrainingState.CONVERGED,
        TrainingState.CUTOFF_REACHED,
        TrainingState.MAX_ITER_REACHED,
        TrainingState.INTERRUPTED,
        TrainingState.COMPLETED,
    }
)


@dataclass
class IterationConfig:
    find_iter: int = 0
    max_iter: int = 500
    epsilon: float = 0.0
    rmse_cutoff: float = math.inf
    mae_cutoff: float = math.inf
    compute_fit: bool = False
    save_model: str | None = None
    load_model: str | None = None

    def __post_init__(self) -> None:
        self.epsilon = float(self.epsilon)
        self.rmse_cutoff = float(self.rmse_cutoff)
        self.mae_cutoff = float(self.mae_cutoff)
        if self.find_iter < 0:
            raise ValueError("find_iter must be non-negative.")
        if self.max_iter < 0:
            raise ValueError("max_iter must be non-negative.")
        if self.epsilon < 0:
            raise ValueError("epsilon must be non-negative.")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any] | None) -> "IterationConfig":
        return build_dataclass(cls, section)


@dataclass(frozen=True)
class EvaluationRecord:
    iteration: int
    metrics: dict[str, float]
    fit: float | None = None

    @property
    def rmse(self) -> float:
        return self.metrics["RMSE"]

    @property
    def mae(self) -> float:
        return self.metrics["MAE"]


@dataclass(frozen=True)
class TimingSummary:
    minimum: float
    maximum: float
    mean: float
    count: int


@dataclass
class IterationHistory:
    """Append-only record of timings and evaluations."""

    training_times: list[float] = field(default_factory=list)
    fit_times: list[float] = field(default_factory=list)
    eval_times: list[float] = field(default_factory=list)
    evaluations: list[EvaluationRecord] = field(default_factory=list)

    @property
    def rmse(self) -> list[float]:
        return [record.rmse for record in self.evaluations]

    @property
    def iterations(self) -> list[int]:
        return [record.iteration for record in self.evaluations]

    def metric_series(self) -> dict[str, list[float]]:
        series: dict[str, list[float]] = {}
        for record in self.evaluations:
            for name, value in record.metrics.items():
                series.setdefault(name, []).append(value)
            if record.fit is not None:
                series.setdefault("fit", []).append(record.fit)
        return series

    def timing_stats(self) -> dict[str, TimingSummary]:
        stats: dict[str, TimingSummary] = {}
        for name, values in (
            ("iteration_time", self.training_times),
            ("eval_time", self.eval_times),
            ("fit_time", self.fit_times),
        ):
            if values:
                stats[name] = TimingSummary(
                    minimum=float(np.min(values)),
                    maximum=float(np.max(values)),
                    mean=float(np.mean(values)),
                    count=len(values),
                )
        return stats


def _clone_state_dict(module: nn.Module) -> dict[str, torch.Tensor]:
    return {key: value.detach().cpu().clone() for key, value in module.state_dict().items()}


class IterativeTrainingController:
    """
    Drive an iterative model through training with periodic evaluation.

    Parameters
    ----------
    model:
        Object exposing ``fit()``, ``iterate()``, ``compute_fit()`` and a
        ``num_iter`` counter.
    evaluate:
        Zero-argument callable returning held-out metrics with at least the
        keys ``RMSE`` and ``MAE``.
    config:
        Iteration search settings.
    save_fn, load_fn:
        Checkpoint collaborators; default to `factormap.models.persistence`.
    """

    def __init__(
        self,
        model: IterativeModel,
        evaluate: Callable[[], Mapping[str, float]],
        config: IterationConfig | None = None,
        *,
        save_fn: Callable[..., Any] = save_model,
        load_fn: Callable[[Any, str | Path], int] = load_model,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.model = model
        self.evaluate = evaluate
        self.config = config or IterationConfig()
        self._save = save_fn
        self._load = load_fn
        self._timer = timer

        self.state = TrainingState.NOT_STARTED
        self.history = IterationHistory()
        self.iteration = 0
        self.initial_metrics: dict[str, float] | None = None

    @property
    def halted(self) -> bool:
        return self.state in HALTED_STATES

    def _evaluate(self) -> dict[str, float]:
        metrics = dict(self.evaluate())
        missing = [name for name in REQUIRED_METRICS if name not in metrics]
        if missing:
            raise KeyError(f"Evaluation result is missing metric(s): {', '.join(missing)}")
        return metrics

    def _train_or_load(self) -> None:
        if self.config.load_model:
            self.iteration = int(self._load(self.model, self.config.load_model))
            self.model.num_iter = self.iteration
            return
        self.model.fit()
        self.iteration = int(self.model.num_iter)

    def start(self) -> dict[str, float]:
        """Train from scratch or resume from a checkpoint, then evaluate once."""
        if self.state is not TrainingState.NOT_STARTED:
            raise RuntimeError(f"Controller already started (state={self.state.value}).")

        logger.info("{}", self.model)
        self._train_or_load()
        self.state = TrainingState.TRAINING

        fit_prefix = ""
        if self.config.compute_fit:
            fit_prefix = f"fit {self.model.compute_fit():.5f} "
        self.initial_metrics = self._evaluate()
        logger.info(
            "{}RMSE {:.5f} MAE {:.5f} | iteration {}",
            fit_prefix,
            self.initial_metrics["RMSE"],
            self.initial_metrics["MAE"],
            self.iteration,
        )

        if self.iteration >= self.config.max_iter:
            self._halt(TrainingState.MAX_ITER_REACHED)
        return self.initial_metrics

    def step(self) -> TrainingState:
        """Run the next iteration and apply the evaluation and stopping rules."""
        if self.state is TrainingState.NOT_STARTED:
            raise RuntimeError("Call start() before step().")
        if self.halted:
            return self.state

        iteration = self.iteration + 1
        snapshot = _clone_state_dict(self.model) if isinstance(self.model, nn.Module) else None
        started = self._timer()
        try:
            self.model.iterate()
        except KeyboardInterrupt:
            if snapshot is not None:
                self.model.load_state_dict(snapshot)
            self.model.num_iter = self.iteration
            raise
        self.history.training_times.append(self._timer() - started)
        self.iteration = iteration
        self.model.num_iter = iteration

        if self.config.find_iter and iteration % self.config.find_iter == 0:
            self._evaluation_round(iteration)

        if not self.halted and iteration >= self.config.max_iter:
            logger.info("Reached max_iter after {} iterations.", iteration)
            self._halt(TrainingState.MAX_ITER_REACHED)
        return self.state

    def _evaluation_round(self, iteration: int) -> None:
        fit: float | None = None
        if self.config.compute_fit:
            started = self._timer()
            fit = float(self.model.compute_fit())
            self.history.fit_times.append(self._timer() - started)

        started = self._timer()
        metrics = self._evaluate()
        self.history.eval_times.append(self._timer() - started)

        record = EvaluationRecord(iteration=iteration, metrics=metrics, fit=fit)
        self.history.evaluations.append(record)
        logger.info(
            "{}RMSE {:.5f} MAE {:.5f} | iteration {}",
            f"fit {fit:.5f} " if fit is not None else "",
            record.rmse,
            record.mae,
            iteration,
        )

        self.state = TrainingState.CHECKPOINTING
        self._save(self.model, self.config.save_model, iteration)
        self.state = TrainingState.TRAINING

        best_rmse = min(self.history.rmse)
        if self.config.epsilon > 0 and record.rmse > best_rmse + self.config.epsilon:
            logger.info("{:.5f} >> {:.5f}", record.rmse, best_rmse)
            logger.info("Reached convergence on validation data after {} iterations.", iteration)
            self._halt(TrainingState.CONVERGED)
            return
        if record.rmse > self.config.rmse_cutoff or record.mae > self.config.mae_cutoff:
            logger.info("Reached cutoff after {} iterations.", iteration)
            self._halt(TrainingState.CUTOFF_REACHED)

    def _halt(self, state: TrainingState) -> None:
        self.state = state
        self.report_stats()
        self._save(self.model, self.config.save_model)

    def _run_single_pass(self) -> TrainingState:
        logger.info("{}", self.model)
        self._train_or_load()
        if not self.config.load_model:
            self._save(self.model, self.config.save_model)
        self.initial_metrics = self._evaluate()
        logger.info(
            "RMSE {:.5f} MAE {:.5f}", self.initial_metrics["RMSE"], self.initial_metrics["MAE"]
        )
        self.state = TrainingState.COMPLETED
        return self.state

    def run(self) -> TrainingState:
        """
        Train until a stopping rule fires.

        With ``find_iter == 0`` the model is trained (or loaded) once and
        evaluated. A ``KeyboardInterrupt`` leaves the model at the last
        completed iteration, logs the timing statistics gathered so far, and
        is re-raised.
        """
        if self.config.find_iter == 0:
            return self._run_single_pass()

        try:
            if self.state is TrainingState.NOT_STARTED:
                self.start()
            while not self.halted:
                self.step()
        except KeyboardInterrupt:
            self.state = TrainingState.INTERRUPTED
            logger.warning("Training interrupted after {} completed iterations.", self.iteration)
            self.report_stats()
            raise
        return self.state

    def report_stats(self) -> dict[str, TimingSummary]:
        stats = self.history.timing_stats()
        for name, summary in stats.items():
            if name == "fit_time" and not self.config.compute_fit:
                continue
            logger.info(
                "{}: min={:.2f}, max={:.2f}, avg={:.2f}",
                name,
                summary.minimum,
                summary.maximum,
                summary.mean,
            )
        return stats
