"""Checkpoint persistence for iterative models."""

from __future__ import annotations

import time
from pathlib import Path

import torch
from loguru import logger
from torch import nn


def checkpoint_path(path: Path | str, iteration: int | None = None) -> Path:
    """Return ``path`` itself, or ``<path>-it-<iteration>`` for per-iteration checkpoints."""
    path = Path(path)
    if iteration is None:
        return path
    return path.with_name(f"{path.name}-it-{iteration}")


def save_model(
    model: nn.Module, path: Path | str | None, iteration: int | None = None
) -> Path | None:
    """
    Persist ``model`` to ``path``; an empty path disables saving.

    The payload records the iteration count so a resumed run continues after
    it rather than repeating completed iterations.
    """
    if not path:
        return None

    target = checkpoint_path(path, iteration)
    target.parent.mkdir(parents=True, exist_ok=True)
    hyperparameters = getattr(model, "hyperparameters", None)
    state = {
        "iteration": int(iteration if iteration is not None else getattr(model, "num_iter", 0)),
        "model_state_dict": model.state_dict(),
        "hyperparameters": hyperparameters() if callable(hyperparameters) else {},
        "timestamp": time.time(),
    }
    torch.save(state, target)
    logger.debug("Saved checkpoint for iteration {} to {}", state["iteration"], target)
    return target


def load_model(model: nn.Module, path: Path | str) -> int:
    """Restore ``model`` from a checkpoint and return its iteration count."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    state = torch.load(path, map_location="cpu", weights_only=True)
    model.load_state_dict(state["model_state_dict"])
    iteration = int(state.get("iteration", 0))
    model.num_iter = iteration
    logger.info("Loaded checkpoint {} at iteration {}", path, iteration)
    return iteration
