"""Plotting helpers for iteration-search artefacts."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

import matplotlib

# Plots are only ever written to disk.
matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt  # noqa: E402


def save_metric_curves(
    metric_history: Mapping[str, Sequence[float]],
    *,
    iterations: Sequence[int],
    output_path: Path | str,
    title: str = "Held-out error per evaluated iteration",
) -> Path:
    """
    Plot every metric series against the iterations it was evaluated at.

    Parameters
    ----------
    metric_history:
        Mapping of series label (``RMSE``, ``MAE``, ``fit``) to values, one per
        entry of ``iterations``.
    iterations:
        Iteration counts of the evaluations.
    output_path:
        Target image path. Directories are created automatically.
    """
    output_path = Path(output_path)
    series = {label: values for label, values in metric_history.items() if len(values)}
    if not series:
        raise ValueError("Metric history is empty; nothing to plot.")
    for label, values in series.items():
        if len(values) != len(iterations):
            raise ValueError(
                f"Series '{label}' has {len(values)} points for {len(iterations)} iterations."
            )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(8, 5))
    for label, values in series.items():
        ax.plot(iterations, values, marker="o", linestyle="-", label=label)

    ax.set_xlabel("Iteration")
    ax.set_ylabel("Error")
    ax.set_title(title)
    ax.grid(True, linestyle="--", linewidth=0.5, alpha=0.7)
    ax.legend()

    fig.tight_layout()
    fig.savefig(output_path, dpi=180)
    plt.close(fig)
    return output_path
