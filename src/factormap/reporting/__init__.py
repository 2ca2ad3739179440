"""Reporting helpers for training runs."""

from .plots import save_metric_curves  # noqa: F401
