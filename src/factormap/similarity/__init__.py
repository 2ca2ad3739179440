"""Pairwise similarity engines over sparse binary entity data."""

from .correlation import BinaryPearson, CorrelationMatrix, Cosine  # noqa: F401
