"""
Rating data containers and the text reader for explicit feedback files.

Each non-blank line holds ``user item rating``, separated by whitespace, tabs,
or commas. External user/item IDs are mapped to internal indices while reading.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, TextIO

import numpy as np
import pandas as pd
from loguru import logger

from .indexers import EntityMapping


@dataclass(frozen=True)
class RatingData:
    """Parallel arrays of (user, item, rating) triples over internal indices."""

    users: np.ndarray
    items: np.ndarray
    values: np.ndarray

    def __len__(self) -> int:
        return int(self.values.shape[0])

    @property
    def num_users(self) -> int:
        return int(self.users.max()) + 1 if len(self) else 0

    @property
    def num_items(self) -> int:
        return int(self.items.max()) + 1 if len(self) else 0

    @property
    def mean(self) -> float:
        return float(self.values.mean()) if len(self) else 0.0

    def item_user_counts(self, num_items: int | None = None) -> np.ndarray:
        """Number of distinct users that rated each item."""
        size = self.num_items if num_items is None else num_items
        counts = np.zeros(size, dtype=np.int64)
        if len(self) == 0:
            return counts
        pairs = np.unique(np.stack([self.items, self.users], axis=1), axis=0)
        in_range = pairs[:, 0] < size
        np.add.at(counts, pairs[in_range, 0], 1)
        return counts

    def items_by_user(self) -> dict[int, set[int]]:
        grouped: dict[int, set[int]] = {}
        for user, item in zip(self.users.tolist(), self.items.tolist()):
            grouped.setdefault(user, set()).add(item)
        return grouped

    def describe(self) -> dict[str, float]:
        """Counts and sparsity (percentage of empty user-item cells)."""
        num_users = int(np.unique(self.users).size)
        num_items = int(np.unique(self.items).size)
        matrix_size = num_users * num_items
        sparsity = 100.0 * (matrix_size - len(self)) / matrix_size if matrix_size else 100.0
        return {
            "users": num_users,
            "items": num_items,
            "ratings": len(self),
            "sparsity": sparsity,
        }

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        *,
        user_col: str = "user_idx",
        item_col: str = "item_idx",
        rating_col: str = "rating",
    ) -> "RatingData":
        missing = {user_col, item_col, rating_col} - set(frame.columns)
        if missing:
            raise ValueError(f"Ratings frame is missing columns: {sorted(missing)}")
        return cls(
            users=frame[user_col].to_numpy(dtype=np.int64),
            items=frame[item_col].to_numpy(dtype=np.int64),
            values=frame[rating_col].to_numpy(dtype=np.float64),
        )


def _empty_ratings() -> RatingData:
    return RatingData(
        users=np.zeros(0, dtype=np.int64),
        items=np.zeros(0, dtype=np.int64),
        values=np.zeros(0, dtype=np.float64),
    )


def read_ratings(
    stream: TextIO | Iterable[str],
    user_mapping: EntityMapping,
    item_mapping: EntityMapping,
) -> RatingData:
    """
    Read ``user item rating`` lines, mapping IDs through the given mappings.

    A line with fewer than three fields raises ``ValueError`` naming its
    1-based line number; no ID from the stream is mapped in that case.
    """
    numbered = [
        (line_number, line.strip())
        for line_number, line in enumerate(stream, start=1)
        if line.strip()
    ]
    if not numbered:
        return _empty_ratings()

    frame = pd.read_csv(
        io.StringIO("\n".join(line for _, line in numbered)),
        sep=r"[\s,]+",
        engine="python",
        header=None,
    )
    if frame.shape[1] < 3:
        raise ValueError(
            f"Expected at least three columns (user item rating) on line {numbered[0][0]}, "
            f"found {frame.shape[1]}."
        )

    frame = frame.iloc[:, :3].copy()
    incomplete = np.flatnonzero(frame.isna().any(axis=1).to_numpy())
    if incomplete.size:
        line_number, line = numbered[int(incomplete[0])]
        raise ValueError(
            f"Expected at least three columns (user item rating) on line {line_number}: {line!r}"
        )

    frame.columns = ["user", "item", "rating"]
    frame["user_idx"] = [user_mapping.to_internal_id(value) for value in frame["user"].tolist()]
    frame["item_idx"] = [item_mapping.to_internal_id(value) for value in frame["item"].tolist()]
    return RatingData.from_frame(frame)


def read_ratings_file(
    path: Path, user_mapping: EntityMapping, item_mapping: EntityMapping
) -> RatingData:
    if not path.exists():
        raise FileNotFoundError(f"Ratings file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        ratings = read_ratings(handle, user_mapping, item_mapping)
    stats = ratings.describe()
    logger.info(
        "Read {} ratings from {} | users={} items={} sparsity={:.5f}",
        stats["ratings"],
        path,
        stats["users"],
        stats["items"],
        stats["sparsity"],
    )
    return ratings
