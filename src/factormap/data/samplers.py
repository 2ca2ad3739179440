"""Rejection sampling utilities."""

from __future__ import annotations

from typing import Callable

import numpy as np


class NoEligibleItemsError(RuntimeError):
    """Raised when no candidate passes the eligibility predicate."""


def sample_eligible_item(
    rng: np.random.Generator,
    *,
    num_items: int,
    is_eligible: Callable[[int], bool],
    max_attempts: int | None = None,
) -> int:
    """
    Draw item indices uniformly from ``[0, num_items)`` until one is eligible.

    With ``max_attempts=None`` the sampler retries indefinitely, so callers
    must make sure at least one eligible item exists.
    """
    if num_items <= 0:
        raise ValueError("num_items must be greater than zero.")
    if max_attempts is not None and max_attempts <= 0:
        raise ValueError("max_attempts must be positive when given.")

    attempts = 0
    while True:
        item = int(rng.integers(0, num_items))
        if is_eligible(item):
            return item
        attempts += 1
        if max_attempts is not None and attempts >= max_attempts:
            raise NoEligibleItemsError(
                f"Exceeded {max_attempts} sampling attempts without an eligible item."
            )
