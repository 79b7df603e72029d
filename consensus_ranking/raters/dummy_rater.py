"""
Dummy rater implementation for testing.

Provides deterministic and random choices for testing purposes.
"""

import random
from collections.abc import Sequence

from typing_extensions import override

from ..exceptions import ValidationError
from ..interfaces import Rater, RaterChoice
from ..models import SCREEN_SIZE, TOP_SIZE


class DummyRater(Rater):
    """
    Dummy rater for testing purposes.

    In deterministic mode the three lexicographically smallest ids win and
    the largest loses.
    """

    def __init__(self, rater_id: str = "dummy", mode: str = "deterministic", seed: int = 42):
        """
        Initialize dummy rater.

        Args:
            rater_id: Id the rater is registered under
            mode: "deterministic" or "random"
            seed: Random seed for reproducible results
        """
        if mode not in ("deterministic", "random"):
            raise ValidationError(f"Unknown mode: {mode}")
        self.rater_id = rater_id
        self.mode = mode
        self.rng = random.Random(seed)

    @override
    def choose(self, item_ids: Sequence[str]) -> RaterChoice:
        if len(item_ids) != SCREEN_SIZE:
            raise ValidationError(f"Expected {SCREEN_SIZE} items, got {len(item_ids)}")

        if self.mode == "deterministic":
            ordered = sorted(item_ids)
        else:
            ordered = list(item_ids)
            self.rng.shuffle(ordered)

        return RaterChoice(top3=ordered[:TOP_SIZE], loser=ordered[-1])
