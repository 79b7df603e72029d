"""
Simulated rater implementation.

Answers screens from latent ground-truth scores with a noise parameter, for
simulated studies and tests.
"""

import random
from collections.abc import Mapping, Sequence

from typing_extensions import override

from ..exceptions import ValidationError
from ..interfaces import Rater, RaterChoice
from ..models import SCREEN_SIZE, TOP_SIZE


class SimulatedRater(Rater):
    """
    Simulated rater for testing purposes.

    Perturbs ground-truth scores with Gaussian noise on every screen, then
    picks the three highest noisy scores as the top group and the lowest as
    the loser.
    """

    def __init__(
        self,
        rater_id: str,
        ground_truth: Mapping[str, float],
        noise: float = 0.1,
        rng: random.Random | None = None,
    ):
        """
        Initialize simulated rater.

        Args:
            rater_id: Id the rater is registered under
            ground_truth: Dict mapping item_id to true strength
            noise: Standard deviation of the Gaussian noise added per score
            rng: Random source; seed it for reproducible runs
        """
        if noise < 0:
            raise ValidationError(f"noise cannot be negative, got {noise}")
        self.rater_id = rater_id
        self.ground_truth = dict(ground_truth)
        self.noise = noise
        self.rng = rng or random.Random()

    def _noisy_score(self, item_id: str) -> float:
        true_score = self.ground_truth.get(item_id, 0.0)
        if self.noise == 0:
            return true_score
        return true_score + self.rng.gauss(0.0, self.noise)

    @override
    def choose(self, item_ids: Sequence[str]) -> RaterChoice:
        """
        Pick top 3 and loser by noisy ground truth.

        Args:
            item_ids: The 7 items of the screen

        Returns:
            RaterChoice with the best three (best first) and the worst item
        """
        if len(item_ids) != SCREEN_SIZE:
            raise ValidationError(f"Expected {SCREEN_SIZE} items, got {len(item_ids)}")

        scored = [(item_id, self._noisy_score(item_id)) for item_id in item_ids]
        scored.sort(key=lambda x: x[1], reverse=True)

        return RaterChoice(
            top3=[item_id for item_id, _ in scored[:TOP_SIZE]],
            loser=scored[-1][0],
        )

    def get_ground_truth(self) -> dict[str, float]:
        """Get ground truth scores for debugging."""
        return self.ground_truth.copy()
