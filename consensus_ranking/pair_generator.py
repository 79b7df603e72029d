"""
Conversion of one screen decision into weighted pairwise observations.

A 3/3/1 decision yields 15 pairs of weight 1/15 each:
top > (middle + loser) gives 12 pairs, middle > loser gives 3 pairs.
"""

import time
from collections.abc import Sequence

from .exceptions import ValidationError
from .models import MIDDLE_SIZE, TOP_SIZE, Decision, PairObservation

PAIRS_PER_SCREEN = TOP_SIZE * (MIDDLE_SIZE + 1) + MIDDLE_SIZE
PAIR_WEIGHT = 1.0 / PAIRS_PER_SCREEN


def generate_pairs(
    top3: Sequence[str],
    middle: Sequence[str],
    loser: str,
    rater_id: str = "unknown",
    timestamp: float | None = None,
) -> list[PairObservation]:
    """
    Generate the 15 pair observations for one screen.

    Args:
        top3: The three items picked as best
        middle: The three items neither picked as best nor as worst
        loser: The item picked as worst
        rater_id: Rater the observations belong to
        timestamp: Shared timestamp for all pairs (defaults to now)

    Returns:
        Pairs in a deterministic order: each top item against the middle
        items and the loser, then each middle item against the loser.

    Raises:
        ValidationError: If the inputs are not 3/3/1 distinct items
    """
    if len(top3) != TOP_SIZE:
        raise ValidationError(f"top3 must contain exactly {TOP_SIZE} items, got {len(top3)}")
    if len(middle) != MIDDLE_SIZE:
        raise ValidationError(f"middle must contain exactly {MIDDLE_SIZE} items, got {len(middle)}")
    all_ids = [*top3, *middle, loser]
    if len(set(all_ids)) != len(all_ids):
        raise ValidationError(f"Items must not overlap between categories: {all_ids}")

    ts = time.time() if timestamp is None else timestamp
    pairs: list[PairObservation] = []

    for top_id in top3:
        for other_id in [*middle, loser]:
            pairs.append(PairObservation(top_id, other_id, PAIR_WEIGHT, rater_id, ts))

    for mid_id in middle:
        pairs.append(PairObservation(mid_id, loser, PAIR_WEIGHT, rater_id, ts))

    return pairs


def generate_pairs_from_decision(decision: Decision, rater_id: str = "unknown") -> list[PairObservation]:
    """Generate pairs for an already validated decision."""
    return generate_pairs(
        decision.top3,
        decision.middle,
        decision.loser,
        rater_id=rater_id,
        timestamp=decision.timestamp,
    )
