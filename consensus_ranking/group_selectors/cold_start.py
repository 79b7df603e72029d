"""
Cold-start screen sequences.

Before a rater has enough history for adaptive selection, screens come from
fixed blocks of 7 shuffled items. Each rater sees the blocks rotated by its
index, which balances early exposure across raters.
"""

import random
from collections.abc import Sequence

from ..models import SCREEN_SIZE


def generate_cold_start_sequence(
    item_ids: Sequence[str],
    number_of_raters: int,
    rng: random.Random | None = None,
) -> list[list[list[str]]]:
    """
    Build rotated 7-item blocks for each rater.

    Args:
        item_ids: All items to cover
        number_of_raters: How many rater sequences to produce
        rng: Random source for the single shuffle; seed it for reproducibility

    Returns:
        One list of blocks per rater index. Items left over after the last
        full block are not included.
    """
    rng = rng or random.Random()
    shuffled = list(item_ids)
    rng.shuffle(shuffled)

    blocks = [
        shuffled[start : start + SCREEN_SIZE]
        for start in range(0, len(shuffled) - SCREEN_SIZE + 1, SCREEN_SIZE)
    ]

    sequences: list[list[list[str]]] = []
    for rater_index in range(number_of_raters):
        shift = rater_index % SCREEN_SIZE
        sequences.append([block[shift:] + block[:shift] for block in blocks])
    return sequences
