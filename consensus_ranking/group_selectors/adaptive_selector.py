"""
Adaptive selector implementation.

Chooses the 7 items of the next screen from TOP/MID/LOW strength buckets,
favouring uncertain and rarely shown items, plus one stable anchor item that
keeps latent scales comparable across rounds. Also decides when a rater's
session has collected enough evidence.
"""

import functools
import math
from collections.abc import Mapping, Sequence

from typing_extensions import override

from ..aggregation.correlation import calculate_kendall_tau, is_defined, ranks_from_ranking
from ..config import RankingConfig
from ..exceptions import ExhaustionError
from ..interfaces import Selector
from ..logging_config import get_logger
from ..models import SCREEN_SIZE, ItemStats, RankingEntry, StopDecision

# Module-level logger
logger = get_logger("adaptive_selector")

UNCERTAINTY_TIE_TOLERANCE = 0.1
ANCHOR_MAX_UNCERTAINTY = 0.5
ANCHOR_MIN_EXPOSURE = 3
EXPOSURE_CAP = 10
EXPOSURE_BONUS = 0.1


def combination_key(item_ids: Sequence[str]) -> str:
    """Canonical key of a screen: sorted ids joined by '-'."""
    return "-".join(sorted(item_ids))


def _compare_priority(a: ItemStats, b: ItemStats) -> float:
    uncertainty_diff = b.uncertainty - a.uncertainty
    if abs(uncertainty_diff) > UNCERTAINTY_TIE_TOLERANCE:
        return uncertainty_diff
    return a.exposure_count - b.exposure_count


def prioritize(items: Sequence[ItemStats]) -> list[ItemStats]:
    """Highest uncertainty first; near-equal uncertainties go to the least exposed."""
    return sorted(items, key=functools.cmp_to_key(_compare_priority))


def _stability(item: ItemStats) -> float:
    return -item.uncertainty + EXPOSURE_BONUS * min(item.exposure_count, EXPOSURE_CAP)


class AdaptiveSelector(Selector):
    """Uncertainty-driven screen selector with anchors and stopping rules."""

    def __init__(self, config: RankingConfig | None = None):
        """Initialize adaptive selector.

        Args:
            config: Supplies bucket counts and fractions and the stopping thresholds
        """
        self.config: RankingConfig = config or RankingConfig()

    @override
    def select_screen(
        self,
        items: Sequence[ItemStats],
        recent_combinations: set[str] | None = None,
        unknown_item_ids: set[str] | None = None,
    ) -> list[ItemStats]:
        return self.select_7_items(items, recent_combinations, unknown_item_ids)

    def select_7_items(
        self,
        items: Sequence[ItemStats],
        recent_combinations: set[str] | None = None,
        unknown_item_ids: set[str] | None = None,
    ) -> list[ItemStats]:
        """
        Select 7 items for the next screen.

        1. Drop items the rater marked unknown
        2. Bucket the rest into TOP/MID/LOW by theta
        3. Take the highest-priority items from each bucket
        4. Add anchor items, then fill up by priority
        5. If the combination was shown recently, swap one item once

        Raises:
            ExhaustionError: If fewer than 7 known items remain
        """
        recent = recent_combinations or set()
        unknown = unknown_item_ids or set()
        criteria = self.config.selection

        known = [item for item in items if item.item_id not in unknown]
        if len(known) < SCREEN_SIZE:
            raise ExhaustionError(
                f"Not enough known items for a screen: {len(known)} < {SCREEN_SIZE}"
            )

        top, mid, low = self._categorize_to_buckets(known)

        selected: list[ItemStats] = []
        selected.extend(prioritize(top)[: criteria.top_count])
        selected.extend(prioritize(mid)[: criteria.mid_count])
        selected.extend(prioritize(low)[: criteria.low_count])

        for _ in range(criteria.anchor_count):
            anchor = self._select_anchor(known, selected)
            if anchor is None:
                break
            selected.append(anchor)

        while len(selected) < SCREEN_SIZE:
            chosen_ids = {item.item_id for item in selected}
            remaining = [item for item in known if item.item_id not in chosen_ids]
            if not remaining:
                break
            selected.append(prioritize(remaining)[0])

        selected = selected[:SCREEN_SIZE]

        key = combination_key([item.item_id for item in selected])
        if key in recent:
            logger.debug(f"Combination {key} shown recently, perturbing once")
            selected = self._perturb_selection(selected, known)

        logger.debug(f"Selected screen: {[item.item_id for item in selected]}")
        return selected

    def _categorize_to_buckets(
        self, items: Sequence[ItemStats]
    ) -> tuple[list[ItemStats], list[ItemStats], list[ItemStats]]:
        """Split items sorted by theta into TOP, MID and LOW."""
        ordered = sorted(items, key=lambda item: -item.theta)
        n = len(ordered)
        top_size = math.ceil(n * self.config.selection.top_fraction)
        low_size = min(math.ceil(n * self.config.selection.low_fraction), n - top_size)

        top = ordered[:top_size]
        mid = ordered[top_size : n - low_size]
        low = ordered[n - low_size :]
        return top, mid, low

    def _select_anchor(self, known: Sequence[ItemStats], selected: Sequence[ItemStats]) -> ItemStats | None:
        """Pick a well-covered, low-uncertainty item not yet on the screen."""
        selected_ids = {item.item_id for item in selected}
        remaining = [item for item in known if item.item_id not in selected_ids]
        if not remaining:
            return None

        candidates = [
            item
            for item in remaining
            if item.uncertainty < ANCHOR_MAX_UNCERTAINTY and item.exposure_count >= ANCHOR_MIN_EXPOSURE
        ]
        if not candidates:
            return remaining[0]

        return max(candidates, key=_stability)

    def _perturb_selection(self, selected: list[ItemStats], known: Sequence[ItemStats]) -> list[ItemStats]:
        """Replace the lowest-priority selected item with the best unused one.

        Done once; the result is accepted even if it still collides.
        """
        selected_ids = {item.item_id for item in selected}
        alternatives = [item for item in known if item.item_id not in selected_ids]
        if not alternatives:
            logger.debug("No alternative items available, keeping repeated combination")
            return selected

        least = min(selected, key=lambda item: item.uncertainty - EXPOSURE_BONUS * item.exposure_count)
        best = prioritize(alternatives)[0]
        return [best if item.item_id == least.item_id else item for item in selected]

    def check_stop_criteria(
        self,
        current_ranking: Sequence[RankingEntry],
        previous_ranking: Sequence[RankingEntry] | None,
        exposure_counts: Mapping[str, int],
        total_screens: int,
    ) -> StopDecision:
        """
        Decide whether a rater's session is statistically sufficient.

        Args:
            current_ranking: Ranking after the latest decision
            previous_ranking: Ranking before it, if any
            exposure_counts: item_id -> times shown, for every tracked item
            total_screens: Screens the rater has answered
        """
        config = self.config

        if total_screens >= config.max_screens_per_rater:
            return StopDecision(True, f"Reached the screen ceiling ({config.max_screens_per_rater})")

        if exposure_counts:
            min_exposure = min(exposure_counts.values())
            if min_exposure < config.min_exposure_per_item:
                return StopDecision(
                    False,
                    f"Coverage incomplete: minimum exposure {min_exposure} < {config.min_exposure_per_item}",
                )

        if previous_ranking and total_screens >= config.stop.min_screens_for_stability:
            tau = calculate_kendall_tau(
                ranks_from_ranking(current_ranking), ranks_from_ranking(previous_ranking)
            )
            if is_defined(tau) and tau >= config.stop.kendall_tau_threshold:
                return StopDecision(True, f"Ranking stable (Kendall tau {tau:.3f})")

        if total_screens >= config.target_screens_per_rater:
            return StopDecision(True, f"Reached the target screen count ({config.target_screens_per_rater})")

        return StopDecision(False, f"Continue: {total_screens}/{config.target_screens_per_rater} screens")
