"""
Rank-agreement statistics between raters.

Both statistics only look at items present in both rankings. When there are
too few common items the result is NaN; callers filter it out with
is_defined() instead of treating it as zero.
"""

import math
from collections.abc import Mapping, Sequence

from ..models import RankingEntry

UNDEFINED = float("nan")


def is_defined(value: float) -> bool:
    return not math.isnan(value)


def ranks_from_ranking(ranking: Sequence[RankingEntry]) -> dict[str, int]:
    return {entry.item_id: entry.rank for entry in ranking}


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def calculate_kendall_tau(ranks_a: Mapping[str, float], ranks_b: Mapping[str, float]) -> float:
    """
    Kendall's tau over the common items of two rankings.

    tau = (concordant - discordant) / C(n, 2), comparing the sign of the rank
    difference of every item pair in both rankings. NaN below 2 common items.
    """
    common = [item_id for item_id in ranks_a if item_id in ranks_b]
    n = len(common)
    if n < 2:
        return UNDEFINED

    concordant = 0
    discordant = 0
    for i in range(n):
        for j in range(i + 1, n):
            first, second = common[i], common[j]
            sign_a = _sign(ranks_a[first] - ranks_a[second])
            sign_b = _sign(ranks_b[first] - ranks_b[second])
            if sign_a == sign_b:
                concordant += 1
            else:
                discordant += 1

    total_pairs = n * (n - 1) / 2
    return (concordant - discordant) / total_pairs


def calculate_spearman_correlation(ranks_a: Mapping[str, float], ranks_b: Mapping[str, float]) -> float:
    """
    Spearman's rho over the common items: 1 - 6 * sum(d^2) / (n (n^2 - 1)).

    Common items are re-ranked 1..n within each ranking first, so rankings
    over different item sets stay comparable. NaN below 3 common items.
    """
    common = [item_id for item_id in ranks_a if item_id in ranks_b]
    n = len(common)
    if n < 3:
        return UNDEFINED

    def rerank(ranks: Mapping[str, float]) -> dict[str, int]:
        ordered = sorted(common, key=lambda item_id: ranks[item_id])
        return {item_id: position for position, item_id in enumerate(ordered, 1)}

    local_a = rerank(ranks_a)
    local_b = rerank(ranks_b)
    sum_d_squared = sum((local_a[item_id] - local_b[item_id]) ** 2 for item_id in common)
    return 1.0 - (6.0 * sum_d_squared) / (n * (n * n - 1))


def compute_kendall_tau_matrix(
    rater_rankings: Mapping[str, Mapping[str, float]],
) -> tuple[list[list[float]], list[str]]:
    """Pairwise Kendall tau between raters; the diagonal is 1."""
    rater_ids = list(rater_rankings.keys())
    n = len(rater_ids)
    matrix = [[0.0] * n for _ in range(n)]

    for i in range(n):
        for j in range(n):
            if i == j:
                matrix[i][j] = 1.0
            elif j < i:
                matrix[i][j] = matrix[j][i]
            else:
                matrix[i][j] = calculate_kendall_tau(
                    rater_rankings[rater_ids[i]], rater_rankings[rater_ids[j]]
                )

    return matrix, rater_ids
