"""
Cross-rater normalization and global aggregation.

Each rater's latent scale is centered by its median and scaled by its median
absolute deviation, then combined across raters by reliability-weighted mean.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from ..logging_config import get_logger
from ..models import AgreeEntry, ConsensusReport, DisagreeEntry, ItemAggregate

# Module-level logger
logger = get_logger("normalization")

Z_95 = 1.96
SINGLE_RATER_VARIANCE = 0.1
MISSING_ITEM_VARIANCE = 1.0
LOW_VARIANCE_PERCENTILE = 10
HIGH_VARIANCE_PERCENTILE = 90


@dataclass(frozen=True)
class NormalizationResult:
    normalized_theta: dict[str, float]
    median: float
    mad: float


@dataclass(frozen=True)
class RaterRatings:
    """One rater's normalized latent values and reliability weight."""

    rater_id: str
    normalized_theta: Mapping[str, float]
    reliability_weight: float = 1.0


def normalize_rater_ratings(theta: Mapping[str, float]) -> NormalizationResult:
    """
    Robustly rescale one rater's latent values.

    Returns (theta - median) / MAD. A MAD of zero (e.g. all values equal)
    is replaced by 1.
    """
    if not theta:
        return NormalizationResult(normalized_theta={}, median=0.0, mad=1.0)

    item_ids = list(theta.keys())
    values = np.array([theta[item_id] for item_id in item_ids], dtype=float)

    median = float(np.median(values))
    mad = float(np.median(np.abs(values - median)))
    safe_mad = 1.0 if mad == 0 else mad

    normalized = (values - median) / safe_mad
    return NormalizationResult(
        normalized_theta={item_id: float(normalized[idx]) for idx, item_id in enumerate(item_ids)},
        median=median,
        mad=safe_mad,
    )


def aggregate_global_ratings(
    rater_ratings: Sequence[RaterRatings],
    item_ids: Sequence[str],
) -> dict[str, ItemAggregate]:
    """
    Combine normalized ratings into one global estimate per item.

    mu is the reliability-weighted mean. The variance is the weighted spread
    of rater opinions, or a fixed floor when only one rater rated the item.
    The 95% interval is the Wald approximation mu +- 1.96 * sqrt(variance / n).
    Items nobody rated get mu=0, variance=1, ci=[-1.96, 1.96].
    """
    result: dict[str, ItemAggregate] = {}

    for item_id in item_ids:
        ratings = [
            (rater.normalized_theta[item_id], rater.reliability_weight)
            for rater in rater_ratings
            if item_id in rater.normalized_theta
        ]
        total_weight = sum(weight for _, weight in ratings)

        if not ratings or total_weight <= 0:
            result[item_id] = ItemAggregate(
                mu=0.0,
                variance=MISSING_ITEM_VARIANCE,
                ci_low=-Z_95,
                ci_high=Z_95,
                rater_count=0,
            )
            continue

        mu = sum(value * weight for value, weight in ratings) / total_weight

        if len(ratings) > 1:
            variance = sum(weight * (value - mu) ** 2 for value, weight in ratings) / total_weight
        else:
            variance = SINGLE_RATER_VARIANCE

        standard_error = math.sqrt(variance / len(ratings))
        result[item_id] = ItemAggregate(
            mu=mu,
            variance=variance,
            ci_low=mu - Z_95 * standard_error,
            ci_high=mu + Z_95 * standard_error,
            rater_count=len(ratings),
        )

    return result


def rank_by_mu(aggregate: Mapping[str, ItemAggregate]) -> list[tuple[str, int]]:
    """(item_id, global rank) sorted by descending mu, ranks starting at 1."""
    ordered = sorted(aggregate.keys(), key=lambda item_id: -aggregate[item_id].mu)
    return [(item_id, rank) for rank, item_id in enumerate(ordered, 1)]


def compute_consensus(
    aggregate: Mapping[str, ItemAggregate],
    rater_ratings: Sequence[RaterRatings],
    top_k: int = 10,
    ci_width_threshold: float = 0.5,
) -> ConsensusReport:
    """
    Classify items into agreement and disagreement sets.

    Agree: variance at or below the 10th percentile, ranked within top_k and
    a CI narrower than ci_width_threshold; scored 1 / (1 + variance).
    Disagree: variance at or above the 90th percentile, any rank; each entry
    lists every rater's normalized score for the item.
    """
    if not aggregate:
        return ConsensusReport(agree=[], disagree=[])

    variances = np.array([entry.variance for entry in aggregate.values()], dtype=float)
    low_threshold = float(np.percentile(variances, LOW_VARIANCE_PERCENTILE))
    high_threshold = float(np.percentile(variances, HIGH_VARIANCE_PERCENTILE))

    agree: list[AgreeEntry] = []
    disagree: list[DisagreeEntry] = []

    for item_id, rank in rank_by_mu(aggregate):
        entry = aggregate[item_id]

        if entry.variance <= low_threshold and rank <= top_k and entry.ci_width < ci_width_threshold:
            agree.append(
                AgreeEntry(
                    item_id=item_id,
                    consensus_score=1.0 / (1.0 + entry.variance),
                    variance=entry.variance,
                    rank_global=rank,
                )
            )

        if entry.variance >= high_threshold:
            spread = {
                rater.rater_id: rater.normalized_theta[item_id]
                for rater in rater_ratings
                if item_id in rater.normalized_theta
            }
            disagree.append(
                DisagreeEntry(
                    item_id=item_id,
                    variance=entry.variance,
                    rank_global=rank,
                    spread_by_rater=spread,
                )
            )

    logger.debug(
        f"Consensus: {len(agree)} agree (variance <= {low_threshold:.4f}), "
        f"{len(disagree)} disagree (variance >= {high_threshold:.4f})"
    )
    return ConsensusReport(agree=agree, disagree=disagree)


def bootstrap_confidence_intervals(
    rater_ratings: Sequence[RaterRatings],
    item_ids: Sequence[str],
    samples: int = 1000,
    rng: np.random.Generator | None = None,
) -> dict[str, tuple[float, float]]:
    """
    Percentile bootstrap intervals for mu, resampling raters with replacement.

    Args:
        rater_ratings: Normalized ratings of every participating rater
        item_ids: Items to report intervals for
        samples: Number of bootstrap resamples
        rng: Random source; pass a seeded generator for reproducible results

    Returns:
        item_id -> (2.5th percentile, 97.5th percentile) of resampled mu
    """
    if samples <= 0:
        raise ValueError(f"samples must be positive, got {samples}")
    rng = rng if rng is not None else np.random.default_rng()

    draws: dict[str, list[float]] = {item_id: [] for item_id in item_ids}
    n_raters = len(rater_ratings)

    for _ in range(samples):
        if n_raters:
            indices = rng.integers(0, n_raters, size=n_raters)
            resampled = [rater_ratings[int(idx)] for idx in indices]
        else:
            resampled = []

        result = aggregate_global_ratings(resampled, item_ids)
        for item_id in item_ids:
            draws[item_id].append(result[item_id].mu)

    low_index = int(math.floor(samples * 0.025))
    high_index = min(int(math.floor(samples * 0.975)), samples - 1)

    intervals: dict[str, tuple[float, float]] = {}
    for item_id, values in draws.items():
        ordered = sorted(values)
        intervals[item_id] = (ordered[low_index], ordered[high_index])

    logger.info(f"Bootstrap finished: {samples} resamples over {n_raters} raters, {len(item_ids)} items")
    return intervals
