"""
Cross-rater aggregation.

Makes independently scaled rater models comparable and combines them.

Available functions:
- normalize_rater_ratings / aggregate_global_ratings: median/MAD scaling and
  reliability-weighted global estimates with Wald intervals
- compute_consensus: agreement / disagreement classification
- bootstrap_confidence_intervals: rater-resampling percentile intervals
- calculate_kendall_tau / calculate_spearman_correlation: rank agreement
"""

from .correlation import (
    UNDEFINED,
    calculate_kendall_tau,
    calculate_spearman_correlation,
    compute_kendall_tau_matrix,
    is_defined,
    ranks_from_ranking,
)
from .normalization import (
    NormalizationResult,
    RaterRatings,
    aggregate_global_ratings,
    bootstrap_confidence_intervals,
    compute_consensus,
    normalize_rater_ratings,
    rank_by_mu,
)

__all__ = [
    "UNDEFINED",
    "calculate_kendall_tau",
    "calculate_spearman_correlation",
    "compute_kendall_tau_matrix",
    "is_defined",
    "ranks_from_ranking",
    "NormalizationResult",
    "RaterRatings",
    "aggregate_global_ratings",
    "bootstrap_confidence_intervals",
    "compute_consensus",
    "normalize_rater_ratings",
    "rank_by_mu",
]
