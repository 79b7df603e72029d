"""
Tests for normalization, aggregation, consensus and bootstrap.
"""

import math

import numpy as np
import pytest

from consensus_ranking.aggregation.normalization import (
    RaterRatings,
    aggregate_global_ratings,
    bootstrap_confidence_intervals,
    compute_consensus,
    normalize_rater_ratings,
    rank_by_mu,
)
from consensus_ranking.models import ItemAggregate


class TestNormalizeRaterRatings:
    """Test median/MAD scaling."""

    def test_constant_values_normalize_to_zero(self) -> None:
        """A MAD of zero is replaced by 1, giving all-zero output."""
        # Act
        result = normalize_rater_ratings({"a": 0.7, "b": 0.7, "c": 0.7})

        # Assert
        assert result.normalized_theta == {"a": 0.0, "b": 0.0, "c": 0.0}
        assert result.mad == 1.0

    def test_median_and_mad_scaling(self) -> None:
        """Outliers do not move the center or the scale."""
        # Act
        result = normalize_rater_ratings({"a": 1.0, "b": 2.0, "c": 3.0, "d": 4.0, "e": 100.0})

        # Assert
        assert result.median == 3.0
        assert result.mad == 1.0
        assert result.normalized_theta == pytest.approx({"a": -2.0, "b": -1.0, "c": 0.0, "d": 1.0, "e": 97.0})

    def test_empty_input(self) -> None:
        assert normalize_rater_ratings({}).normalized_theta == {}


class TestAggregateGlobalRatings:
    """Test weighted aggregation and Wald intervals."""

    def test_single_rater_mu_equals_normalized_values(self) -> None:
        # Arrange
        normalized = {"a": 1.5, "b": -0.25, "c": 0.0}
        ratings = [RaterRatings("r1", normalized, reliability_weight=1.0)]

        # Act
        aggregate = aggregate_global_ratings(ratings, ["a", "b", "c"])

        # Assert
        for item_id, value in normalized.items():
            assert aggregate[item_id].mu == value
            assert aggregate[item_id].variance == 0.1, "Single-rater items use the variance floor"
            half_width = 1.96 * math.sqrt(0.1)
            assert aggregate[item_id].ci_low == pytest.approx(value - half_width)
            assert aggregate[item_id].ci_high == pytest.approx(value + half_width)
            assert aggregate[item_id].rater_count == 1

    def test_weighted_mean_scenario(self) -> None:
        """2.0 at weight 0.9 and -2.0 at weight 0.1 give mu = 1.6."""
        # Arrange
        ratings = [
            RaterRatings("r1", {"x": 2.0}, reliability_weight=0.9),
            RaterRatings("r2", {"x": -2.0}, reliability_weight=0.1),
        ]

        # Act
        aggregate = aggregate_global_ratings(ratings, ["x"])

        # Assert
        entry = aggregate["x"]
        assert entry.mu == pytest.approx(1.6)
        assert entry.variance == pytest.approx(0.9 * 0.4**2 + 0.1 * 3.6**2)
        half_width = 1.96 * math.sqrt(entry.variance / 2)
        assert entry.ci_low == pytest.approx(1.6 - half_width)
        assert entry.ci_high == pytest.approx(1.6 + half_width)

    def test_unrated_item_gets_missing_default(self) -> None:
        # Arrange
        ratings = [RaterRatings("r1", {"a": 1.0})]

        # Act
        aggregate = aggregate_global_ratings(ratings, ["a", "b"])

        # Assert
        assert aggregate["b"] == ItemAggregate(mu=0.0, variance=1.0, ci_low=-1.96, ci_high=1.96, rater_count=0)

    def test_zero_weight_raters_count_as_missing(self) -> None:
        ratings = [RaterRatings("r1", {"a": 1.0}, reliability_weight=0.0)]
        assert aggregate_global_ratings(ratings, ["a"])["a"].mu == 0.0

    def test_rank_by_mu(self) -> None:
        aggregate = aggregate_global_ratings(
            [RaterRatings("r1", {"a": -1.0, "b": 2.0, "c": 0.5})], ["a", "b", "c"]
        )
        assert rank_by_mu(aggregate) == [("b", 1), ("c", 2), ("a", 3)]


def make_aggregate(variances: list[float]) -> dict[str, ItemAggregate]:
    """Items i0..iN with descending mu and narrow intervals."""
    aggregate = {}
    for i, variance in enumerate(variances):
        mu = float(len(variances) - i)
        aggregate[f"i{i}"] = ItemAggregate(mu=mu, variance=variance, ci_low=mu - 0.1, ci_high=mu + 0.1, rater_count=2)
    return aggregate


class TestConsensus:
    """Test agree / disagree classification."""

    def test_low_and_high_variance_items(self) -> None:
        # Arrange
        aggregate = make_aggregate([i / 10 for i in range(10)])
        ratings = [
            RaterRatings("r1", {"i9": 1.0}),
            RaterRatings("r2", {"i9": -1.0}),
        ]

        # Act
        report = compute_consensus(aggregate, ratings, top_k=10, ci_width_threshold=0.5)

        # Assert
        assert [entry.item_id for entry in report.agree] == ["i0"]
        assert report.agree[0].consensus_score == pytest.approx(1.0)
        assert report.agree[0].rank_global == 1
        assert [entry.item_id for entry in report.disagree] == ["i9"]
        assert report.disagree[0].rank_global == 10
        assert report.disagree[0].spread_by_rater == {"r1": 1.0, "r2": -1.0}

    def test_agree_requires_top_k(self) -> None:
        """A low-variance item outside the top K is not in the agree set."""
        # Arrange
        aggregate = make_aggregate([0.9, 0.5, 0.5, 0.5, 0.0])

        # Act
        report = compute_consensus(aggregate, [], top_k=3)

        # Assert
        assert report.agree == []

    def test_agree_requires_narrow_interval(self) -> None:
        # Arrange
        aggregate = make_aggregate([0.0, 0.5, 0.5, 0.5, 0.9])
        wide = aggregate["i0"]
        aggregate["i0"] = ItemAggregate(wide.mu, wide.variance, wide.mu - 1.0, wide.mu + 1.0, 2)

        # Act
        report = compute_consensus(aggregate, [], top_k=10, ci_width_threshold=0.5)

        # Assert
        assert report.agree == []
        assert [entry.item_id for entry in report.disagree] == ["i4"]

    def test_empty_aggregate(self) -> None:
        report = compute_consensus({}, [])
        assert report.agree == [] and report.disagree == []


class TestBootstrap:
    """Test bootstrap_confidence_intervals."""

    def test_reproducible_with_seeded_generator(self) -> None:
        # Arrange
        ratings = [
            RaterRatings("r1", {"a": 1.0, "b": -1.0}),
            RaterRatings("r2", {"a": 0.5, "b": 0.0}),
            RaterRatings("r3", {"a": 2.0, "b": -0.5}),
        ]

        # Act
        first = bootstrap_confidence_intervals(ratings, ["a", "b"], samples=200, rng=np.random.default_rng(42))
        second = bootstrap_confidence_intervals(ratings, ["a", "b"], samples=200, rng=np.random.default_rng(42))

        # Assert
        assert first == second, "Same seed should give the same intervals"
        for low, high in first.values():
            assert low <= high
        assert 0.5 <= first["a"][0] and first["a"][1] <= 2.0, "Resampled means stay within the rater values"

    def test_single_rater_interval_collapses(self) -> None:
        ratings = [RaterRatings("r1", {"a": 0.75})]
        intervals = bootstrap_confidence_intervals(ratings, ["a"], samples=50, rng=np.random.default_rng(0))
        assert intervals["a"] == (0.75, 0.75)

    def test_samples_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            _ = bootstrap_confidence_intervals([], ["a"], samples=0)
