"""
Tests for BradleyTerryEstimator.

Focus on the SGD update rule, identifiability, persistence and standard errors.
"""

import math
import random

import pytest

from consensus_ranking.config import RankingConfig
from consensus_ranking.estimators.bradley_terry import BradleyTerryEstimator, logistic
from consensus_ranking.exceptions import ValidationError
from consensus_ranking.interfaces import LATENT_VECTOR_VERSION
from consensus_ranking.models import PairObservation
from consensus_ranking.pair_generator import generate_pairs

ITEMS = ["A", "B", "C", "D", "E", "F", "G"]


def random_batches(seed: int, count: int) -> list[list[PairObservation]]:
    """Build screens of 15 pairs from random 3/3/1 splits."""
    rng = random.Random(seed)
    batches = []
    for _ in range(count):
        shuffled = ITEMS.copy()
        rng.shuffle(shuffled)
        batches.append(generate_pairs(shuffled[:3], shuffled[3:6], shuffled[6], timestamp=0.0))
    return batches


class TestOnlineUpdate:
    """Test update_online behavior."""

    def test_first_step_matches_update_rule(self) -> None:
        """From zero, one A>B pair moves both by lr * 0.5 in opposite directions."""
        # Arrange
        estimator = BradleyTerryEstimator(["A", "B"], RankingConfig(lambda_=0.01, base_learning_rate=0.1))

        # Act
        estimator.update_online([PairObservation("A", "B", 1.0)])

        # Assert
        theta = estimator.get_theta()
        assert theta["A"] == pytest.approx(0.05)
        assert theta["B"] == pytest.approx(-0.05)
        assert estimator.get_step_count() == 1

    def test_learning_rate_decays_with_step_count(self) -> None:
        """The second call uses base / sqrt(2)."""
        # Arrange
        config = RankingConfig(lambda_=0.0, base_learning_rate=0.1)
        estimator = BradleyTerryEstimator(["A", "B"], config)
        estimator.update_online([PairObservation("A", "B", 1.0)])
        before = estimator.get_theta()["A"]

        # Act
        estimator.update_online([PairObservation("A", "B", 1.0)])

        # Assert
        # Two items: after re-centering each moves by half the step size
        expected_step = 0.5 * 0.1 / math.sqrt(2)
        assert estimator.get_theta()["A"] - before == pytest.approx(expected_step)

    def test_sum_is_zero_after_every_update(self) -> None:
        """Re-centering keeps sum(theta) at zero."""
        # Arrange
        estimator = BradleyTerryEstimator(ITEMS)

        for batch in random_batches(seed=7, count=30):
            # Act
            estimator.update_online(batch)

            # Assert
            assert abs(sum(estimator.get_theta().values())) < 1e-9

    def test_consistent_winner_gap_grows(self) -> None:
        """If A always beats B, theta_A - theta_B never shrinks."""
        # Arrange
        estimator = BradleyTerryEstimator(["A", "B", "C"])
        gaps = []

        # Act
        for _ in range(20):
            estimator.update_online([PairObservation("A", "B", 1 / 15), PairObservation("C", "B", 1 / 15)])
            theta = estimator.get_theta()
            gaps.append(theta["A"] - theta["B"])

        # Assert
        assert all(later >= earlier for earlier, later in zip(gaps, gaps[1:])), f"Gap shrank: {gaps}"
        assert gaps[-1] > 0

    def test_unknown_items_are_skipped(self) -> None:
        """Pairs naming untracked items are ignored, not errors."""
        # Arrange
        estimator = BradleyTerryEstimator(["A", "B"])

        # Act
        estimator.update_online([PairObservation("A", "ZZZ", 1.0), PairObservation("ZZZ", "B", 1.0)])

        # Assert
        assert estimator.get_theta() == {"A": 0.0, "B": 0.0}
        assert estimator.get_step_count() == 1, "The step still counts"

    def test_probability_is_logistic_of_difference(self) -> None:
        estimator = BradleyTerryEstimator(["A", "B"])
        assert estimator.probability("A", "B") == pytest.approx(0.5)

        estimator.update_online([PairObservation("A", "B", 1.0)])
        assert estimator.probability("A", "B") == pytest.approx(logistic(0.1))
        assert estimator.probability("A", "B") + estimator.probability("B", "A") == pytest.approx(1.0)

    def test_duplicate_item_ids_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _ = BradleyTerryEstimator(["A", "A"])


class TestRanking:
    """Test get_ranking output."""

    def test_ranking_is_dense_and_descending(self) -> None:
        # Arrange
        estimator = BradleyTerryEstimator(ITEMS)
        for batch in random_batches(seed=3, count=10):
            estimator.update_online(batch)

        # Act
        ranking = estimator.get_ranking()

        # Assert
        assert [entry.rank for entry in ranking] == list(range(1, len(ITEMS) + 1))
        thetas = [entry.theta for entry in ranking]
        assert thetas == sorted(thetas, reverse=True)
        assert {entry.item_id for entry in ranking} == set(ITEMS)

    def test_ties_keep_item_order(self) -> None:
        estimator = BradleyTerryEstimator(["C", "A", "B"])
        assert [entry.item_id for entry in estimator.get_ranking()] == ["C", "A", "B"]


class TestPersistence:
    """Test serialize / deserialize / replay."""

    def test_round_trip_preserves_future_updates(self) -> None:
        """A restored model evolves exactly like the live one."""
        # Arrange
        batches = random_batches(seed=11, count=12)
        live = BradleyTerryEstimator(ITEMS)
        for batch in batches[:6]:
            live.update_online(batch)

        # Act
        restored = BradleyTerryEstimator.deserialize(live.serialize(), ITEMS)
        for batch in batches[6:]:
            live.update_online(batch)
            restored.update_online(batch)

        # Assert
        assert restored.get_step_count() == live.get_step_count() == 12
        for item_id, value in live.get_theta().items():
            assert restored.get_theta()[item_id] == pytest.approx(value, abs=1e-12)
        assert [e.item_id for e in restored.get_ranking()] == [e.item_id for e in live.get_ranking()]

    def test_serialize_shape(self) -> None:
        estimator = BradleyTerryEstimator(["A", "B"])
        blob = estimator.serialize()
        assert blob == {"version": LATENT_VECTOR_VERSION, "theta": {"A": 0.0, "B": 0.0}, "step_count": 0}

    def test_unknown_key_rejected(self) -> None:
        blob = {"version": 1, "theta": {"A": 0.1, "B": -0.1, "X": 0.0}, "step_count": 2}
        with pytest.raises(ValidationError, match="unknown"):
            _ = BradleyTerryEstimator.deserialize(blob, ["A", "B"])

    def test_missing_key_rejected(self) -> None:
        blob = {"version": 1, "theta": {"A": 0.1}, "step_count": 2}
        with pytest.raises(ValidationError, match="missing"):
            _ = BradleyTerryEstimator.deserialize(blob, ["A", "B"])

    def test_wrong_version_rejected(self) -> None:
        blob = {"version": 99, "theta": {"A": 0.0, "B": 0.0}, "step_count": 0}
        with pytest.raises(ValidationError):
            _ = BradleyTerryEstimator.deserialize(blob, ["A", "B"])

    def test_malformed_blob_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _ = BradleyTerryEstimator.deserialize({"version": 1, "theta": [1, 2]}, ["A", "B"])

        with pytest.raises(ValidationError):
            _ = BradleyTerryEstimator.deserialize(
                {"version": 1, "theta": {"A": 0.0, "B": 0.0}, "step_count": -1}, ["A", "B"]
            )

    def test_replay_equals_incremental(self) -> None:
        """Replaying the log in original batch order reproduces the state."""
        # Arrange
        batches = random_batches(seed=5, count=8)
        incremental = BradleyTerryEstimator(ITEMS)
        for batch in batches:
            incremental.update_online(batch)

        # Act
        replayed = BradleyTerryEstimator.replay(batches, ITEMS)

        # Assert
        assert replayed.get_step_count() == 8
        for item_id, value in incremental.get_theta().items():
            assert replayed.get_theta()[item_id] == pytest.approx(value, abs=1e-12)


class TestStandardErrors:
    """Test compute_standard_errors."""

    def test_standard_errors_are_positive_and_finite(self) -> None:
        # Arrange
        estimator = BradleyTerryEstimator(ITEMS)
        batches = random_batches(seed=2, count=10)
        for batch in batches:
            estimator.update_online(batch)
        pairs = [pair for batch in batches for pair in batch]

        # Act
        errors = estimator.compute_standard_errors(pairs)

        # Assert
        assert set(errors) == set(ITEMS)
        assert all(math.isfinite(se) and se > 0 for se in errors.values())

    def test_singular_hessian_falls_back_to_constant(self) -> None:
        """Without pairs or shrinkage the Hessian is zero; every SE becomes 0.1."""
        # Arrange
        estimator = BradleyTerryEstimator(ITEMS, RankingConfig(lambda_=0.0))

        # Act
        errors = estimator.compute_standard_errors([])

        # Assert
        assert errors == {item_id: 0.1 for item_id in ITEMS}

    def test_fallback_value_is_configurable(self) -> None:
        estimator = BradleyTerryEstimator(["A", "B"], RankingConfig(lambda_=0.0, fallback_standard_error=0.25))
        assert estimator.compute_standard_errors([]) == {"A": 0.25, "B": 0.25}

    def test_more_evidence_means_smaller_errors(self) -> None:
        # Arrange
        estimator = BradleyTerryEstimator(ITEMS)
        pairs = [pair for batch in random_batches(seed=4, count=20) for pair in batch]

        # Act
        few = estimator.compute_standard_errors(pairs[:30])
        many = estimator.compute_standard_errors(pairs)

        # Assert
        assert all(many[item_id] < few[item_id] for item_id in ITEMS)
