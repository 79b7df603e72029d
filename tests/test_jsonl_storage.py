"""
Tests for JSONLStorage implementation.

Focus on persistence and data integrity.
"""

import tempfile
from pathlib import Path

import pytest

from consensus_ranking.exceptions import ValidationError
from consensus_ranking.group_selectors.adaptive_selector import combination_key
from consensus_ranking.models import Decision, PairObservation, RaterProfile, Screen
from consensus_ranking.storage.jsonl_storage import JSONLStorage

SHOWN = ("A", "B", "C", "D", "E", "F", "G")


class TestJSONLStorage:
    """Test JSONLStorage behavior through public interface."""

    def test_items_and_raters(self) -> None:
        """Registered items and raters come back in insertion order."""
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))

            # Act
            storage.register_items(["x", "a", "m"])
            storage.upsert_rater(RaterProfile("r2", reliability_weight=0.5))
            storage.upsert_rater(RaterProfile("r1"))
            storage.upsert_rater(RaterProfile("r2", reliability_weight=0.7, active=False))

            # Assert
            assert storage.list_items() == ["x", "a", "m"]
            raters = storage.list_raters()
            assert [r.rater_id for r in raters] == ["r2", "r1"], "Update keeps the original position"
            assert raters[0].reliability_weight == 0.7
            assert raters[0].active is False

    def test_duplicate_items_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = JSONLStorage(Path(temp_dir))
            with pytest.raises(ValidationError):
                storage.register_items(["a", "a"])

    def test_latent_vector_replaced_atomically(self) -> None:
        """Each put replaces the blob and leaves no temp files behind."""
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            assert storage.get_latent_vector("r1") is None

            # Act
            storage.put_latent_vector("r1", {"version": 1, "theta": {"a": 0.5, "b": -0.5}, "step_count": 1})
            storage.put_latent_vector("r1", {"version": 1, "theta": {"a": 0.7, "b": -0.7}, "step_count": 2})

            # Assert
            blob = storage.get_latent_vector("r1")
            assert blob == {"version": 1, "theta": {"a": 0.7, "b": -0.7}, "step_count": 2}
            rater_dir = Path(temp_dir) / "raters" / "r1"
            assert not list(rater_dir.glob("*.tmp")), "No temp files should remain"

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_corrupt_latent_vector_raises(self, content: str) -> None:
        """An unreadable vector is reported, never mistaken for a missing one."""
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            storage.put_latent_vector("r1", {"version": 1, "theta": {"a": 0.0}, "step_count": 1})
            _ = (Path(temp_dir) / "raters" / "r1" / "latent_vector.json").write_text(content, encoding="utf-8")

            # Act / Assert
            with pytest.raises(ValidationError):
                _ = storage.get_latent_vector("r1")

    def test_pairs_append_in_order(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            first = [PairObservation("a", "b", 0.5, "r1", 1.0), PairObservation("a", "c", 0.5, "r1", 1.0)]
            second = [PairObservation("c", "b", 1.0, "r1", 2.0)]

            # Act
            storage.append_pair_observations("r1", first)
            storage.append_pair_observations("r1", second)
            loaded = list(storage.load_pair_observations("r1"))

            # Assert
            assert loaded == first + second
            assert list(storage.load_pair_observations("r2")) == [], "Raters are isolated"

    def test_corrupted_lines_are_skipped(self) -> None:
        """A broken line does not hide the valid ones."""
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            storage.append_pair_observations("r1", [PairObservation("a", "b", 1.0, "r1", 1.0)])
            pairs_path = Path(temp_dir) / "raters" / "r1" / "pairs.jsonl"
            with open(pairs_path, "a") as f:
                f.write("{truncated\n")
                f.write('{"winner_id": "a", "loser_id": "a", "weight": 1.0}\n')
                f.write("[1, 2]\n")
            storage.append_pair_observations("r1", [PairObservation("b", "c", 1.0, "r1", 2.0)])

            # Act
            loaded = list(storage.load_pair_observations("r1"))

            # Assert
            assert [(p.winner_id, p.loser_id) for p in loaded] == [("a", "b"), ("b", "c")]

    def test_screens_and_recent_combinations(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            screens = [
                Screen("r1", SHOWN, screen_id="s1"),
                Screen("r1", ("H", "B", "C", "D", "E", "F", "G"), screen_id="s2"),
                Screen("r1", ("G", "F", "E", "D", "C", "B", "A"), screen_id="s3"),
            ]

            # Act
            for screen in screens:
                storage.record_screen(screen)

            # Assert
            assert storage.count_screens("r1") == 3
            assert storage.get_screen("r1", "s2") == screens[1]
            assert storage.get_screen("r1", "missing") is None
            assert storage.get_recent_combinations("r1", 2) == {
                combination_key(screens[1].item_ids),
                combination_key(SHOWN),
            }
            assert storage.get_recent_combinations("r1", 0) == set()

    def test_decisions(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            decision = Decision.from_choice("s1", SHOWN, ["A", "B", "C"], "G")

            # Act
            storage.persist_decision("r1", decision)

            # Assert
            assert storage.get_decision("r1", "s1") == decision
            assert storage.get_decision("r1", "s2") is None
            assert storage.count_decisions("r1") == 1
            assert storage.count_decisions("r2") == 0

    def test_exposure_and_unknown_items(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))

            # Act
            storage.upsert_exposure_stat("r1", "a", 1, 1.0)
            storage.upsert_exposure_stat("r1", "a", 2, 0.58)
            storage.upsert_exposure_stat("r1", "b", 1, 1.0)
            storage.add_unknown_items("r1", ["c"])
            storage.add_unknown_items("r1", ["d", "c"])

            # Assert
            stats = storage.get_exposure_stats("r1")
            assert (stats["a"].count, stats["a"].uncertainty) == (2, 0.58)
            assert stats["b"].count == 1
            assert storage.get_unknown_items("r1") == {"c", "d"}
            assert storage.get_unknown_items("r2") == set()

    def test_data_survives_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            # Arrange
            storage = JSONLStorage(Path(temp_dir))
            storage.register_items(list(SHOWN))
            storage.put_latent_vector("r1", {"version": 1, "theta": {"A": 0.0}, "step_count": 0})

            # Act
            reopened = JSONLStorage(Path(temp_dir))

            # Assert
            assert reopened.list_items() == list(SHOWN)
            assert reopened.get_latent_vector("r1") == {"version": 1, "theta": {"A": 0.0}, "step_count": 0}

    def test_rater_id_must_be_a_plain_name(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = JSONLStorage(Path(temp_dir))
            with pytest.raises(ValidationError):
                _ = storage.get_latent_vector("../escape")
