"""
Rating service.

Wires the pair generator, the per-rater estimator, the adaptive selector and
the aggregation functions to a Repository. Each rater's decisions are applied
strictly one after another; different raters proceed in parallel.
"""

import itertools
import math
import random
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from loguru import Logger

from .aggregation import (
    RaterRatings,
    aggregate_global_ratings,
    bootstrap_confidence_intervals,
    calculate_kendall_tau,
    compute_consensus,
    compute_kendall_tau_matrix,
    normalize_rater_ratings,
    rank_by_mu,
)
from .config import RankingConfig
from .estimators import BradleyTerryEstimator
from .exceptions import ValidationError
from .group_selectors import AdaptiveSelector, generate_cold_start_sequence
from .interfaces import Repository
from .logging_config import get_logger
from .models import (
    SCREEN_SIZE,
    ConsensusReport,
    Decision,
    ItemAggregate,
    ItemStats,
    LeaderboardEntry,
    PairObservation,
    RankingEntry,
    RaterProfile,
    Screen,
    StopDecision,
)
from .pair_generator import generate_pairs_from_decision

MIN_UNCERTAINTY = 0.1


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one accepted decision."""

    decision: Decision
    pairs: list[PairObservation]
    ranking: list[RankingEntry]
    stop: StopDecision
    screens_completed: int


def exposure_uncertainty(count: int) -> float:
    """Uncertainty proxy that shrinks with exposure, floored at 0.1."""
    return max(MIN_UNCERTAINTY, 1.0 / math.sqrt(count + 1))


def ranks_from_scores(scores: Mapping[str, float]) -> dict[str, int]:
    """Rank items by descending score, starting at 1."""
    ordered = sorted(scores.keys(), key=lambda item_id: -scores[item_id])
    return {item_id: rank for rank, item_id in enumerate(ordered, 1)}


class RatingService:
    """
    Host-facing entry point of the ranking core.

    Thread Safety: every method that touches one rater's state runs under that
    rater's lock. Global reads never take rater locks; they read each latent
    vector as one complete blob.
    """

    def __init__(
        self,
        repository: Repository,
        config: RankingConfig | None = None,
        cold_start_rng: random.Random | None = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Persistence layer for items, raters and logs
            config: Ranking configuration (defaults if omitted)
            cold_start_rng: Random source for the cold-start shuffle; seed it
                for reproducible first screens
        """
        self.repository: Repository = repository
        self.config: RankingConfig = config or RankingConfig()
        self.selector: AdaptiveSelector = AdaptiveSelector(self.config)

        self._cold_start_rng: random.Random = cold_start_rng or random.Random()
        self._cold_start_items: list[str] | None = None
        self._cold_start_sequences: list[list[list[str]]] = []

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard: threading.Lock = threading.Lock()

        self.logger: Logger = get_logger("rating_service")

    def _lock_for(self, rater_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(rater_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[rater_id] = lock
            return lock

    # Raters

    def register_rater(self, profile: RaterProfile) -> None:
        """Create or update a rater profile."""
        self.repository.upsert_rater(profile)
        self.logger.info(
            f"Registered rater {profile.rater_id} (weight={profile.reliability_weight}, active={profile.active})"
        )

    def _require_rater(self, rater_id: str) -> int:
        """Return the rater's registration index."""
        for index, profile in enumerate(self.repository.list_raters()):
            if profile.rater_id == rater_id:
                return index
        raise ValidationError(f"Unknown rater: {rater_id}")

    def mark_unknown(self, rater_id: str, item_ids: Iterable[str]) -> None:
        """Exclude items the rater cannot judge from their future screens."""
        item_ids = list(item_ids)
        self._require_rater(rater_id)
        population = set(self.repository.list_items())
        not_found = [item_id for item_id in item_ids if item_id not in population]
        if not_found:
            raise ValidationError(f"Unknown item ids: {not_found}")

        with self._lock_for(rater_id):
            self.repository.add_unknown_items(rater_id, item_ids)
        self.logger.info(f"Rater {rater_id} marked {len(item_ids)} items as unknown")

    # Screens

    def _cold_start_block(self, rater_index: int, screens_shown: int, items: list[str]) -> list[str] | None:
        if not self.config.cold_start:
            return None

        with self._locks_guard:
            if self._cold_start_items != items:
                # One sequence per rotation; raters share the shuffle
                self._cold_start_sequences = generate_cold_start_sequence(
                    items, SCREEN_SIZE, self._cold_start_rng
                )
                self._cold_start_items = list(items)
            blocks = self._cold_start_sequences[rater_index % SCREEN_SIZE]

        if screens_shown >= len(blocks):
            return None
        return blocks[screens_shown]

    def next_screen(self, rater_id: str) -> Screen:
        """
        Propose and record the next 7 items for a rater.

        Cold-start blocks come first; after them, or when a block contains an
        item the rater marked unknown, the adaptive selector decides.

        Raises:
            ValidationError: If the rater is not registered
            ExhaustionError: If fewer than 7 known items are available
        """
        rater_index = self._require_rater(rater_id)

        with self._lock_for(rater_id):
            items = self.repository.list_items()
            unknown = self.repository.get_unknown_items(rater_id)
            screens_shown = self.repository.count_screens(rater_id)

            item_ids = self._cold_start_block(rater_index, screens_shown, items)
            if item_ids is not None and unknown.intersection(item_ids):
                item_ids = None

            source = "cold-start"
            if item_ids is None:
                source = "adaptive"
                item_ids = self._adaptive_selection(rater_id, items, unknown)

            screen = Screen(rater_id=rater_id, item_ids=tuple(item_ids))
            self.repository.record_screen(screen)

            exposure = self.repository.get_exposure_stats(rater_id)
            for item_id in screen.item_ids:
                stat = exposure.get(item_id)
                count = stat.count + 1 if stat else 1
                uncertainty = stat.uncertainty if stat else 1.0
                self.repository.upsert_exposure_stat(rater_id, item_id, count, uncertainty)

        self.logger.info(f"Screen {screen.screen_id} for {rater_id} ({source}): {list(screen.item_ids)}")
        return screen

    def _adaptive_selection(self, rater_id: str, items: list[str], unknown: set[str]) -> list[str]:
        estimator = self._load_estimator(rater_id, items)
        theta = estimator.get_theta()
        exposure = self.repository.get_exposure_stats(rater_id)

        stats = []
        for item_id in items:
            stat = exposure.get(item_id)
            stats.append(
                ItemStats(
                    item_id=item_id,
                    theta=theta[item_id],
                    uncertainty=stat.uncertainty if stat else 1.0,
                    exposure_count=stat.count if stat else 0,
                )
            )

        recent = self.repository.get_recent_combinations(rater_id, self.config.recent_combination_window)
        selected = self.selector.select_screen(stats, recent_combinations=recent, unknown_item_ids=unknown)
        return [item.item_id for item in selected]

    # Decisions

    def submit_decision(
        self,
        rater_id: str,
        screen_id: str,
        top3: Sequence[str],
        loser: str,
    ) -> SubmissionResult:
        """
        Apply a rater's answer to a screen.

        All validation happens before anything is written. The pipeline then
        appends the 15 pairs, updates and stores the rater's latent vector,
        refreshes exposure uncertainty, persists the decision and evaluates
        the stopping rules.

        Raises:
            ValidationError: If the screen is unknown, belongs to another rater,
                was already answered, or the choice is not a 3/3/1 split of it
        """
        self._require_rater(rater_id)

        with self._lock_for(rater_id):
            screen = self.repository.get_screen(rater_id, screen_id)
            if screen is None or screen.rater_id != rater_id:
                raise ValidationError(f"Screen {screen_id} was not shown to rater {rater_id}")
            if self.repository.get_decision(rater_id, screen_id) is not None:
                raise ValidationError(f"Screen {screen_id} was already answered")

            decision = Decision.from_choice(screen_id, screen.item_ids, list(top3), loser)
            pairs = generate_pairs_from_decision(decision, rater_id)

            items = self.repository.list_items()
            estimator = self._load_estimator(rater_id, items)
            previous_ranking = estimator.get_ranking()

            self.repository.append_pair_observations(rater_id, pairs)
            estimator.update_online(pairs)
            self.repository.put_latent_vector(rater_id, estimator.serialize())
            self._refresh_uncertainty(rater_id, estimator, decision.shown_ids)
            self.repository.persist_decision(rater_id, decision)

            screens_completed = self.repository.count_decisions(rater_id)
            current_ranking = estimator.get_ranking()
            unknown = self.repository.get_unknown_items(rater_id)
            exposure = self.repository.get_exposure_stats(rater_id)
            # Never-shown items count as zero exposure
            exposure_counts = {
                item_id: exposure[item_id].count if item_id in exposure else 0
                for item_id in items
                if item_id not in unknown
            }
            stop = self.selector.check_stop_criteria(
                current_ranking, previous_ranking, exposure_counts, screens_completed
            )

        self.logger.info(
            f"Decision on {screen_id} by {rater_id}: top3={list(decision.top3)}, loser={decision.loser}; "
            f"{screens_completed} screens done, stop={stop.should_stop} ({stop.reason})"
        )
        return SubmissionResult(
            decision=decision,
            pairs=pairs,
            ranking=current_ranking,
            stop=stop,
            screens_completed=screens_completed,
        )

    def _refresh_uncertainty(
        self,
        rater_id: str,
        estimator: BradleyTerryEstimator,
        shown_ids: Sequence[str],
    ) -> None:
        exposure = self.repository.get_exposure_stats(rater_id)

        if self.config.uncertainty_from_standard_errors:
            standard_errors = estimator.compute_standard_errors(
                list(self.repository.load_pair_observations(rater_id))
            )
            for item_id, stat in exposure.items():
                if item_id in standard_errors:
                    self.repository.upsert_exposure_stat(
                        rater_id, item_id, stat.count, standard_errors[item_id]
                    )
            return

        for item_id in shown_ids:
            stat = exposure.get(item_id)
            if stat is None:
                continue
            self.repository.upsert_exposure_stat(
                rater_id, item_id, stat.count, exposure_uncertainty(stat.count)
            )

    # Per-rater model state

    def _load_estimator(self, rater_id: str, items: Sequence[str]) -> BradleyTerryEstimator:
        """Restore the stored model, rebuilding it from the pair log if it is unreadable or no longer fits."""
        try:
            blob = self.repository.get_latent_vector(rater_id)
            if blob is None:
                return BradleyTerryEstimator(items, self.config)
            return BradleyTerryEstimator.deserialize(blob, items, self.config)
        except ValidationError as e:
            self.logger.warning(f"Stored latent vector for {rater_id} rejected ({e}), recalculating")
            return self._replay(rater_id, items)

    def _replay(self, rater_id: str, items: Sequence[str]) -> BradleyTerryEstimator:
        pairs = list(self.repository.load_pair_observations(rater_id))
        # One batch per decision; all pairs of a decision share its timestamp
        batches = [list(group) for _, group in itertools.groupby(pairs, key=lambda pair: pair.timestamp)]
        estimator = BradleyTerryEstimator.replay(batches, items, self.config)
        self.repository.put_latent_vector(rater_id, estimator.serialize())
        self.logger.info(f"Recalculated {rater_id} from {len(pairs)} pairs in {len(batches)} batches")
        return estimator

    def recalculate(self, rater_id: str) -> list[RankingEntry]:
        """Rebuild a rater's model from the full pair log and store it."""
        self._require_rater(rater_id)
        with self._lock_for(rater_id):
            estimator = self._replay(rater_id, self.repository.list_items())
        return estimator.get_ranking()

    def rater_ranking(self, rater_id: str) -> list[RankingEntry]:
        self._require_rater(rater_id)
        with self._lock_for(rater_id):
            estimator = self._load_estimator(rater_id, self.repository.list_items())
        return estimator.get_ranking()

    def rater_standard_errors(self, rater_id: str) -> dict[str, float]:
        """Laplace standard errors of the rater's thetas over their whole pair log."""
        self._require_rater(rater_id)
        with self._lock_for(rater_id):
            estimator = self._load_estimator(rater_id, self.repository.list_items())
            pairs = list(self.repository.load_pair_observations(rater_id))
        return estimator.compute_standard_errors(pairs)

    # Global views

    def _collect_rater_ratings(self, items: Sequence[str]) -> list[RaterRatings]:
        """Normalized ratings of every active rater that has a usable vector."""
        ratings: list[RaterRatings] = []
        for profile in self.repository.list_raters():
            if not profile.active:
                continue
            try:
                blob = self.repository.get_latent_vector(profile.rater_id)
                if blob is None:
                    continue
                estimator = BradleyTerryEstimator.deserialize(blob, items, self.config)
            except ValidationError as e:
                self.logger.warning(f"Skipping {profile.rater_id} in aggregation: {e}")
                continue

            unknown = self.repository.get_unknown_items(profile.rater_id)
            theta = {item_id: value for item_id, value in estimator.get_theta().items() if item_id not in unknown}
            if not theta:
                continue
            normalized = normalize_rater_ratings(theta)
            ratings.append(
                RaterRatings(
                    rater_id=profile.rater_id,
                    normalized_theta=normalized.normalized_theta,
                    reliability_weight=profile.reliability_weight,
                )
            )
        return ratings

    def global_aggregate(self) -> dict[str, ItemAggregate]:
        items = self.repository.list_items()
        return aggregate_global_ratings(self._collect_rater_ratings(items), items)

    def global_leaderboard(self) -> list[LeaderboardEntry]:
        """Items ordered by global mu with their 95% intervals."""
        aggregate = self.global_aggregate()
        return [
            LeaderboardEntry(
                item_id=item_id,
                rank=rank,
                mu=aggregate[item_id].mu,
                ci_low=aggregate[item_id].ci_low,
                ci_high=aggregate[item_id].ci_high,
                rater_count=aggregate[item_id].rater_count,
            )
            for item_id, rank in rank_by_mu(aggregate)
        ]

    def consensus(self, top_k: int | None = None) -> ConsensusReport:
        items = self.repository.list_items()
        ratings = self._collect_rater_ratings(items)
        aggregate = aggregate_global_ratings(ratings, items)
        return compute_consensus(
            aggregate,
            ratings,
            top_k=top_k if top_k is not None else self.config.consensus_top_k,
            ci_width_threshold=self.config.ci_width_threshold,
        )

    def bootstrap_intervals(
        self,
        samples: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> dict[str, tuple[float, float]]:
        """Bootstrap 95% intervals for global mu, resampling raters."""
        items = self.repository.list_items()
        return bootstrap_confidence_intervals(
            self._collect_rater_ratings(items),
            items,
            samples=samples if samples is not None else self.config.bootstrap_samples,
            rng=rng,
        )

    def rater_agreement(self) -> tuple[list[list[float]], list[str]]:
        """Pairwise Kendall tau between raters' rankings; NaN where undefined."""
        items = self.repository.list_items()
        rankings = {
            ratings.rater_id: ranks_from_scores(ratings.normalized_theta)
            for ratings in self._collect_rater_ratings(items)
        }
        return compute_kendall_tau_matrix(rankings)

    def agreement_with_global(self, rater_id: str) -> float:
        """Kendall tau between one rater's ranking and the global ranking."""
        items = self.repository.list_items()
        ratings = self._collect_rater_ratings(items)
        own = next((entry for entry in ratings if entry.rater_id == rater_id), None)
        if own is None:
            raise ValidationError(f"No usable ratings for rater {rater_id}")

        global_ranks = dict(rank_by_mu(aggregate_global_ratings(ratings, items)))
        return calculate_kendall_tau(ranks_from_scores(own.normalized_theta), global_ranks)
