"""
Abstract base classes defining the interfaces for the consensus ranking system.

All interfaces are synchronous. Persistence is done by the host around the
pure, state-local core operations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from typing_extensions import TypedDict

from .models import (
    Decision,
    ExposureStat,
    ItemStats,
    PairObservation,
    RankingEntry,
    RaterProfile,
    Screen,
)

LATENT_VECTOR_VERSION = 1


class LatentVectorBlob(TypedDict):
    """Persisted form of one rater's latent vector."""
    version: int
    theta: dict[str, float]
    step_count: int


@dataclass(frozen=True)
class RaterChoice:
    """What a rater picked on one screen."""
    top3: list[str]
    loser: str


class Repository(ABC):
    """Interface for the host persistence layer."""

    @abstractmethod
    def list_items(self) -> list[str]:
        """Return all item ids in a stable order."""
        pass

    @abstractmethod
    def get_latent_vector(self, rater_id: str) -> LatentVectorBlob | None:
        """
        Return the rater's latent vector as one complete snapshot, or None.

        Raises:
            ValidationError: If a stored vector exists but cannot be decoded
        """
        pass

    @abstractmethod
    def put_latent_vector(self, rater_id: str, blob: LatentVectorBlob) -> None:
        """Atomically replace the rater's latent vector."""
        pass

    @abstractmethod
    def append_pair_observations(self, rater_id: str, pairs: Sequence[PairObservation]) -> None:
        """Append pairs to the rater's observation log."""
        pass

    @abstractmethod
    def load_pair_observations(self, rater_id: str) -> Iterable[PairObservation]:
        """Load the rater's observation log in chronological order."""
        pass

    @abstractmethod
    def get_exposure_stats(self, rater_id: str) -> dict[str, ExposureStat]:
        """Return exposure stats for items the rater has seen."""
        pass

    @abstractmethod
    def upsert_exposure_stat(self, rater_id: str, item_id: str, count: int, uncertainty: float) -> None:
        """Create or replace one exposure stat."""
        pass

    @abstractmethod
    def get_recent_combinations(self, rater_id: str, n: int) -> set[str]:
        """Return canonical keys of the rater's last n screens."""
        pass

    @abstractmethod
    def record_screen(self, screen: Screen) -> None:
        """Persist a proposed screen."""
        pass

    @abstractmethod
    def get_screen(self, rater_id: str, screen_id: str) -> Screen | None:
        """Look up a screen previously proposed to the rater."""
        pass

    @abstractmethod
    def count_screens(self, rater_id: str) -> int:
        """Number of screens proposed to the rater."""
        pass

    @abstractmethod
    def persist_decision(self, rater_id: str, decision: Decision) -> None:
        """Persist a submitted decision."""
        pass

    @abstractmethod
    def get_decision(self, rater_id: str, screen_id: str) -> Decision | None:
        """Return the decision submitted for a screen, if any."""
        pass

    @abstractmethod
    def count_decisions(self, rater_id: str) -> int:
        """Number of decisions submitted by the rater."""
        pass

    @abstractmethod
    def list_raters(self) -> list[RaterProfile]:
        """Return all registered raters."""
        pass

    @abstractmethod
    def upsert_rater(self, profile: RaterProfile) -> None:
        """Create or replace a rater profile."""
        pass

    @abstractmethod
    def get_unknown_items(self, rater_id: str) -> set[str]:
        """Items the rater marked as unknown to them."""
        pass

    @abstractmethod
    def add_unknown_items(self, rater_id: str, item_ids: Iterable[str]) -> None:
        """Mark items as unknown to the rater."""
        pass


class Estimator(ABC):
    """Interface for a per-rater latent strength model."""

    @abstractmethod
    def update_online(self, pairs: Sequence[PairObservation]) -> None:
        """Apply one batch of pair observations."""
        pass

    @abstractmethod
    def get_theta(self) -> dict[str, float]:
        """Return a copy of the latent vector."""
        pass

    @abstractmethod
    def get_ranking(self) -> list[RankingEntry]:
        """Return items sorted by descending strength."""
        pass

    @abstractmethod
    def compute_standard_errors(self, pairs: Sequence[PairObservation]) -> dict[str, float]:
        """Return a standard error per item."""
        pass

    @abstractmethod
    def serialize(self) -> LatentVectorBlob:
        """Export state as a persistable blob."""
        pass


class Selector(ABC):
    """Interface for choosing the next screen."""

    @abstractmethod
    def select_screen(
        self,
        items: Sequence[ItemStats],
        recent_combinations: set[str] | None = None,
        unknown_item_ids: set[str] | None = None,
    ) -> list[ItemStats]:
        """
        Select the items for the next screen.

        Args:
            items: All items with their current statistics
            recent_combinations: Canonical keys of recently shown screens
            unknown_item_ids: Items the rater cannot judge

        Returns:
            The selected items
        """
        pass


class Rater(ABC):
    """Interface for whoever answers screens."""

    rater_id: str

    @abstractmethod
    def choose(self, item_ids: Sequence[str]) -> RaterChoice:
        """
        Pick the best three and the worst item of a screen.

        May block. Caller runs in threadpool for concurrency.
        """
        pass
