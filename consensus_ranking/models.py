"""
Core dataclasses for the consensus ranking system.

Defines pair observations, screens, decisions and the derived ranking and
aggregate records, with validation.
"""

import time
import uuid
from dataclasses import dataclass, field

from .exceptions import ValidationError

SCREEN_SIZE = 7
TOP_SIZE = 3
MIDDLE_SIZE = 3


@dataclass(frozen=True)
class PairObservation:
    """One weighted "winner beats loser" observation from one rater."""

    winner_id: str
    loser_id: str
    weight: float
    rater_id: str = "unknown"
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        """Validate pair observation data."""
        if not self.winner_id or not self.loser_id:
            raise ValidationError("winner_id and loser_id cannot be empty")
        if self.winner_id == self.loser_id:
            raise ValidationError(f"An item cannot beat itself: {self.winner_id}")
        if not self.weight > 0:
            raise ValidationError(f"weight must be positive, got {self.weight}")


@dataclass(frozen=True)
class Screen:
    """Seven items proposed to a rater in one round."""

    rater_id: str
    item_ids: tuple[str, ...]
    screen_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        """Validate screen data."""
        if len(self.item_ids) != SCREEN_SIZE:
            raise ValidationError(
                f"A screen must show exactly {SCREEN_SIZE} items, got {len(self.item_ids)}"
            )
        if len(set(self.item_ids)) != SCREEN_SIZE:
            raise ValidationError(f"Screen items must be distinct: {list(self.item_ids)}")


@dataclass(frozen=True)
class Decision:
    """A rater's answer to one screen: best three, implied middle three, worst one."""

    screen_id: str
    shown_ids: tuple[str, ...]
    top3: tuple[str, ...]
    middle: tuple[str, ...]
    loser: str
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        """Validate that top3, middle and loser partition the shown items."""
        if len(self.shown_ids) != SCREEN_SIZE or len(set(self.shown_ids)) != SCREEN_SIZE:
            raise ValidationError(f"Decision must refer to {SCREEN_SIZE} distinct shown items")
        if len(self.top3) != TOP_SIZE:
            raise ValidationError(f"top3 must contain exactly {TOP_SIZE} items, got {len(self.top3)}")
        if len(self.middle) != MIDDLE_SIZE:
            raise ValidationError(
                f"middle must contain exactly {MIDDLE_SIZE} items, got {len(self.middle)}"
            )
        categorized = [*self.top3, *self.middle, self.loser]
        if len(set(categorized)) != len(categorized):
            raise ValidationError("An item cannot be in several categories at once")
        if set(categorized) != set(self.shown_ids):
            raise ValidationError("top3, middle and loser must cover exactly the shown items")

    @classmethod
    def from_choice(
        cls,
        screen_id: str,
        shown_ids: list[str] | tuple[str, ...],
        top3: list[str] | tuple[str, ...],
        loser: str,
    ) -> "Decision":
        """Build a decision deriving the middle group from the shown items."""
        unknown = [item_id for item_id in [*top3, loser] if item_id not in shown_ids]
        if unknown:
            raise ValidationError(f"Items were not shown on screen {screen_id}: {unknown}")
        middle = tuple(item_id for item_id in shown_ids if item_id not in top3 and item_id != loser)
        return cls(
            screen_id=screen_id,
            shown_ids=tuple(shown_ids),
            top3=tuple(top3),
            middle=middle,
            loser=loser,
        )


@dataclass
class ExposureStat:
    """How often an item was shown to one rater, and how uncertain it still is."""

    count: int = 0
    uncertainty: float = 1.0


@dataclass(frozen=True)
class ItemStats:
    """Selector input for one item."""

    item_id: str
    theta: float = 0.0
    uncertainty: float = 1.0
    exposure_count: int = 0


@dataclass(frozen=True)
class RankingEntry:
    item_id: str
    theta: float
    rank: int


@dataclass(frozen=True)
class ItemAggregate:
    """Global estimate for one item across raters."""

    mu: float
    variance: float
    ci_low: float
    ci_high: float
    rater_count: int = 0

    @property
    def ci_width(self) -> float:
        return self.ci_high - self.ci_low


@dataclass(frozen=True)
class AgreeEntry:
    item_id: str
    consensus_score: float
    variance: float
    rank_global: int


@dataclass(frozen=True)
class DisagreeEntry:
    item_id: str
    variance: float
    rank_global: int
    spread_by_rater: dict[str, float]


@dataclass(frozen=True)
class ConsensusReport:
    agree: list[AgreeEntry]
    disagree: list[DisagreeEntry]


@dataclass(frozen=True)
class LeaderboardEntry:
    item_id: str
    rank: int
    mu: float
    ci_low: float
    ci_high: float
    rater_count: int


@dataclass(frozen=True)
class StopDecision:
    """Whether a rater's session may end, with a human-readable reason."""

    should_stop: bool
    reason: str


@dataclass
class RaterProfile:
    """A rater taking part in the study."""

    rater_id: str
    reliability_weight: float = 1.0
    active: bool = True

    def __post_init__(self) -> None:
        """Validate rater data."""
        if not self.rater_id:
            raise ValidationError("rater_id cannot be empty")
        if self.reliability_weight < 0:
            raise ValidationError(
                f"reliability_weight cannot be negative, got {self.reliability_weight}"
            )
