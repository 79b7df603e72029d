"""
Configuration for the consensus ranking system.

Every tunable of the estimator, selector, stopping rules and aggregation is
injectable here. Inconsistent values fail at load time, never per round.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .exceptions import ConfigurationError
from .logging_config import get_logger
from .models import SCREEN_SIZE

logger = get_logger("config")


@dataclass
class SelectionCriteria:
    """How many items each bucket contributes to a screen."""

    top_count: int = 2
    mid_count: int = 3
    low_count: int = 1
    anchor_count: int = 1
    top_fraction: float = 0.3
    low_fraction: float = 0.3

    def __post_init__(self) -> None:
        """Validate bucket layout."""
        counts = (self.top_count, self.mid_count, self.low_count, self.anchor_count)
        if any(count < 0 for count in counts):
            raise ConfigurationError(f"Selection counts cannot be negative: {counts}")
        if sum(counts) != SCREEN_SIZE:
            raise ConfigurationError(
                f"top_count + mid_count + low_count + anchor_count must equal {SCREEN_SIZE}, "
                f"got {sum(counts)} ({counts})"
            )
        for name, fraction in (("top_fraction", self.top_fraction), ("low_fraction", self.low_fraction)):
            if not (0 < fraction <= 0.5):
                raise ConfigurationError(f"{name} must be in (0, 0.5], got {fraction}")


@dataclass
class StopCriteria:
    """Ranking stability rule used once enough screens were shown."""

    kendall_tau_threshold: float = 0.9
    min_screens_for_stability: int = 10

    def __post_init__(self) -> None:
        """Validate stopping thresholds."""
        if not (-1.0 <= self.kendall_tau_threshold <= 1.0):
            raise ConfigurationError(
                f"kendall_tau_threshold must be in [-1, 1], got {self.kendall_tau_threshold}"
            )
        if self.min_screens_for_stability < 0:
            raise ConfigurationError(
                f"min_screens_for_stability cannot be negative, got {self.min_screens_for_stability}"
            )


@dataclass
class RankingConfig:
    """Top-level configuration."""

    lambda_: float = 0.01  # L2 strength
    base_learning_rate: float = 0.1
    min_exposure_per_item: int = 8
    target_screens_per_rater: int = 20
    grace_screens: int = 5
    selection: SelectionCriteria = field(default_factory=SelectionCriteria)
    stop: StopCriteria = field(default_factory=StopCriteria)
    bootstrap_samples: int = 1000
    consensus_top_k: int = 10
    ci_width_threshold: float = 0.5
    recent_combination_window: int = 10
    fallback_standard_error: float = 0.1
    max_condition_number: float = 1e12
    uncertainty_from_standard_errors: bool = False
    cold_start: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.lambda_ < 0:
            raise ConfigurationError(f"lambda must be non-negative, got {self.lambda_}")
        if self.base_learning_rate <= 0:
            raise ConfigurationError(
                f"base_learning_rate must be positive, got {self.base_learning_rate}"
            )
        if self.min_exposure_per_item < 0:
            raise ConfigurationError(
                f"min_exposure_per_item cannot be negative, got {self.min_exposure_per_item}"
            )
        if self.target_screens_per_rater <= 0:
            raise ConfigurationError(
                f"target_screens_per_rater must be positive, got {self.target_screens_per_rater}"
            )
        if self.grace_screens < 0:
            raise ConfigurationError(f"grace_screens cannot be negative, got {self.grace_screens}")
        if self.bootstrap_samples <= 0:
            raise ConfigurationError(
                f"bootstrap_samples must be positive, got {self.bootstrap_samples}"
            )
        if self.consensus_top_k <= 0:
            raise ConfigurationError(f"consensus_top_k must be positive, got {self.consensus_top_k}")
        if self.ci_width_threshold <= 0:
            raise ConfigurationError(
                f"ci_width_threshold must be positive, got {self.ci_width_threshold}"
            )
        if self.recent_combination_window < 0:
            raise ConfigurationError(
                f"recent_combination_window cannot be negative, got {self.recent_combination_window}"
            )
        if self.fallback_standard_error <= 0:
            raise ConfigurationError(
                f"fallback_standard_error must be positive, got {self.fallback_standard_error}"
            )
        if self.max_condition_number <= 1:
            raise ConfigurationError(
                f"max_condition_number must be greater than 1, got {self.max_condition_number}"
            )

    @property
    def max_screens_per_rater(self) -> int:
        """Hard ceiling on screens for one rater."""
        return self.target_screens_per_rater + self.grace_screens


_config_adapter = TypeAdapter(RankingConfig)


def config_from_dict(data: dict[str, Any]) -> RankingConfig:
    """Build a validated config from plain data (e.g. parsed JSON)."""
    data = dict(data)
    # "lambda" is a keyword in Python; accept it as the file key
    if "lambda" in data:
        data["lambda_"] = data.pop("lambda")
    try:
        return _config_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: str | Path) -> RankingConfig:
    """Load configuration from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file does not exist: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration file must contain a JSON object")

    config = config_from_dict(cast(dict[str, Any], data))
    logger.info(f"Loaded configuration from {config_path}")
    return config
