"""
Consensus Ranking - multi-rater pairwise ranking

A system for ranking a fixed set of items from repeated 7-item screens judged
by several raters: per-rater online Bradley-Terry models, robust cross-rater
aggregation with uncertainty bounds, and adaptive screen selection.
"""

from .config import RankingConfig, SelectionCriteria, StopCriteria, load_config
from .exceptions import ConfigurationError, ExhaustionError, NumericalDegeneracyError, ValidationError
from .interfaces import Estimator, Rater, Repository, Selector
from .models import Decision, PairObservation, RaterProfile, Screen
from .orchestrator import Orchestrator, RunConfig
from .service import RatingService, SubmissionResult

__version__ = "0.1.0"
__all__ = [
    "RankingConfig",
    "SelectionCriteria",
    "StopCriteria",
    "load_config",
    "ConfigurationError",
    "ExhaustionError",
    "NumericalDegeneracyError",
    "ValidationError",
    "Estimator",
    "Rater",
    "Repository",
    "Selector",
    "Decision",
    "PairObservation",
    "RaterProfile",
    "Screen",
    "Orchestrator",
    "RunConfig",
    "RatingService",
    "SubmissionResult",
]
