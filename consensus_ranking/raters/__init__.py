"""
Rater implementations.

Provides implementations of the Rater interface that answer screens without
a human in the loop.

Available implementations:
- SimulatedRater: Picks by ground-truth scores plus Gaussian noise
- DummyRater: Deterministic or seeded random picks for tests and smoke runs
"""

from .dummy_rater import DummyRater
from .simulated_rater import SimulatedRater

__all__ = ["DummyRater", "SimulatedRater"]
