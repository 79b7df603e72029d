"""
Estimator implementations.

Provides implementations of the Estimator interface for maintaining one
rater's latent item strengths.

Available implementations:
- BradleyTerryEstimator: Online SGD Bradley-Terry model with L2 shrinkage,
  sum-to-zero re-centering and Laplace standard errors
"""

from .bradley_terry import BradleyTerryEstimator

__all__ = ["BradleyTerryEstimator"]
