"""
Bradley-Terry estimator implementation.

Online SGD over the penalized Bradley-Terry log-likelihood
    L = sum w_ij * [(theta_i - theta_j) - log(1 + exp(theta_i - theta_j))] - lambda/2 * sum theta_i^2
with a diminishing step size and a sum-to-zero identifiability constraint.
"""

import math
import threading
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any, cast

import numpy as np
from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from typing_extensions import override

if TYPE_CHECKING:
    from loguru import Logger

from ..config import RankingConfig
from ..exceptions import NumericalDegeneracyError, ValidationError
from ..interfaces import LATENT_VECTOR_VERSION, Estimator, LatentVectorBlob
from ..logging_config import get_logger
from ..models import PairObservation, RankingEntry

_blob_adapter = TypeAdapter(LatentVectorBlob)


def logistic(x: float) -> float:
    """Numerically stable logistic function."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


class BradleyTerryEstimator(Estimator):
    """
    Per-rater Bradley-Terry model with online SGD updates.

    Holds one theta per tracked item. Only differences between thetas are
    meaningful, so the vector is re-centered to sum to zero after each update.

    Thread Safety: updates for one rater must be applied in submission order.
    The service serializes calls per rater; the internal lock only protects
    the arrays against torn reads.
    """

    def __init__(self, item_ids: Sequence[str], config: RankingConfig | None = None):
        """
        Initialize a zero vector over the given items.

        Args:
            item_ids: Items tracked by this rater's model
            config: Supplies lambda, the base learning rate and SE fallback settings
        """
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError("item_ids must be unique")

        self.config: RankingConfig = config or RankingConfig()
        self._item_ids: list[str] = list(item_ids)
        self._index: dict[str, int] = {item_id: idx for idx, item_id in enumerate(self._item_ids)}
        self._theta: np.ndarray = np.zeros(len(self._item_ids), dtype=float)
        self._step_count: int = 0

        self._lock: threading.Lock = threading.Lock()
        self.logger: Logger = get_logger("bradley_terry")

    def get_step_count(self) -> int:
        return self._step_count

    @override
    def get_theta(self) -> dict[str, float]:
        """Return a copy of the latent vector."""
        with self._lock:
            return {item_id: float(self._theta[idx]) for item_id, idx in self._index.items()}

    def probability(self, winner_id: str, loser_id: str) -> float:
        """P(winner beats loser) = logistic(theta_winner - theta_loser)."""
        i = self._index[winner_id]
        j = self._index[loser_id]
        return logistic(float(self._theta[i] - self._theta[j]))

    @override
    def update_online(self, pairs: Sequence[PairObservation]) -> None:
        """
        Apply one SGD step for a batch of pairs.

        The step counter advances once per call regardless of the batch size,
        and the learning rate is base_learning_rate / sqrt(step_count).
        Pairs naming items this model does not track are skipped.
        """
        with self._lock:
            self._step_count += 1
            learning_rate = self.config.base_learning_rate / math.sqrt(self._step_count)

            gradients = np.zeros_like(self._theta)
            skipped = 0
            for pair in pairs:
                i = self._index.get(pair.winner_id)
                j = self._index.get(pair.loser_id)
                if i is None or j is None:
                    skipped += 1
                    continue

                prob = logistic(float(self._theta[i] - self._theta[j]))
                gradients[i] += pair.weight * (1.0 - prob)
                gradients[j] -= pair.weight * prob

            gradients -= self.config.lambda_ * self._theta
            self._theta += learning_rate * gradients

            self._enforce_identifiability()

        if skipped:
            self.logger.debug(f"Skipped {skipped} pairs with untracked items")
        self.logger.debug(f"Step {self._step_count}: applied {len(pairs) - skipped} pairs, lr={learning_rate:.4f}")

    def _enforce_identifiability(self) -> None:
        """Re-center so that sum(theta) == 0."""
        if self._theta.size:
            self._theta -= self._theta.mean()

    @override
    def compute_standard_errors(self, pairs: Sequence[PairObservation]) -> dict[str, float]:
        """
        Laplace approximation of per-item standard errors.

        Builds the Hessian of the negative penalized log-likelihood at the
        current theta and returns sqrt(diag(H^-1)). A singular or
        ill-conditioned Hessian yields the constant fallback SE for every item.
        """
        try:
            inverse = self._inverse_hessian(pairs)
        except NumericalDegeneracyError as e:
            fallback = self.config.fallback_standard_error
            self.logger.warning(f"Hessian not invertible ({e}); using constant SE {fallback}")
            return {item_id: fallback for item_id in self._item_ids}

        variances = np.maximum(np.diag(inverse), 0.0)
        return {item_id: float(math.sqrt(variances[idx])) for item_id, idx in self._index.items()}

    def _inverse_hessian(self, pairs: Sequence[PairObservation]) -> np.ndarray:
        n = len(self._item_ids)
        hessian = np.zeros((n, n), dtype=float)

        with self._lock:
            for pair in pairs:
                i = self._index.get(pair.winner_id)
                j = self._index.get(pair.loser_id)
                if i is None or j is None:
                    continue
                prob = logistic(float(self._theta[i] - self._theta[j]))
                term = pair.weight * prob * (1.0 - prob)
                hessian[i, i] += term
                hessian[j, j] += term
                hessian[i, j] -= term
                hessian[j, i] -= term

        hessian[np.diag_indices(n)] += self.config.lambda_

        with np.errstate(divide="ignore", invalid="ignore"):
            condition = float(np.linalg.cond(hessian)) if n else 0.0
        if not math.isfinite(condition) or condition > self.config.max_condition_number:
            raise NumericalDegeneracyError(f"condition number {condition:.3g}")

        try:
            inverse = np.linalg.inv(hessian)
        except np.linalg.LinAlgError as e:
            raise NumericalDegeneracyError(str(e)) from e

        if not np.all(np.isfinite(inverse)):
            raise NumericalDegeneracyError("inverse contains non-finite values")
        return inverse

    @override
    def get_ranking(self) -> list[RankingEntry]:
        """Items by descending theta; ties keep item order."""
        theta = self.get_theta()
        ordered = sorted(self._item_ids, key=lambda item_id: -theta[item_id])
        return [
            RankingEntry(item_id=item_id, theta=theta[item_id], rank=rank)
            for rank, item_id in enumerate(ordered, 1)
        ]

    @override
    def serialize(self) -> LatentVectorBlob:
        """Export the latent vector and step counter."""
        with self._lock:
            return {
                "version": LATENT_VECTOR_VERSION,
                "theta": {item_id: float(self._theta[idx]) for item_id, idx in self._index.items()},
                "step_count": self._step_count,
            }

    @classmethod
    def deserialize(
        cls,
        data: Any,
        item_ids: Sequence[str],
        config: RankingConfig | None = None,
    ) -> "BradleyTerryEstimator":
        """
        Restore an estimator from a blob produced by serialize().

        The blob must carry exactly the given item ids. Unknown or missing
        keys are rejected, never coerced.

        Raises:
            ValidationError: If the blob fails the schema check
        """
        blob = to_blob(data)
        if blob["version"] != LATENT_VECTOR_VERSION:
            raise ValidationError(
                f"Unsupported latent vector version {blob['version']} (expected {LATENT_VECTOR_VERSION})"
            )
        if blob["step_count"] < 0:
            raise ValidationError(f"step_count cannot be negative, got {blob['step_count']}")

        theta = blob["theta"]
        unknown = sorted(set(theta) - set(item_ids))
        missing = sorted(set(item_ids) - set(theta))
        if unknown or missing:
            raise ValidationError(
                f"Latent vector does not match item set (unknown={unknown}, missing={missing})"
            )
        if not all(math.isfinite(value) for value in theta.values()):
            raise ValidationError("Latent vector contains non-finite values")

        estimator = cls(item_ids, config)
        estimator._theta = np.array([theta[item_id] for item_id in estimator._item_ids], dtype=float)
        estimator._step_count = blob["step_count"]
        return estimator

    @classmethod
    def replay(
        cls,
        batches: Iterable[Sequence[PairObservation]],
        item_ids: Sequence[str],
        config: RankingConfig | None = None,
    ) -> "BradleyTerryEstimator":
        """
        Rebuild a model from scratch by feeding batches in chronological order.

        This is the only way to reproduce a prior state exactly, because the
        learning rate depends on the step counter.
        """
        estimator = cls(item_ids, config)
        batch_count = 0
        for batch in batches:
            estimator.update_online(batch)
            batch_count += 1
        estimator.logger.info(f"Replayed {batch_count} batches over {len(item_ids)} items")
        return estimator


def to_blob(data: object) -> LatentVectorBlob:
    """Validate arbitrary data as a latent vector blob shape."""
    try:
        return cast(LatentVectorBlob, _blob_adapter.validate_python(data))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid latent vector blob: {e}") from e
