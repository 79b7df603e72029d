"""
Storage implementations.

Provides implementations of the Repository interface for persisting items,
raters, latent vectors, exposure and the append-only observation logs.

Available implementations:
- JSONLStorage: Per-rater directories with JSONL logs and atomically replaced JSON state
"""

from .jsonl_storage import JSONLStorage

__all__ = ["JSONLStorage"]
