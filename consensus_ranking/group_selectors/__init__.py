"""
Selector implementations.

Provides implementations of the Selector interface for choosing which items
a rater sees next.

Available implementations:
- AdaptiveSelector: TOP/MID/LOW bucket sampling by uncertainty and exposure,
  with anchor items, repeat avoidance and stopping rules
- generate_cold_start_sequence: rotated 7-item blocks for the first rounds
"""

from .adaptive_selector import AdaptiveSelector, combination_key
from .cold_start import generate_cold_start_sequence

__all__ = ["AdaptiveSelector", "combination_key", "generate_cold_start_sequence"]
