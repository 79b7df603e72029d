"""
Exception classes for the consensus ranking system.

Centralized location for all custom exceptions to avoid circular imports.
"""


class ValidationError(Exception):
    """Raised when submitted data does not have the required shape.

    Covers decisions that do not partition the shown items into 3/3/1,
    malformed pair observations and latent vector blobs that fail the
    schema check. Always raised before any state is mutated.
    """
    pass


class ExhaustionError(Exception):
    """Raised when fewer than 7 known items remain for a rater."""
    pass


class ConfigurationError(Exception):
    """Base exception for configuration-related errors."""
    pass


class NumericalDegeneracyError(Exception):
    """Raised when the Hessian cannot be inverted reliably.

    Recovered inside the estimator with a constant standard error.
    """
    pass
