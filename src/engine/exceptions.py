"""Exceptions raised by the prediction engine and the services around it."""


class PredictionPoolError(Exception):
    """Base exception for all prediction pool errors."""

    pass


class ValidationError(PredictionPoolError):
    """Raised when caller input has the wrong shape or is inconsistent.

    ``errors`` holds one human-readable line per offending field so a caller
    can correct every problem in a single resubmission.
    """

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors) if errors else []

    def __str__(self):
        if not self.errors:
            return self.message
        return f"{self.message}: " + "; ".join(self.errors)


class DomainInvariantError(PredictionPoolError):
    """Raised when reference data or fixture templates are corrupt.

    These are not caller mistakes and must not be silently defaulted.
    """

    pass


class PredictionNotFoundError(PredictionPoolError):
    """Raised when a prediction id is unknown to the store."""

    pass


class PredictionLockedError(PredictionPoolError):
    """Raised when a locked prediction is modified."""

    pass
