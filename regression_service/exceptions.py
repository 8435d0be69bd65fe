"""Errors raised by the regression pipeline"""


class RegressionError(Exception):
    """Base class for every regression service error."""


class PredictionError(RegressionError):
    """Prediction requested without a ready model, or with malformed input."""


class TrainingError(RegressionError):
    """Training could not run or diverged (non-finite loss or weights)."""


class ConcurrentTrainingError(RegressionError):
    """train() called while the same instance is already training."""


class TrainingCancelledError(RegressionError):
    """Training stopped at a batch boundary because cancellation was requested."""


class ModelNotFoundError(RegressionError):
    """No persisted model exists at the requested path."""
