'''
Error types raised by the aligner.

Alignment itself degrades instead of failing (linear fallback, skipped or clamped
constraints, zero refinement offsets). Exceptions are reserved for caller mistakes
and for operations that cannot run at all without a model.
'''


class AlignerError(Exception):
    """Base class for all aligner errors."""


class ModelUnavailableError(AlignerError):
    """Raised when an operation needs a model that failed to load or is not configured."""

    def __init__(self, message, model_path=None):
        super().__init__(message)
        self.model_path = model_path


class BatchSizeMismatchError(AlignerError, ValueError):
    """Raised when feature and phoneme-id batches have different lengths."""


class ConstraintError(AlignerError, ValueError):
    """Raised by explicit constraint validation."""


class UnknownPhonemeError(AlignerError, ValueError):
    """Raised when a grid contains symbols outside the active phoneme set."""

    def __init__(self, message, interval_indices=()):
        super().__init__(message)
        self.interval_indices = tuple(interval_indices)
