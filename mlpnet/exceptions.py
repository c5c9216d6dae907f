"""
exceptions.py
~~~~~~~~~~~~~

Error types raised by the perceptron engine and its persistence layer.
"""

from typing import Optional


class MLPError(Exception):
    """Base class for all errors raised by mlpnet."""


class ConstructionError(MLPError, ValueError):
    """Raised when a network is described with invalid parameters."""


class DimensionMismatchError(MLPError, ValueError):
    """Raised when a vector does not match the size of the layer it feeds."""

    def __init__(self, what: str, expected: int, actual: int):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{what} has length {actual}, expected {expected}"
        )


class PersistenceError(MLPError):
    """Raised when serialized network data cannot be turned back into a network."""


class TrainingTimeoutError(MLPError, TimeoutError):
    """Raised when parallel workers do not reach the barrier in time."""

    def __init__(self, timeout: float, pending: Optional[int] = None):
        self.timeout = timeout
        self.pending = pending
        message = f"Parallel training step did not finish within {timeout}s"
        if pending is not None:
            message += f" ({pending} worker(s) still running)"
        super().__init__(message)
