"""Exception types raised by streams, pipelines and the online scheduler.

Every error also derives from the closest builtin exception so callers that
only care about, say, ``ValueError`` keep working.
"""

from __future__ import annotations

__all__ = [
    "BciStreamError",
    "InvalidArgumentError",
    "NotFoundError",
    "StaleBindingError",
    "RangeError",
    "ShapeError",
    "AmbiguousBindingError",
    "OperatorFailure",
]


class BciStreamError(Exception):
    """Base class for all bcistream errors."""


class InvalidArgumentError(BciStreamError, ValueError):
    """A request parameter is malformed.

    ``argument`` names the offending parameter.
    """

    def __init__(self, argument: str, message: str) -> None:
        super().__init__(message)
        self.argument = argument


class NotFoundError(BciStreamError, LookupError):
    """A named stream or predictor does not exist."""


class StaleBindingError(BciStreamError, LookupError):
    """A named entity exists but is not the one a binding was made against."""


class RangeError(BciStreamError, IndexError):
    """Requested samples were overwritten by ring wraparound (or never written)."""


class ShapeError(BciStreamError, ValueError):
    """Channel-count or dimension mismatch."""


class AmbiguousBindingError(BciStreamError, LookupError):
    """More than one candidate stream satisfies a pipeline leaf."""


class OperatorFailure(BciStreamError, RuntimeError):
    """A pipeline node's transform raised; the original error is ``__cause__``."""

    def __init__(self, node_index: int, head: str, message: str) -> None:
        super().__init__(message)
        self.node_index = node_index
        self.head = head
