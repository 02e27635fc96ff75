"""
Exception hierarchy for the backtest engine and its optimizers.

Two families of failure are fatal to a call:
    - ValidationError: inputs violate a documented precondition and are
      rejected before any computation starts.
    - ExhaustionError: the computation ran but produced nothing meaningful
      (every grid candidate failed, no trades to resample, no windows fit).

Per-candidate failures inside a search are not represented here; the
optimizers catch them, log them, and move on.
"""

from __future__ import annotations


class StrategyLabError(Exception):
    """Base class for all errors raised by the package."""


class ValidationError(StrategyLabError):
    """Raised when input data violates required invariants."""


class UnknownStrategyError(ValidationError):
    """Raised when a strategy identifier is not in the registry."""


class ExhaustionError(StrategyLabError):
    """Raised when no meaningful result exists for a call."""


class NoValidCombinationError(ExhaustionError):
    """Raised when every parameter combination of a grid search failed."""


class NoTradesError(ExhaustionError):
    """Raised when a simulation is asked to resample an empty trade list."""


class NoValidWindowError(ExhaustionError):
    """Raised when walk-forward segmentation yields no usable window."""


# -----------------------------
# Guardrails
# -----------------------------
def require(condition: bool, msg: str) -> None:
    """Raise ValidationError with a clear message if condition is False."""
    if not condition:
        raise ValidationError(msg)


__all__ = [
    'StrategyLabError',
    'ValidationError',
    'UnknownStrategyError',
    'ExhaustionError',
    'NoValidCombinationError',
    'NoTradesError',
    'NoValidWindowError',
    'require',
]
