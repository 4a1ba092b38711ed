"""Error types raised by the signal engine and the exchange collaborator."""

from __future__ import annotations


class InvalidInput(ValueError):
    """Rejected tick or request; nothing was mutated."""


class ComputationError(ArithmeticError):
    """An indicator came out non-finite for the current window."""


class ExchangeError(RuntimeError):
    """Exchange REST call failed after retries."""
