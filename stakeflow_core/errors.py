"""
Error types raised by stakeflow components.

Every failure aborts the whole external operation; contracts restore
their journaled state before the error reaches the caller.  Nothing is
retried internally.
"""

from __future__ import annotations


class StakeflowError(Exception):
    """Base error carrying a short stable ``code`` and a human ``reason``."""

    def __init__(self, code: str, reason: str = "") -> None:
        super().__init__(code, reason)
        self.code = code
        self.reason = reason

    def __str__(self) -> str:
        if not self.reason:
            return self.code
        return f"{self.code}: {self.reason}"


class InsufficientBalance(StakeflowError):
    """Withdraw or claim exceeds the recorded entitlement."""


class InvalidRound(StakeflowError):
    """Subscription targets a round that is not the current open round."""


class ArithmeticFault(StakeflowError, ArithmeticError):
    """A weighted-share computation left the uint256 envelope."""


class InvalidAmount(StakeflowError, ValueError):
    """An amount argument is not a non-negative integer in range."""


class ExternalCallFailure(StakeflowError):
    """An asset ledger or oracle collaborator rejected a call."""


class ReentrancyError(StakeflowError):
    """A protected operation was entered while another one was running."""


class Unauthorized(StakeflowError):
    """Caller is not allowed to run an admin operation."""


class InvariantViolation(StakeflowError):
    """Post-operation invariant check failed; the operation was rolled back."""
