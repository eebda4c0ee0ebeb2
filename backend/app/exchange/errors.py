"""Exception types raised by the exchange engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import PlayerIPO


class ExchangeError(Exception):
    """Base class for every error the exchange engine raises."""


class TransientStoreError(ExchangeError):
    """A store write failed in a way that may succeed if retried (timeout, conflict)."""


class WriteConflictError(TransientStoreError):
    """Compare-and-set write observed a different instrument version than it read."""

    def __init__(self, symbol: str, expected: float, actual: float) -> None:
        self.symbol = symbol
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Write conflict on {symbol}: expected last tick {expected}, found {actual}"
        )


class InstrumentNotFoundError(ExchangeError, LookupError):
    """Command or lookup referenced a symbol the market does not know."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"Unknown instrument: {symbol}")


class InvalidCommandError(ExchangeError, ValueError):
    """Command is well-formed but not allowed in the current market state."""


class DuplicateIPOError(ExchangeError):
    """Player already has an active IPO. The existing one is attached unchanged."""

    def __init__(self, existing: PlayerIPO) -> None:
        self.existing = existing
        super().__init__(
            f"Player {existing.owner_id} already has an active IPO ({existing.symbol})"
        )


class IPOEligibilityError(ExchangeError, ValueError):
    """Player does not qualify for an IPO (net worth too low)."""
