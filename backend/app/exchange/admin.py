"""Administrative overrides, validated on submit and applied at the next tick boundary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import InstrumentNotFoundError, InvalidCommandError
from .models import PlayerIPO
from .store import MarketSnapshot, MarketStore

if TYPE_CHECKING:
    from .clock import MarketClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HaltCommand:
    """Halt one symbol, or the whole market when ``symbol`` is None."""

    symbol: str | None
    reason: str
    persistent: bool = False  # No auto-resume; stays halted until resumed


@dataclass(frozen=True, slots=True)
class ResumeCommand:
    symbol: str | None


@dataclass(frozen=True, slots=True)
class ResetPriceCommand:
    """Put a stock back at its base price."""

    symbol: str


@dataclass(frozen=True, slots=True)
class DelistCommand:
    """Permanently remove a player stock from simulation. No reward is paid."""

    symbol: str
    reason: str


@dataclass(frozen=True, slots=True)
class CashOutCommand:
    """Player sells out of their IPO early; reward is computed at the current price."""

    symbol: str


AdminCommand = HaltCommand | ResumeCommand | ResetPriceCommand | DelistCommand | CashOutCommand


class AdminControl:
    """Synchronous front door for overrides.

    Each call checks the command against the last committed snapshot and raises
    immediately (InstrumentNotFoundError, InvalidCommandError) with no partial
    effect. Accepted commands are queued on the MarketClock and applied between
    ticks, never in the middle of one.
    """

    def __init__(self, store: MarketStore, clock: MarketClock) -> None:
        self._store = store
        self._clock = clock

    def halt(
        self,
        symbol: str | None = None,
        reason: str = "Trading halted by admin",
        persistent: bool = False,
    ) -> HaltCommand:
        if symbol is not None:
            symbol = self._require_active(self._store.snapshot(), symbol).symbol
        return self._submit(HaltCommand(symbol=symbol, reason=reason, persistent=persistent))

    def resume(self, symbol: str | None = None) -> ResumeCommand:
        if symbol is not None:
            symbol = self._require_active(self._store.snapshot(), symbol).symbol
        return self._submit(ResumeCommand(symbol=symbol))

    def reset_price(self, symbol: str) -> ResetPriceCommand:
        snapshot = self._store.snapshot()
        instrument = self._require_active(snapshot, symbol)
        if snapshot.halts.market_halted:
            raise InvalidCommandError("Cannot reset prices while the market is halted")
        return self._submit(ResetPriceCommand(symbol=instrument.symbol))

    def delist(self, symbol: str, reason: str = "Delisted by admin") -> DelistCommand:
        instrument = self._require_active(self._store.snapshot(), symbol)
        if not isinstance(instrument, PlayerIPO):
            raise InvalidCommandError(f"{instrument.symbol} is not a player stock and cannot be delisted")
        return self._submit(DelistCommand(symbol=instrument.symbol, reason=reason))

    def cash_out(self, owner_id: str) -> CashOutCommand:
        """Player-initiated early exit from their live IPO."""
        ipo = self._store.snapshot().active_ipo_for(owner_id)
        if ipo is None:
            raise InstrumentNotFoundError(f"IPO of {owner_id}")
        return self._submit(CashOutCommand(symbol=ipo.symbol))

    # --- Internals ---

    @staticmethod
    def _require_active(snapshot: MarketSnapshot, symbol: str):
        key = symbol.upper().strip()
        instrument = snapshot.instruments.get(key)
        if instrument is None:
            raise InstrumentNotFoundError(key)
        if not instrument.is_active:
            raise InvalidCommandError(f"{key} is no longer listed")
        return instrument

    def _submit(self, command: AdminCommand) -> AdminCommand:
        self._clock.submit(command)
        logger.info("Admin command queued: %s", command)
        return command
