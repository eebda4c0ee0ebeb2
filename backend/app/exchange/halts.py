"""Trading halts: per-instrument circuit breakers and market-wide suspension."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .models import Instrument, InstrumentHalt, MarketIndex, MarketStatus, MarketWideHalt

logger = logging.getLogger(__name__)


class TradingState(str, Enum):
    TRADING = "trading"
    HALTED = "halted"


@dataclass(slots=True)
class HaltBook:
    """Current halt state: one optional halt per symbol plus one market-wide flag.

    A symbol with no entry is Trading; a symbol with an entry is Halted. While
    ``market`` is set every symbol is Halted regardless of its own entry.
    ``recent_trips`` holds (time, symbol) for circuit-breaker trips inside the
    escalation window. ``index_drop_level`` is the deepest master-index drop
    level already fired in the current 24h window, and ``pending_roll`` the
    symbols that were halted when that window started.
    """

    instruments: dict[str, InstrumentHalt] = field(default_factory=dict)
    market: MarketWideHalt | None = None
    recent_trips: list[tuple[float, str]] = field(default_factory=list)
    index_drop_level: float = 0.0
    pending_roll: set[str] = field(default_factory=set)

    @property
    def market_halted(self) -> bool:
        return self.market is not None

    def state(self, symbol: str) -> TradingState:
        if self.market is not None or symbol in self.instruments:
            return TradingState.HALTED
        return TradingState.TRADING

    def is_halted(self, symbol: str) -> bool:
        return self.state(symbol) is TradingState.HALTED

    def get(self, symbol: str) -> InstrumentHalt | None:
        return self.instruments.get(symbol)

    def status(self) -> MarketStatus:
        halted = tuple(sorted(self.instruments))
        if self.market is None:
            return MarketStatus(trading_halted=False, halted_symbols=halted)
        return MarketStatus(
            trading_halted=True,
            halt_reason=self.market.reason,
            resumes_at=self.market.resumes_at,
            halted_symbols=halted,
        )


class HaltController:
    """Decides when trading stops and when it resumes.

    Circuit breaker: a single-tick move beyond ``threshold`` is rejected and the
    instrument halts. Cooldown is tiered: past the threshold it is ``cooldown``,
    each further ``tier_step`` of move adds another ``cooldown`` (5/10/15 min with
    the defaults).

    Escalation: when more than ``escalation_fraction`` of active instruments trip
    within ``escalation_window`` seconds, the whole market halts for
    ``market_cooldown``. A falling master index triggers the same through
    ``index_drop_levels``.
    """

    def __init__(
        self,
        threshold: float = 0.20,
        cooldown: float = 300.0,
        *,
        tier_step: float = 0.10,
        max_tiers: int = 3,
        escalation_fraction: float = 0.30,
        escalation_window: float = 120.0,
        market_cooldown: float = 1800.0,
        index_drop_levels: tuple[tuple[float, float], ...] = ((0.20, 3600.0), (0.10, 1800.0)),
    ) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self._tier_step = tier_step
        self._max_tiers = max_tiers
        self._escalation_fraction = escalation_fraction
        self._escalation_window = escalation_window
        self._market_cooldown = market_cooldown
        # Deepest drop first
        self._index_drop_levels = tuple(sorted(index_drop_levels, reverse=True))

    # --- Auto-resume ---

    def clear_expired(self, halts: HaltBook, now: float) -> list[InstrumentHalt | MarketWideHalt]:
        """Drop every halt whose ``resumes_at`` has passed. Returns what was cleared."""
        cleared: list[InstrumentHalt | MarketWideHalt] = []
        if halts.market is not None and halts.market.is_due(now):
            cleared.append(halts.market)
            logger.info("Market-wide halt expired, trading resumes")
            halts.market = None
        for symbol, halt in list(halts.instruments.items()):
            if halt.is_due(now):
                del halts.instruments[symbol]
                cleared.append(halt)
                logger.info("Halt on %s expired, trading resumes", symbol)
        return cleared

    # --- Circuit breaker ---

    def breaker_cooldown(self, move: float) -> float:
        """Halt duration for an absolute fractional move that is past the threshold."""
        tiers = 1 + int((abs(move) - self.threshold) / self._tier_step)
        return self.cooldown * min(max(tiers, 1), self._max_tiers)

    def check_move(
        self,
        halts: HaltBook,
        instrument: Instrument,
        new_price: float,
        now: float,
    ) -> InstrumentHalt | None:
        """Halt ``instrument`` if moving to ``new_price`` would breach the breaker."""
        current = instrument.current_price
        if current <= 0:
            return None
        move = (new_price - current) / current
        if abs(move) <= self.threshold:
            return None

        direction = "up" if move > 0 else "down"
        reason = (
            f"{instrument.symbol} moved {direction} {abs(move) * 100:.1f}% in one tick"
            f" - {self.threshold * 100:.0f}% circuit breaker triggered"
        )
        halt = InstrumentHalt(
            symbol=instrument.symbol,
            reason=reason,
            halted_at=now,
            resumes_at=now + self.breaker_cooldown(move),
        )
        halts.instruments[instrument.symbol] = halt
        halts.recent_trips.append((now, instrument.symbol))
        logger.warning("Circuit breaker: %s", reason)
        return halt

    def check_escalation(self, halts: HaltBook, active_count: int, now: float) -> MarketWideHalt | None:
        """Escalate to a market-wide halt when too many instruments tripped recently."""
        cutoff = now - self._escalation_window
        halts.recent_trips = [(t, s) for t, s in halts.recent_trips if t > cutoff]
        if halts.market is not None or active_count <= 0:
            return None

        tripped = {s for _, s in halts.recent_trips}
        fraction = len(tripped) / active_count
        if fraction <= self._escalation_fraction:
            return None

        reason = (
            f"{len(tripped)} of {active_count} instruments halted within "
            f"{self._escalation_window:.0f}s - market-wide circuit breaker"
        )
        halts.recent_trips = []
        return self.halt_market(halts, reason, now, cooldown=self._market_cooldown)

    def check_index_drop(self, halts: HaltBook, index: MarketIndex, now: float) -> MarketWideHalt | None:
        """Halt the market when the master index falls far below its previous close.

        Each level fires at most once per 24h window, so a market that resumes
        still below the close only halts again if it reaches a deeper level.
        """
        if halts.market is not None or not index.previous_close:
            return None
        drop = (index.previous_close - index.current_value) / index.previous_close
        for level, duration in self._index_drop_levels:
            if drop >= level:
                if level <= halts.index_drop_level:
                    return None
                halts.index_drop_level = level
                reason = (
                    f"{index.symbol} dropped {drop * 100:.1f}% - "
                    f"Level {level * 100:.0f} market circuit breaker"
                )
                return self.halt_market(halts, reason, now, cooldown=duration)
        return None

    # --- Explicit halt / resume ---

    def halt_instrument(
        self,
        halts: HaltBook,
        symbol: str,
        reason: str,
        now: float,
        *,
        persistent: bool = False,
        cooldown: float | None = None,
    ) -> InstrumentHalt:
        """Halt one symbol. Re-halting keeps the original halt time and replaces reason/timer."""
        existing = halts.instruments.get(symbol)
        resumes_at = None if persistent else now + (cooldown if cooldown is not None else self.cooldown)
        halt = InstrumentHalt(
            symbol=symbol,
            reason=reason,
            halted_at=existing.halted_at if existing else now,
            resumes_at=resumes_at,
        )
        halts.instruments[symbol] = halt
        logger.info("Halted %s: %s", symbol, reason)
        return halt

    def halt_market(
        self,
        halts: HaltBook,
        reason: str,
        now: float,
        *,
        persistent: bool = False,
        cooldown: float | None = None,
    ) -> MarketWideHalt:
        existing = halts.market
        resumes_at = None if persistent else now + (cooldown if cooldown is not None else self._market_cooldown)
        halt = MarketWideHalt(
            reason=reason,
            halted_at=existing.halted_at if existing else now,
            resumes_at=resumes_at,
        )
        halts.market = halt
        logger.warning("Market-wide trading halt: %s", reason)
        return halt

    def resume_instrument(self, halts: HaltBook, symbol: str) -> bool:
        """Clear a symbol's halt. Resuming a symbol that is not halted is a no-op."""
        if halts.instruments.pop(symbol, None) is None:
            return False
        logger.info("Trading resumed for %s", symbol)
        return True

    def resume_market(self, halts: HaltBook) -> bool:
        if halts.market is None:
            return False
        halts.market = None
        logger.info("Market-wide trading resumed")
        return True
