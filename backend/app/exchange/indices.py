"""Weighted market index computation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

import numpy as np

from .models import BotStock, IndexComponent, IndexDelta, IndexType, Instrument, MarketIndex

logger = logging.getLogger(__name__)

# Notional shares per bot stock for market-cap weighting
SHARES_OUTSTANDING = 1_000_000
WEIGHT_EPSILON = 1e-9


class IndexCalculator:
    """Recomputes index values from constituent prices.

    value = sum(price_i / base_i * weight_i) * base_value

    Each component contributes its relative move from its own base price, so an
    index is a weighted average of percentage performance and stays on the same
    scale whatever the constituents' price levels.

    Weights are rebuilt only when the constituent set changes:
      - master: 0.7 * market-cap share + 0.3 * equal share
      - sector: equal weight across the sector's active bot stocks
    """

    def __init__(self, cap_share: float = 0.7, shares_outstanding: int = SHARES_OUTSTANDING) -> None:
        self._cap_share = cap_share
        self._shares = shares_outstanding

    # --- Weights ---

    def constituents(self, index: MarketIndex, instruments: Iterable[Instrument]) -> list[BotStock]:
        """Active bot stocks that belong in ``index``, sorted by symbol."""
        stocks = [i for i in instruments if isinstance(i, BotStock) and i.is_active]
        if index.index_type is IndexType.SECTOR:
            stocks = [s for s in stocks if s.sector == index.sector]
        return sorted(stocks, key=lambda s: s.symbol)

    def hybrid_weights(self, stocks: list[BotStock]) -> dict[str, float]:
        if not stocks:
            return {}
        caps = np.array([s.current_price * self._shares for s in stocks], dtype=float)
        n = len(stocks)
        weights = self._cap_share * caps / caps.sum() + (1 - self._cap_share) / n
        weights /= weights.sum()
        return {s.symbol: float(w) for s, w in zip(stocks, weights)}

    @staticmethod
    def equal_weights(stocks: list[BotStock]) -> dict[str, float]:
        if not stocks:
            return {}
        return {s.symbol: 1.0 / len(stocks) for s in stocks}

    def rebuild(self, index: MarketIndex, instruments: Iterable[Instrument]) -> bool:
        """Re-weight ``index`` if its constituent set changed. Returns True if rebuilt.

        Retained components keep their base price. When an index that already
        had components is rebuilt, its base value is rescaled so the published
        value does not jump.
        """
        instruments = list(instruments)
        stocks = self.constituents(index, instruments)
        if frozenset(s.symbol for s in stocks) == index.constituents:
            return False

        if index.index_type is IndexType.MASTER:
            weights = self.hybrid_weights(stocks)
        else:
            weights = self.equal_weights(stocks)

        old_bases = {c.instrument_symbol: c.base_price for c in index.components}
        had_components = bool(index.components)
        index.components = [
            IndexComponent(
                instrument_symbol=s.symbol,
                weight=weights[s.symbol],
                base_price=old_bases.get(s.symbol, s.base_price),
            )
            for s in stocks
        ]

        if had_components and index.components:
            prices = {i.symbol: i.current_price for i in instruments}
            fresh = self.recompute(index, prices)
            if fresh > 0:
                index.base_value *= index.current_value / fresh

        logger.info("Rebuilt index %s with %d components", index.symbol, len(index.components))
        return True

    # --- Values ---

    def recompute(self, index: MarketIndex, prices: Mapping[str, float]) -> float:
        """Index value for the given component prices.

        A constituent missing from ``prices`` counts at its base price.
        """
        if not index.components:
            return index.current_value
        ratios = np.array(
            [prices.get(c.instrument_symbol, c.base_price) / c.base_price for c in index.components]
        )
        weights = np.array([c.weight for c in index.components])
        total = weights.sum()
        if abs(total - 1.0) > WEIGHT_EPSILON:
            weights = weights / total
        return round(float(ratios @ weights) * index.base_value, 2)

    def update(
        self,
        index: MarketIndex,
        prices: Mapping[str, float],
        now: float,
        *,
        rebuilt: bool = False,
    ) -> IndexDelta:
        """Recompute ``index`` in place and return the delta to persist."""
        value = self.recompute(index, prices)
        index.current_value = value
        index.high_24h = max(index.high_24h, value)
        index.low_24h = min(index.low_24h, value)
        index.last_tick_at = now
        return self.delta(index, now, rebuilt=rebuilt)

    @staticmethod
    def delta(index: MarketIndex, now: float, *, rebuilt: bool = False) -> IndexDelta:
        return IndexDelta(
            symbol=index.symbol,
            current_value=index.current_value,
            previous_close=index.previous_close,
            high_24h=index.high_24h,
            low_24h=index.low_24h,
            computed_at=now,
            base_value=index.base_value if rebuilt else None,
            components=tuple(index.components) if rebuilt else None,
        )

    @staticmethod
    def roll_window(index: MarketIndex) -> None:
        """Start a new 24h window at the current value."""
        index.previous_close = index.current_value
        index.high_24h = index.current_value
        index.low_24h = index.current_value
