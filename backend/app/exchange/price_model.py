"""Bounded random-walk price model for one instrument tick."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from .models import ActiveEvent, EffectType, Instrument, Trend

# One trend_strength point shifts the per-tick mean by half a percent
TREND_UNIT = 0.005
# One effect_value point shifts the per-tick mean by a tenth of a percent
EFFECT_UNIT = 0.001
# Fraction of the gap to base price closed per tick
REVERSION_RATE = 0.1
PRICE_FLOOR = 0.01
MAX_TREND_STRENGTH = 5

_TRENDS = (Trend.BULLISH, Trend.BEARISH, Trend.NEUTRAL)


@dataclass(frozen=True, slots=True)
class PriceMove:
    """Outcome of one tick for one instrument. Not yet committed."""

    price: float
    high: float
    low: float
    previous_price: float

    @property
    def change_fraction(self) -> float:
        """Signed fractional move from the previous price."""
        if self.previous_price <= 0:
            return 0.0
        return (self.price - self.previous_price) / self.previous_price


class PriceModel:
    """Turns an instrument's state plus randomness into its next price.

    Math:
        eps      = clip(N(0, volatility), -k*volatility, +k*volatility) + drift
        drift    = trend bias + tick_modifier effects + trend_bias effects
        revert   = rate * (base - current) / base
        spike    = product of (1 + value/100) over unconsumed instant spikes
        new      = max(floor, current * (1 + eps + revert) * spike)

    The model never touches shared state: everything it needs comes in through
    its arguments and the injected ``numpy.random.Generator``, so a seeded
    generator replays exactly.
    """

    def __init__(
        self,
        rng: np.random.Generator | None = None,
        *,
        clamp_sigmas: float = 3.0,
        trend_unit: float = TREND_UNIT,
        effect_unit: float = EFFECT_UNIT,
        reversion_rate: float = REVERSION_RATE,
        price_floor: float = PRICE_FLOOR,
        trend_change_probability: float = 0.05,
    ) -> None:
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clamp = clamp_sigmas
        self._trend_unit = trend_unit
        self._effect_unit = effect_unit
        self._reversion_rate = reversion_rate
        self._floor = price_floor
        self._trend_change_prob = trend_change_probability

    # --- Public API ---

    def next_price(self, instrument: Instrument, effects: Iterable[ActiveEvent] = ()) -> PriceMove:
        """Compute the next price, 24h high and 24h low for one instrument.

        Effects whose scope does not cover the instrument are ignored, so callers
        may pass the full live event list.
        """
        applicable = [e for e in effects if e.scope.applies_to(instrument)]
        current = instrument.current_price

        eps = self.noise(instrument.volatility) + self.drift(instrument, applicable)
        raw = current * (1 + eps + self.reversion(instrument)) * self.spike_factor(applicable)
        price = round(max(self._floor, raw), 2)

        return PriceMove(
            price=price,
            high=max(instrument.high_24h, price),
            low=min(instrument.low_24h, price),
            previous_price=current,
        )

    def noise(self, volatility: float) -> float:
        """Zero-mean noise scaled by volatility, clipped to +/- clamp_sigmas * volatility."""
        bound = self._clamp * volatility
        return float(np.clip(self._rng.normal(0.0, volatility), -bound, bound))

    def drift(self, instrument: Instrument, effects: Iterable[ActiveEvent] = ()) -> float:
        """Shift of the noise mean from trend and active bias effects."""
        shift = 0.0
        if instrument.trend is Trend.BULLISH:
            shift += self._trend_unit * instrument.trend_strength
        elif instrument.trend is Trend.BEARISH:
            shift -= self._trend_unit * instrument.trend_strength

        for effect in effects:
            if not effect.scope.applies_to(instrument):
                continue
            if effect.effect_type in (EffectType.TICK_MODIFIER, EffectType.TREND_BIAS):
                shift += self._effect_unit * effect.event.effect_value
        return shift

    def reversion(self, instrument: Instrument) -> float:
        """Pull toward base price, proportional to the relative gap."""
        if instrument.base_price <= 0:
            return 0.0
        gap = (instrument.base_price - instrument.current_price) / instrument.base_price
        return self._reversion_rate * gap

    @staticmethod
    def spike_factor(effects: Iterable[ActiveEvent]) -> float:
        """Multiplicative one-shot jump from instant spikes not yet applied."""
        factor = 1.0
        for effect in effects:
            if effect.effect_type is EffectType.INSTANT_SPIKE and not effect.consumed:
                factor *= 1 + effect.event.effect_value / 100
        return factor

    def next_trend(self, instrument: Instrument) -> tuple[Trend, int]:
        """Occasionally re-roll the trend and its strength (1..5)."""
        if self._rng.random() >= self._trend_change_prob:
            return instrument.trend, instrument.trend_strength
        trend = _TRENDS[int(self._rng.integers(len(_TRENDS)))]
        strength = int(self._rng.integers(1, MAX_TREND_STRENGTH + 1))
        return trend, strength
