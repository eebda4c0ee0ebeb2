"""Shared fixtures for exchange engine tests."""

import numpy as np
import pytest

from app.exchange.clock import MarketClock
from app.exchange.events import EventDirector
from app.exchange.halts import HaltController
from app.exchange.indices import IndexCalculator
from app.exchange.ipo import IPOLifecycle
from app.exchange.models import BotStock, PlayerIPO, PricePoint
from app.exchange.price_model import PriceModel, PriceMove
from app.exchange.store import InMemoryMarketStore

NOW = 1_700_000_000.0


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def rng():
    """Seeded generator so every run draws the same numbers."""
    return np.random.default_rng(42)


@pytest.fixture
def store(now):
    return InMemoryMarketStore(window_started_at=now)


@pytest.fixture
def make_stock(now):
    def _make(symbol="ACME", price=100.0, *, sector="tech", volatility=0.02, base_price=None, **kwargs):
        return BotStock(
            symbol=symbol,
            company_name=f"{symbol.title()} Corp",
            sector=sector,
            current_price=price,
            base_price=price if base_price is None else base_price,
            volatility=volatility,
            last_tick_at=now - 30,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_ipo(now):
    def _make(
        symbol="JHNO",
        price=50.0,
        *,
        owner_id="player-1",
        ipo_price=None,
        base_points=100,
        expires_at=None,
        **kwargs,
    ):
        ipo_price = price if ipo_price is None else ipo_price
        return PlayerIPO(
            symbol=symbol,
            current_price=price,
            base_price=ipo_price,
            volatility=0.05,
            owner_id=owner_id,
            owner_name="johnsmith",
            ipo_price=ipo_price,
            base_points=base_points,
            starts_at=now - 3600,
            expires_at=now + 3600 if expires_at is None else expires_at,
            price_history=[PricePoint(time=now - 3600, price=ipo_price)],
            last_tick_at=now - 30,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_clock(store, rng, now):
    """Build a MarketClock over ``store`` with an empty event catalog unless one is given."""

    def _make(*, catalog=(), reward_sink=None, halts=None, **kwargs):
        return MarketClock(
            store=store,
            price_model=PriceModel(rng),
            events=EventDirector(list(catalog), rng),
            halts=halts if halts is not None else HaltController(),
            indices=IndexCalculator(),
            ipos=IPOLifecycle(store, reward_sink, clock=lambda: now),
            clock=lambda: now,
            **kwargs,
        )

    return _make


def flat_move(instrument, effects=()):
    """A PriceModel.next_price stand-in that leaves the price where it is."""
    price = instrument.current_price
    return PriceMove(price=price, high=instrument.high_24h, low=instrument.low_24h, previous_price=price)


@pytest.fixture
def flat():
    return flat_move
