"""Factory for wiring a market engine around a store."""

from __future__ import annotations

import logging

import numpy as np

from .clock import MarketClock
from .config import EngineConfig
from .events import EventDirector
from .halts import HaltController
from .indices import IndexCalculator
from .ipo import IPOLifecycle, RewardSink
from .models import MarketEvent
from .price_model import PriceModel
from .seed_data import EVENT_CATALOG
from .store import MarketStore

logger = logging.getLogger(__name__)


def create_market_clock(
    store: MarketStore,
    reward_sink: RewardSink | None = None,
    config: EngineConfig | None = None,
    catalog: list[MarketEvent] | None = None,
) -> MarketClock:
    """Build a MarketClock with every collaborator sharing one random generator.

    - ``config`` None -> EngineConfig.from_env()
    - EXCHANGE_RNG_SEED set -> deterministic replay of the whole engine
    - Otherwise -> OS entropy

    Returns an unstarted clock. Caller must await clock.start().
    """
    config = config if config is not None else EngineConfig.from_env()
    rng = np.random.default_rng(config.rng_seed)

    if config.rng_seed is not None:
        logger.info("Market engine: seeded generator (%d)", config.rng_seed)
    else:
        logger.info("Market engine: unseeded generator")

    clock = MarketClock(
        store=store,
        price_model=PriceModel(rng),
        events=EventDirector(
            EVENT_CATALOG if catalog is None else catalog,
            rng,
            activation_probability=config.event_probability,
        ),
        halts=HaltController(
            threshold=config.breaker_threshold,
            cooldown=config.halt_cooldown,
            escalation_fraction=config.escalation_fraction,
            escalation_window=config.escalation_window,
            market_cooldown=config.market_halt_cooldown,
        ),
        indices=IndexCalculator(),
        ipos=IPOLifecycle(store, reward_sink, window_seconds=config.ipo_window_seconds),
        tick_interval=config.tick_interval,
        max_write_retries=config.max_write_retries,
    )
    logger.info(
        "Market engine configured: %.1fs ticks, %.0f%% breaker",
        config.tick_interval, config.breaker_threshold * 100,
    )
    return clock
