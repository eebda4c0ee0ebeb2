"""Simulated securities exchange for the Mint tycoon game.

Public API:
    MarketClock          - Drives every tick: events, prices, halts, indices, IPO expiry
    MarketStore          - Abstract persistence contract
    InMemoryMarketStore  - Thread-safe in-memory store with atomic tick batches
    AdminControl         - Validated admin overrides, applied between ticks
    IPOLifecycle         - Player IPO launch, status and reward
    EngineConfig         - Policy knobs with EXCHANGE_* environment overrides
    create_market_clock  - Factory that wires a clock around a store
    seed_store           - Loads the bot stock universe, ETFs and master index
    create_stream_router - FastAPI router factory for status and SSE endpoints
"""

from .admin import AdminControl
from .clock import MarketClock, TickReport
from .config import EngineConfig
from .errors import (
    DuplicateIPOError,
    ExchangeError,
    InstrumentNotFoundError,
    InvalidCommandError,
    IPOEligibilityError,
    TransientStoreError,
    WriteConflictError,
)
from .factory import create_market_clock
from .ipo import IPOLifecycle
from .seed_data import seed_store
from .store import InMemoryMarketStore, MarketSnapshot, MarketStore
from .stream import create_stream_router

__all__ = [
    "AdminControl",
    "MarketClock",
    "TickReport",
    "EngineConfig",
    "ExchangeError",
    "TransientStoreError",
    "WriteConflictError",
    "InstrumentNotFoundError",
    "InvalidCommandError",
    "DuplicateIPOError",
    "IPOEligibilityError",
    "create_market_clock",
    "IPOLifecycle",
    "seed_store",
    "MarketStore",
    "MarketSnapshot",
    "InMemoryMarketStore",
    "create_stream_router",
]
