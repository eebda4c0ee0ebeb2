"""Persistence contract for the exchange engine, plus a thread-safe in-memory store."""

from __future__ import annotations

import copy
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field, replace
from threading import Lock

from .errors import DuplicateIPOError, ExchangeError, InstrumentNotFoundError, WriteConflictError
from .events import EventBook
from .halts import HaltBook
from .models import (
    Instrument,
    InstrumentDelta,
    IndexDelta,
    IPOResult,
    MarketIndex,
    MarketStatus,
    PlayerIPO,
)


@dataclass(slots=True)
class MarketSnapshot:
    """Consistent copy of the whole market as of one committed tick.

    Snapshots are private copies: mutating one never affects the store.
    """

    version: int
    taken_at: float
    instruments: dict[str, Instrument] = field(default_factory=dict)
    indices: dict[str, MarketIndex] = field(default_factory=dict)
    events: EventBook = field(default_factory=EventBook)
    halts: HaltBook = field(default_factory=HaltBook)
    window_started_at: float = 0.0

    def status(self) -> MarketStatus:
        return self.halts.status()

    def active_instruments(self) -> list[Instrument]:
        return sorted(
            (i for i in self.instruments.values() if i.is_active),
            key=lambda i: i.symbol,
        )

    def active_symbols(self) -> set[str]:
        return {i.symbol for i in self.instruments.values() if i.is_active}

    def active_ipo_for(self, owner_id: str) -> PlayerIPO | None:
        for instrument in self.instruments.values():
            if isinstance(instrument, PlayerIPO) and instrument.is_active and instrument.owner_id == owner_id:
                return instrument
        return None

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "version": self.version,
            "status": self.status().to_dict(),
            "instruments": {s: i.to_dict() for s, i in sorted(self.instruments.items()) if i.is_active},
            "indices": {s: idx.to_dict() for s, idx in sorted(self.indices.items())},
            "halts": [h.to_dict() for h in self.halts.instruments.values()],
            "events": [e.to_dict() for e in self.events.active()],
        }


class MarketStore(ABC):
    """Durable state for stocks, indices, events, halts and IPOs.

    The MarketClock is the only writer of price, index, event and halt state; it
    groups each tick's writes in ``batch()`` so readers see either all of a tick
    or none of it. Readers (UI, admin validation) only call ``snapshot()``.

    Every write is keyed by symbol and may raise ``TransientStoreError``.
    """

    @abstractmethod
    def snapshot(self) -> MarketSnapshot:
        """Return a private copy of the last committed state."""

    @abstractmethod
    def batch(self) -> AbstractContextManager[None]:
        """Context manager grouping writes so they become visible together on exit.

        If the block raises, staged writes are discarded.
        """

    @abstractmethod
    def apply_instrument(self, delta: InstrumentDelta) -> None:
        """Write an instrument's new state if its ``last_tick_at`` still matches.

        Raises WriteConflictError when it does not, InstrumentNotFoundError for
        an unknown symbol.
        """

    @abstractmethod
    def apply_index(self, delta: IndexDelta) -> None:
        """Write an index's new value, high and low (and weights when rebuilt)."""

    @abstractmethod
    def save_events(self, events: EventBook) -> None:
        """Replace the live event book."""

    @abstractmethod
    def save_halts(self, halts: HaltBook) -> None:
        """Replace the halt book."""

    @abstractmethod
    def save_window_start(self, started_at: float) -> None:
        """Record when the current 24h high/low window began."""

    @abstractmethod
    def add_instrument(self, instrument: Instrument) -> None:
        """Insert a new instrument (seeding, admin listing). Symbol must be free."""

    @abstractmethod
    def add_index(self, index: MarketIndex) -> None:
        """Insert or replace an index definition."""

    @abstractmethod
    def create_ipo(self, ipo: PlayerIPO) -> None:
        """Insert a new IPO atomically.

        Raises DuplicateIPOError if the owner already has an active IPO, and
        ExchangeError if the symbol is in use by an active instrument.
        """

    @abstractmethod
    def retire_ipo(self, result: IPOResult) -> None:
        """Record an IPO's terminal result for audit."""

    @abstractmethod
    def ipo_results(self, owner_id: str | None = None) -> list[IPOResult]:
        """Terminal IPO results, oldest first, optionally for one owner."""

    @property
    @abstractmethod
    def version(self) -> int:
        """Monotonic counter bumped on every committed write."""


@dataclass(slots=True)
class _StagedWrites:
    instruments: dict[str, Instrument] = field(default_factory=dict)
    indices: dict[str, IndexDelta] = field(default_factory=dict)
    events: EventBook | None = None
    halts: HaltBook | None = None
    window_started_at: float | None = None
    results: list[IPOResult] = field(default_factory=list)


class InMemoryMarketStore(MarketStore):
    """Thread-safe in-memory MarketStore.

    Writer: MarketClock (one tick at a time, inside ``batch()``).
    Readers: SSE stream, admin validation, IPO status queries.
    """

    def __init__(self, window_started_at: float | None = None) -> None:
        self._instruments: dict[str, Instrument] = {}
        self._indices: dict[str, MarketIndex] = {}
        self._events = EventBook()
        self._halts = HaltBook()
        self._window_started_at = window_started_at if window_started_at is not None else time.time()
        self._results: list[IPOResult] = []
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every commit
        self._staged: _StagedWrites | None = None

    # --- Reads ---

    def snapshot(self) -> MarketSnapshot:
        with self._lock:
            return MarketSnapshot(
                version=self._version,
                taken_at=time.time(),
                instruments=copy.deepcopy(self._instruments),
                indices=copy.deepcopy(self._indices),
                events=copy.deepcopy(self._events),
                halts=copy.deepcopy(self._halts),
                window_started_at=self._window_started_at,
            )

    def ipo_results(self, owner_id: str | None = None) -> list[IPOResult]:
        with self._lock:
            return [r for r in self._results if owner_id is None or r.owner_id == owner_id]

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._instruments)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._instruments

    # --- Tick writes ---

    @contextmanager
    def batch(self) -> Iterator[None]:
        if self._staged is not None:
            raise ExchangeError("A write batch is already open")
        self._staged = _StagedWrites()
        try:
            yield
        except BaseException:
            self._staged = None
            raise
        staged, self._staged = self._staged, None
        with self._lock:
            self._publish(staged)

    def apply_instrument(self, delta: InstrumentDelta) -> None:
        with self._lock:
            current = None
            if self._staged is not None:
                current = self._staged.instruments.get(delta.symbol)
            if current is None:
                current = self._instruments.get(delta.symbol)
            if current is None:
                raise InstrumentNotFoundError(delta.symbol)
            if current.last_tick_at != delta.expected_tick_at:
                raise WriteConflictError(delta.symbol, delta.expected_tick_at, current.last_tick_at)
            instrument = copy.deepcopy(delta.instrument)
            if self._staged is not None:
                self._staged.instruments[delta.symbol] = instrument
                return
            self._instruments[delta.symbol] = instrument
            self._version += 1

    def apply_index(self, delta: IndexDelta) -> None:
        with self._lock:
            if delta.symbol not in self._indices:
                raise ExchangeError(f"Unknown index: {delta.symbol}")
            if self._staged is not None:
                self._staged.indices[delta.symbol] = delta
                return
            self._apply_index_delta(delta)
            self._version += 1

    def save_events(self, events: EventBook) -> None:
        events = copy.deepcopy(events)
        with self._lock:
            if self._staged is not None:
                self._staged.events = events
                return
            self._events = events
            self._version += 1

    def save_halts(self, halts: HaltBook) -> None:
        halts = copy.deepcopy(halts)
        with self._lock:
            if self._staged is not None:
                self._staged.halts = halts
                return
            self._halts = halts
            self._version += 1

    def save_window_start(self, started_at: float) -> None:
        with self._lock:
            if self._staged is not None:
                self._staged.window_started_at = started_at
                return
            self._window_started_at = started_at

    def retire_ipo(self, result: IPOResult) -> None:
        with self._lock:
            if self._staged is not None:
                self._staged.results.append(result)
                return
            self._results.append(result)
            self._version += 1

    # --- Out-of-tick writes ---

    def add_instrument(self, instrument: Instrument) -> None:
        with self._lock:
            existing = self._instruments.get(instrument.symbol)
            if existing is not None and existing.is_active:
                raise ExchangeError(f"Symbol already in use: {instrument.symbol}")
            self._instruments[instrument.symbol] = copy.deepcopy(instrument)
            self._version += 1

    def add_index(self, index: MarketIndex) -> None:
        with self._lock:
            self._indices[index.symbol] = copy.deepcopy(index)
            self._version += 1

    def create_ipo(self, ipo: PlayerIPO) -> None:
        with self._lock:
            for instrument in self._instruments.values():
                if not instrument.is_active:
                    continue
                if isinstance(instrument, PlayerIPO) and instrument.owner_id == ipo.owner_id:
                    raise DuplicateIPOError(copy.deepcopy(instrument))
                if instrument.symbol == ipo.symbol:
                    raise ExchangeError(f"Symbol already in use: {ipo.symbol}")
            self._instruments[ipo.symbol] = copy.deepcopy(ipo)
            self._version += 1

    # --- Internals ---

    def _publish(self, staged: _StagedWrites) -> None:
        """Apply a tick's staged writes in one step. Caller holds the lock."""
        self._instruments.update(staged.instruments)
        for delta in staged.indices.values():
            self._apply_index_delta(delta)
        if staged.events is not None:
            self._events = staged.events
        if staged.halts is not None:
            self._halts = staged.halts
        if staged.window_started_at is not None:
            self._window_started_at = staged.window_started_at
        self._results.extend(staged.results)
        self._version += 1

    def _apply_index_delta(self, delta: IndexDelta) -> None:
        index = self._indices[delta.symbol]
        changes = {
            "current_value": delta.current_value,
            "previous_close": delta.previous_close,
            "high_24h": delta.high_24h,
            "low_24h": delta.low_24h,
            "last_tick_at": delta.computed_at,
        }
        if delta.base_value is not None:
            changes["base_value"] = delta.base_value
        if delta.components is not None:
            changes["components"] = list(delta.components)
        self._indices[delta.symbol] = replace(index, **changes)
