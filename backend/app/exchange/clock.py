"""Market clock: the single driver that advances the whole market one tick at a time."""

from __future__ import annotations

import asyncio
import copy
import logging
import queue
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .admin import (
    AdminCommand,
    CashOutCommand,
    DelistCommand,
    HaltCommand,
    ResetPriceCommand,
    ResumeCommand,
)
from .errors import ExchangeError, TransientStoreError
from .events import EventDirector, EventTick
from .halts import HaltController
from .indices import IndexCalculator
from .ipo import IPOLifecycle
from .models import (
    Instrument,
    InstrumentDelta,
    InstrumentHalt,
    IndexType,
    IPOResult,
    MarketWideHalt,
    PlayerIPO,
)
from .price_model import PriceModel
from .store import MarketSnapshot, MarketStore

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 3600


@dataclass(slots=True)
class TickReport:
    """What one tick did. Returned by ``MarketClock.tick`` and logged at debug level."""

    number: int
    started_at: float
    ticked: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    halted: list[InstrumentHalt] = field(default_factory=list)
    resumed: list[InstrumentHalt | MarketWideHalt] = field(default_factory=list)
    market_halt: MarketWideHalt | None = None
    events: EventTick | None = None
    indices_updated: list[str] = field(default_factory=list)
    retired: list[IPOResult] = field(default_factory=list)
    commands_applied: int = 0
    window_rolled: bool = False


class MarketClock:
    """Drives the market on a fixed interval.

    Each tick, against one snapshot and inside one store batch:
      1. apply queued admin commands
      2. roll the 24h window if due, clear expired halts, roll instruments that
         were halted at the last roll and now trade, rebuild index weights whose
         constituent set changed
      3. run the EventDirector; while the market is halted, only expire events
      4. for each active, non-halted instrument: PriceModel, then the circuit
         breaker, committing either the new price or a halt
      5. escalate to a market-wide halt if too many instruments tripped
      6. recompute indices whose constituents changed
      7. retire IPOs whose window has ended

    ``tick()`` is synchronous. The background loop runs it in a worker thread
    and only checks for stop between ticks, so a tick always runs to completion.
    """

    def __init__(
        self,
        store: MarketStore,
        price_model: PriceModel,
        events: EventDirector,
        halts: HaltController,
        indices: IndexCalculator,
        ipos: IPOLifecycle,
        *,
        tick_interval: float = 30.0,
        window_seconds: float = DAY_SECONDS,
        max_write_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._price_model = price_model
        self._events = events
        self._halts = halts
        self._indices = indices
        self._ipos = ipos
        self._interval = tick_interval
        self._window = window_seconds
        self._max_retries = max_write_retries
        self._clock = clock
        self._commands: queue.SimpleQueue[AdminCommand] = queue.SimpleQueue()
        self._tick_count = 0
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def store(self) -> MarketStore:
        return self._store

    @property
    def ipos(self) -> IPOLifecycle:
        return self._ipos

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, command: AdminCommand) -> None:
        """Queue a command for the next tick boundary. Thread-safe."""
        self._commands.put(command)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Begin ticking in the background. Calling start() on a running clock is a no-op."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="market-clock")
        logger.info("Market clock started: %.1fs interval", self._interval)

    async def stop(self) -> None:
        """Stop after the in-flight tick (if any) completes. Safe to call multiple times."""
        if self._task and not self._task.done():
            self._stop_event.set()
            await self._task
        self._task = None
        logger.info("Market clock stopped after %d ticks", self._tick_count)

    async def _run_loop(self) -> None:
        """Core loop: tick, then wait out the interval unless asked to stop."""
        while not self._stop_event.is_set():
            try:
                report = await asyncio.to_thread(self.tick)
                logger.debug(
                    "Tick %d: %d ticked, %d halted, %d skipped",
                    report.number, len(report.ticked), len(report.halted), len(report.skipped),
                )
            except Exception:
                logger.exception("Market tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    # --- The tick ---

    def tick(self, now: float | None = None) -> TickReport:
        """Advance the market by one tick and commit it as a single batch."""
        now = self._clock() if now is None else now
        report = TickReport(number=self._tick_count + 1, started_at=now)
        snapshot = self._store.snapshot()
        changed: set[str] = set()

        with self._store.batch():
            self._apply_commands(snapshot, now, report, changed)
            rolled = self._roll_window(snapshot, now, report)
            report.resumed = self._halts.clear_expired(snapshot.halts, now)
            self._roll_resumed(snapshot, report)
            rebuilt = self._rebuild_indices(snapshot)

            if snapshot.halts.market_halted:
                report.events = self._events.expire(now, snapshot.events)
            else:
                self._tick_instruments(snapshot, now, report, changed)

            self._update_indices(snapshot, now, report, changed, rebuilt | rolled)
            self._retire_expired(snapshot, now, report)
            self._store.save_events(snapshot.events)
            self._store.save_halts(snapshot.halts)

        self._tick_count += 1
        for result in report.retired:
            self._ipos.award(result)
        return report

    # --- Steps ---

    def _apply_commands(
        self,
        snapshot: MarketSnapshot,
        now: float,
        report: TickReport,
        changed: set[str],
    ) -> None:
        while True:
            try:
                command = self._commands.get_nowait()
            except queue.Empty:
                return
            try:
                self._apply_command(command, snapshot, now, report, changed)
                report.commands_applied += 1
            except ExchangeError as e:
                logger.warning("Dropped admin command %s: %s", command, e)

    def _apply_command(
        self,
        command: AdminCommand,
        snapshot: MarketSnapshot,
        now: float,
        report: TickReport,
        changed: set[str],
    ) -> None:
        halts = snapshot.halts
        if isinstance(command, HaltCommand):
            if command.symbol is None:
                self._halts.halt_market(halts, command.reason, now, persistent=command.persistent)
            else:
                self._live(snapshot, command.symbol)
                self._halts.halt_instrument(
                    halts, command.symbol, command.reason, now, persistent=command.persistent
                )
        elif isinstance(command, ResumeCommand):
            if command.symbol is None:
                self._halts.resume_market(halts)
            else:
                self._halts.resume_instrument(halts, command.symbol)
        elif isinstance(command, ResetPriceCommand):
            if halts.market_halted:
                raise ExchangeError("market is halted")
            instrument = self._live(snapshot, command.symbol)
            updated = copy.deepcopy(instrument)
            updated.current_price = updated.base_price
            updated.high_24h = max(updated.high_24h, updated.base_price)
            updated.low_24h = min(updated.low_24h, updated.base_price)
            updated.last_tick_at = max(now, instrument.last_tick_at)
            if isinstance(updated, PlayerIPO):
                self._ipos.record_price(updated, now)
            if not self._commit(instrument, updated, report):
                raise ExchangeError("store rejected the reset")
            snapshot.instruments[command.symbol] = updated
            changed.add(command.symbol)
            logger.info("Price of %s reset to base %.2f", command.symbol, updated.base_price)
        elif isinstance(command, (DelistCommand, CashOutCommand)):
            instrument = self._live(snapshot, command.symbol)
            if not isinstance(instrument, PlayerIPO):
                raise ExchangeError(f"{command.symbol} is not a player stock")
            reason = "delisted" if isinstance(command, DelistCommand) else "cashed_out"
            if not self._retire(snapshot, instrument, now, reason, report):
                raise ExchangeError(f"store rejected retirement of {command.symbol}")
        else:
            raise ExchangeError(f"Unknown command type: {type(command).__name__}")

    def _roll_window(self, snapshot: MarketSnapshot, now: float, report: TickReport) -> set[str]:
        """Start a new 24h window for instruments and indices when the old one has elapsed."""
        if now - snapshot.window_started_at < self._window:
            return set()
        halts = snapshot.halts
        for instrument in snapshot.active_instruments():
            if halts.is_halted(instrument.symbol):
                # Rolled on the tick it resumes
                halts.pending_roll.add(instrument.symbol)
                continue
            halts.pending_roll.discard(instrument.symbol)
            self._roll_instrument(snapshot, instrument, report)
        for index in snapshot.indices.values():
            self._indices.roll_window(index)
        halts.index_drop_level = 0.0
        snapshot.window_started_at = now
        self._store.save_window_start(now)
        report.window_rolled = True
        logger.info("24h window rolled at %.0f", now)
        return set(snapshot.indices)

    def _roll_resumed(self, snapshot: MarketSnapshot, report: TickReport) -> None:
        """Roll the window for instruments that were halted at the last roll and now trade."""
        halts = snapshot.halts
        for symbol in sorted(halts.pending_roll):
            instrument = snapshot.instruments.get(symbol)
            if instrument is None or not instrument.is_active:
                halts.pending_roll.discard(symbol)
            elif not halts.is_halted(symbol) and self._roll_instrument(snapshot, instrument, report):
                halts.pending_roll.discard(symbol)

    def _roll_instrument(self, snapshot: MarketSnapshot, instrument: Instrument, report: TickReport) -> bool:
        updated = copy.deepcopy(instrument)
        updated.previous_close = updated.current_price
        updated.high_24h = updated.current_price
        updated.low_24h = updated.current_price
        if not self._commit(instrument, updated, report, record_skip=False):
            return False
        snapshot.instruments[instrument.symbol] = updated
        return True

    def _rebuild_indices(self, snapshot: MarketSnapshot) -> set[str]:
        instruments = list(snapshot.instruments.values())
        return {
            symbol
            for symbol, index in snapshot.indices.items()
            if self._indices.rebuild(index, instruments)
        }

    def _tick_instruments(
        self,
        snapshot: MarketSnapshot,
        now: float,
        report: TickReport,
        changed: set[str],
    ) -> None:
        halts = snapshot.halts
        active = [
            i for i in snapshot.active_instruments()
            if not (isinstance(i, PlayerIPO) and self._ipos.is_expired(i, now))
        ]

        for instrument in active:
            if instrument.current_price <= 0 and not halts.is_halted(instrument.symbol):
                report.halted.append(
                    self._halts.halt_instrument(
                        halts,
                        instrument.symbol,
                        f"Invalid state: price {instrument.current_price} is not positive",
                        now,
                        persistent=True,
                    )
                )
                logger.error("Force-halted %s: non-positive price", instrument.symbol)

        eligible = [i for i in active if not halts.is_halted(i.symbol)]
        report.events = self._events.tick(now, snapshot.events, eligible)

        for instrument in eligible:
            effects = snapshot.events.effects_for(instrument)
            move = self._price_model.next_price(instrument, effects)

            trip = self._halts.check_move(halts, instrument, move.price, now)
            if trip is not None:
                report.halted.append(trip)
                continue

            updated = copy.deepcopy(instrument)
            updated.current_price = move.price
            updated.high_24h = move.high
            updated.low_24h = move.low
            updated.trend, updated.trend_strength = self._price_model.next_trend(instrument)
            updated.last_tick_at = max(now, instrument.last_tick_at)
            if isinstance(updated, PlayerIPO):
                self._ipos.record_price(updated, now)
                self._ipos.annotate_event(updated, effects)

            if self._commit(instrument, updated, report):
                snapshot.instruments[instrument.symbol] = updated
                report.ticked.append(instrument.symbol)
                changed.add(instrument.symbol)

        snapshot.events.consume_instant()
        report.market_halt = self._halts.check_escalation(halts, len(active), now)

    def _update_indices(
        self,
        snapshot: MarketSnapshot,
        now: float,
        report: TickReport,
        changed: set[str],
        forced: set[str],
    ) -> None:
        prices = {s: i.current_price for s, i in snapshot.instruments.items()}
        for symbol, index in sorted(snapshot.indices.items()):
            if symbol not in forced and not (index.constituents & changed):
                continue
            delta = self._indices.update(index, prices, now, rebuilt=symbol in forced)
            try:
                self._store.apply_index(delta)
            except TransientStoreError as e:
                logger.error("Index %s not written this tick: %s", symbol, e)
                continue
            report.indices_updated.append(symbol)
            if index.index_type is IndexType.MASTER:
                market_halt = self._halts.check_index_drop(snapshot.halts, index, now)
                if market_halt is not None:
                    report.market_halt = market_halt

    def _retire_expired(self, snapshot: MarketSnapshot, now: float, report: TickReport) -> None:
        """Retire IPOs past their window. One that cannot be written stays active for the next tick."""
        for instrument in snapshot.active_instruments():
            if isinstance(instrument, PlayerIPO) and self._ipos.is_expired(instrument, now):
                self._retire(snapshot, instrument, now, "expired", report)

    # --- Helpers ---

    def _retire(
        self,
        snapshot: MarketSnapshot,
        ipo: PlayerIPO,
        now: float,
        reason: str,
        report: TickReport,
    ) -> bool:
        """Close out ``ipo``. False if the store write was skipped; nothing is recorded then."""
        updated = copy.deepcopy(ipo)
        result = self._ipos.retire(updated, now, reason)
        if not self._commit(ipo, updated, report):
            return False
        self._store.retire_ipo(result)
        snapshot.instruments[ipo.symbol] = updated
        snapshot.halts.instruments.pop(ipo.symbol, None)
        report.retired.append(result)
        return True

    @staticmethod
    def _live(snapshot: MarketSnapshot, symbol: str) -> Instrument:
        instrument = snapshot.instruments.get(symbol)
        if instrument is None or not instrument.is_active:
            raise ExchangeError(f"{symbol} is not an active instrument")
        return instrument

    def _commit(
        self,
        before: Instrument,
        after: Instrument,
        report: TickReport,
        *,
        record_skip: bool = True,
    ) -> bool:
        """Write one instrument, retrying transient failures. False if it had to be skipped."""
        delta = InstrumentDelta(instrument=after, expected_tick_at=before.last_tick_at)
        for attempt in range(1, self._max_retries + 1):
            try:
                self._store.apply_instrument(delta)
                return True
            except TransientStoreError as e:
                logger.warning(
                    "Store write for %s failed (attempt %d/%d): %s",
                    after.symbol, attempt, self._max_retries, e,
                )
        logger.error("Skipping %s this tick: store write retries exhausted", after.symbol)
        if record_skip:
            report.skipped.append(after.symbol)
        return False
