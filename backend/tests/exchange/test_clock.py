"""Tests for MarketClock: the tick pipeline and the background loop."""

import asyncio
from unittest.mock import patch

import pytest

from app.exchange.errors import TransientStoreError
from app.exchange.halts import HaltController
from app.exchange.models import EffectType, GlobalScope, IndexType, MarketEvent, MarketIndex, ScopeKind
from app.exchange.price_model import PriceMove


def _jump(symbols, factor):
    """next_price stand-in moving ``symbols`` by ``factor`` and holding everything else flat."""

    def _next_price(instrument, effects=()):
        price = instrument.current_price
        if instrument.symbol in symbols:
            price = round(price * factor, 2)
        return PriceMove(
            price=price,
            high=max(instrument.high_24h, price),
            low=min(instrument.low_24h, price),
            previous_price=instrument.current_price,
        )

    return _next_price


class TestTick:
    """Tests for a single synchronous tick."""

    def test_active_instruments_tick(self, store, make_stock, make_clock, now):
        """Every active, non-halted instrument gets a new price and tick time."""
        for symbol in ("AAA", "BBB"):
            store.add_instrument(make_stock(symbol))
        store.add_instrument(make_stock("DEAD", is_active=False))

        report = make_clock().tick()

        assert report.ticked == ["AAA", "BBB"]
        snapshot = store.snapshot()
        assert snapshot.instruments["AAA"].last_tick_at == now
        assert snapshot.instruments["DEAD"].last_tick_at == now - 30

    def test_circuit_breaker_halts_and_freezes_price(self, store, make_stock, make_clock, now):
        """A forced 25% move halts the instrument and keeps its price."""
        for symbol in ("ACME", "B", "C", "D", "E"):
            store.add_instrument(make_stock(symbol, 100.0))
        clock = make_clock()

        with patch.object(clock._price_model, "next_price", side_effect=_jump({"ACME"}, 1.25)):
            report = clock.tick()

        assert [h.symbol for h in report.halted] == ["ACME"]
        snapshot = store.snapshot()
        assert snapshot.instruments["ACME"].current_price == 100.0
        assert snapshot.instruments["ACME"].high_24h == 100.0
        halt = snapshot.halts.get("ACME")
        assert 300 <= halt.resumes_at - now <= 900
        assert report.market_halt is None

    def test_halted_instrument_skipped_until_resume(self, store, make_stock, make_clock, now, flat):
        """A halted instrument does not tick, then resumes on the tick its halt expires."""
        for symbol in ("ACME", "B", "C", "D", "E"):
            store.add_instrument(make_stock(symbol, 100.0))
        clock = make_clock()
        with patch.object(clock._price_model, "next_price", side_effect=_jump({"ACME"}, 1.25)):
            clock.tick(now)

        with patch.object(clock._price_model, "next_price", side_effect=flat):
            assert "ACME" not in clock.tick(now + 60).ticked
            report = clock.tick(now + 300)
        assert "ACME" in report.ticked
        assert [h.symbol for h in report.resumed] == ["ACME"]

    def test_escalation_halts_market(self, store, make_stock, make_clock, now, flat):
        """Four of ten instruments tripping halts the whole market."""
        symbols = [f"S{i}" for i in range(10)]
        for symbol in symbols:
            store.add_instrument(make_stock(symbol, 100.0))
        clock = make_clock()

        with patch.object(clock._price_model, "next_price", side_effect=_jump(set(symbols[:4]), 1.3)):
            report = clock.tick(now)
        assert report.market_halt is not None
        assert store.snapshot().status().trading_halted is True

        with patch.object(clock._price_model, "next_price", side_effect=flat) as next_price:
            report = clock.tick(now + 30)
        assert report.ticked == []
        next_price.assert_not_called()

    def test_market_resumes_after_cooldown(self, store, make_stock, make_clock, now):
        """Trading restarts once the market halt is due."""
        store.add_instrument(make_stock())
        clock = make_clock(halts=HaltController(market_cooldown=600))
        snapshot = store.snapshot()
        clock._halts.halt_market(snapshot.halts, "test", now)
        store.save_halts(snapshot.halts)

        assert clock.tick(now + 599).ticked == []
        assert clock.tick(now + 600).ticked == ["ACME"]

    def test_non_positive_price_force_halted(self, store, make_stock, make_clock):
        """A corrupt price is halted with a diagnostic instead of propagating."""
        store.add_instrument(make_stock("BAD", 0.0, base_price=10.0))
        store.add_instrument(make_stock("GOOD"))

        report = make_clock().tick()

        assert report.ticked == ["GOOD"]
        halt = store.snapshot().halts.get("BAD")
        assert halt.resumes_at is None
        assert "not positive" in halt.reason

    def test_prices_stay_positive(self, store, make_stock, make_clock, now):
        """No tick ever commits a non-positive price."""
        store.add_instrument(make_stock("PENNY", 0.05, volatility=0.06))
        clock = make_clock()
        for i in range(200):
            clock.tick(now + i * 30)
            assert store.snapshot().instruments["PENNY"].current_price > 0


class TestStoreFailures:
    """Tests for per-instrument retry and skip."""

    def test_transient_failure_retried(self, store, make_stock, make_clock):
        """A write that fails once succeeds on retry."""
        store.add_instrument(make_stock("FLAKY"))
        clock = make_clock()
        original = store.apply_instrument
        failures = []

        def flaky(delta):
            if not failures:
                failures.append(delta.symbol)
                raise TransientStoreError("timeout")
            return original(delta)

        with patch.object(store, "apply_instrument", side_effect=flaky):
            report = clock.tick()
        assert report.ticked == ["FLAKY"]
        assert report.skipped == []

    def test_exhausted_retries_skip_only_that_instrument(self, store, make_stock, make_clock, now):
        """One failing instrument is skipped; the rest of the tick commits."""
        store.add_instrument(make_stock("FLAKY"))
        store.add_instrument(make_stock("SOLID"))
        clock = make_clock(max_write_retries=3)
        original = store.apply_instrument
        attempts = []

        def flaky(delta):
            if delta.symbol == "FLAKY":
                attempts.append(delta.symbol)
                raise TransientStoreError("timeout")
            return original(delta)

        with patch.object(store, "apply_instrument", side_effect=flaky):
            report = clock.tick()

        assert len(attempts) == 3
        assert report.skipped == ["FLAKY"]
        assert report.ticked == ["SOLID"]
        snapshot = store.snapshot()
        assert snapshot.instruments["FLAKY"].last_tick_at == now - 30
        assert snapshot.instruments["SOLID"].last_tick_at == now

    def test_unwritable_retirement_skipped_until_next_tick(
        self, store, make_stock, make_ipo, make_clock, now
    ):
        """An expiring IPO the store rejects stays live; the rest of the tick commits."""
        paid = []
        store.add_instrument(make_stock("SOLID"))
        store.create_ipo(make_ipo(expires_at=now))
        clock = make_clock(reward_sink=paid.append, max_write_retries=2)
        original = store.apply_instrument

        def reject_ipo(delta):
            if delta.symbol == "JHNO":
                raise TransientStoreError("timeout")
            return original(delta)

        with patch.object(store, "apply_instrument", side_effect=reject_ipo):
            report = clock.tick(now)

        assert report.skipped == ["JHNO"]
        assert report.ticked == ["SOLID"]
        assert report.retired == []
        assert paid == []
        snapshot = store.snapshot()
        assert snapshot.instruments["SOLID"].last_tick_at == now
        assert snapshot.instruments["JHNO"].is_active
        assert store.ipo_results("player-1") == []

        report = clock.tick(now + 30)
        assert [r.symbol for r in report.retired] == ["JHNO"]
        assert len(paid) == 1
        assert not store.snapshot().instruments["JHNO"].is_active

    def test_failed_tick_publishes_nothing(self, store, make_stock, make_clock):
        """An unexpected error leaves the last committed state in place."""
        store.add_instrument(make_stock())
        clock = make_clock()
        version = store.version

        with patch.object(clock._halts, "clear_expired", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                clock.tick()
        assert store.version == version


class TestEvents:
    """Tests for events inside the tick."""

    def test_instant_spike_applied_once(self, store, make_stock, make_clock, now):
        """An instant spike moves the price on one tick and is gone the next."""
        store.add_instrument(make_stock())
        spike = MarketEvent(
            "viral-news", "Viral News", EffectType.INSTANT_SPIKE, 15, 0, True, 1, ScopeKind.INSTRUMENT
        )
        clock = make_clock(catalog=[spike])
        clock._events._probability = 1.0

        with patch.object(clock._price_model, "noise", return_value=0.0):
            report = clock.tick(now)
            assert len(report.events.activated) == 1
            assert store.snapshot().instruments["ACME"].current_price == pytest.approx(115.0)

            clock._events._probability = 0.0
            report = clock.tick(now + 30)
        assert [e.event.slug for e in report.events.expired] == ["viral-news"]
        assert len(store.snapshot().events) == 0

    def test_events_expire_while_market_halted(self, store, make_stock, make_clock, now):
        """A market-wide halt stops activation and pricing but not event expiry."""
        store.add_instrument(make_stock())
        bull = MarketEvent("bull-run", "Bull Run", EffectType.TREND_BIAS, 5, 1, True, 2, ScopeKind.GLOBAL)
        clock = make_clock(catalog=[bull])
        snapshot = store.snapshot()
        clock._events.activate(snapshot.events, bull, GlobalScope(), now)
        clock._halts.halt_market(snapshot.halts, "maintenance", now, persistent=True)
        store.save_events(snapshot.events)
        store.save_halts(snapshot.halts)
        clock._events._probability = 1.0

        report = clock.tick(now + 600)

        assert [e.event.slug for e in report.events.expired] == ["bull-run"]
        assert report.events.activated == []
        assert report.ticked == []
        assert len(store.snapshot().events) == 0
        assert store.snapshot().events.history[-1].event.slug == "bull-run"


class TestIPOs:
    """Tests for IPO handling inside the tick."""

    def test_expired_ipo_retired_with_reward(self, store, make_ipo, make_clock, now):
        """An IPO issued at 50 that ends at 75 pays 150 points and stops ticking."""
        paid = []
        store.create_ipo(make_ipo(price=75.0, ipo_price=50.0, base_points=100, expires_at=now))
        clock = make_clock(reward_sink=paid.append)

        report = clock.tick(now)

        assert [r.potential_points for r in report.retired] == [150]
        assert [r.potential_points for r in paid] == [150]
        assert report.ticked == []
        ipo = store.snapshot().instruments["JHNO"]
        assert ipo.is_active is False
        assert ipo.current_price == 75.0
        assert store.ipo_results("player-1")[0].potential_points == 150

        next_report = clock.tick(now + 30)
        assert "JHNO" not in next_report.ticked
        assert next_report.retired == []
        assert len(paid) == 1

    def test_live_ipo_ticks_and_charts(self, store, make_ipo, make_clock):
        """A live IPO is simulated and its chart grows."""
        store.create_ipo(make_ipo())
        report = make_clock().tick()
        assert report.ticked == ["JHNO"]
        assert len(store.snapshot().instruments["JHNO"].price_history) == 2


class TestIndices:
    """Tests for index updates inside the tick."""

    def _seed(self, store, make_stock):
        store.add_instrument(make_stock("AAA", 100.0))
        store.add_instrument(make_stock("BBB", 100.0))
        store.add_index(
            MarketIndex(symbol="MINT35", name="Mint 35 Index", index_type=IndexType.MASTER, base_value=1000.0)
        )

    def test_index_follows_constituents(self, store, make_stock, make_clock):
        """The index moves with its constituents after they commit."""
        self._seed(store, make_stock)
        clock = make_clock()

        with patch.object(clock._price_model, "next_price", side_effect=_jump({"AAA", "BBB"}, 1.1)):
            report = clock.tick()

        assert report.indices_updated == ["MINT35"]
        index = store.snapshot().indices["MINT35"]
        assert index.current_value == pytest.approx(1100.0)
        assert sum(c.weight for c in index.components) == pytest.approx(1.0)

    def test_master_drop_halts_market(self, store, make_stock, make_clock):
        """A master index falling 10% below its close halts trading."""
        self._seed(store, make_stock)
        clock = make_clock(halts=HaltController(threshold=0.5))

        with patch.object(clock._price_model, "next_price", side_effect=_jump({"AAA", "BBB"}, 0.85)):
            report = clock.tick()

        assert report.market_halt is not None
        assert "MINT35" in report.market_halt.reason
        assert store.snapshot().halts.market_halted

    def test_window_roll(self, store, make_stock, make_clock, now, flat):
        """After 24h, previous close, high and low restart from the current price."""
        store.add_instrument(make_stock("AAA", 120.0, base_price=100.0, previous_close=100.0, high_24h=130.0))
        store.save_window_start(now - 86400)
        clock = make_clock()

        with patch.object(clock._price_model, "next_price", side_effect=flat):
            report = clock.tick(now)

        assert report.window_rolled
        stock = store.snapshot().instruments["AAA"]
        assert (stock.previous_close, stock.high_24h, stock.low_24h) == (120.0, 120.0, 120.0)
        assert store.snapshot().window_started_at == now

    def test_halted_instrument_rolls_when_it_resumes(self, store, make_stock, make_clock, now, flat):
        """An instrument halted across the roll gets a fresh window on the tick it resumes."""
        store.add_instrument(make_stock("AAA", 120.0, base_price=100.0, previous_close=100.0, high_24h=130.0))
        store.save_window_start(now - 86400)
        clock = make_clock()
        snapshot = store.snapshot()
        clock._halts.halt_instrument(snapshot.halts, "AAA", "news pending", now, cooldown=300)
        store.save_halts(snapshot.halts)

        with patch.object(clock._price_model, "next_price", side_effect=flat):
            clock.tick(now)
            stock = store.snapshot().instruments["AAA"]
            assert (stock.previous_close, stock.high_24h) == (100.0, 130.0)
            assert store.snapshot().halts.pending_roll == {"AAA"}

            report = clock.tick(now + 300)

        assert report.ticked == ["AAA"]
        stock = store.snapshot().instruments["AAA"]
        assert (stock.previous_close, stock.high_24h, stock.low_24h) == (120.0, 120.0, 120.0)
        assert store.snapshot().halts.pending_roll == set()

    def test_window_roll_rearms_index_drop(self, store, make_stock, make_clock, now):
        """The daily roll clears the index drop level already fired."""
        self._seed(store, make_stock)
        snapshot = store.snapshot()
        snapshot.halts.index_drop_level = 0.10
        store.save_halts(snapshot.halts)
        store.save_window_start(now - 86400)

        make_clock().tick(now)

        assert store.snapshot().halts.index_drop_level == 0.0


@pytest.mark.asyncio
class TestClockLoop:
    """Tests for the background loop."""

    async def test_start_ticks_in_background(self, store, make_stock, make_clock):
        """The loop ticks on its interval until stopped."""
        store.add_instrument(make_stock())
        clock = make_clock(tick_interval=0.05)
        await clock.start()
        assert clock.is_running
        await asyncio.sleep(0.3)
        await clock.stop()

        assert clock.tick_count >= 2
        assert not clock.is_running

    async def test_stop_is_clean(self, make_clock):
        """stop() is idempotent and safe before start()."""
        clock = make_clock(tick_interval=0.05)
        await clock.stop()
        await clock.start()
        await clock.stop()
        await clock.stop()
        assert not clock.is_running

    async def test_loop_survives_tick_failure(self, store, make_stock, make_clock):
        """A failing tick is logged and the loop keeps going."""
        store.add_instrument(make_stock())
        clock = make_clock(tick_interval=0.02)
        calls = []
        real_tick = clock.tick

        def sometimes_broken(now=None):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real_tick(now)

        with patch.object(clock, "tick", side_effect=sometimes_broken):
            await clock.start()
            await asyncio.sleep(0.2)
            await clock.stop()

        assert len(calls) >= 2
        assert clock.tick_count >= 1
