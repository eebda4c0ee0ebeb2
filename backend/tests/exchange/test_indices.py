"""Tests for IndexCalculator."""

import pytest

from app.exchange.indices import IndexCalculator
from app.exchange.models import IndexType, MarketIndex


def _master():
    return MarketIndex(symbol="MINT35", name="Mint 35 Index", index_type=IndexType.MASTER, base_value=1000.0)


def _sector(sector="tech"):
    return MarketIndex(
        symbol="MTEK", name="MintTech ETF", index_type=IndexType.SECTOR, sector=sector, base_value=100.0
    )


class TestWeights:
    """Tests for weight construction."""

    def test_hybrid_weights(self, make_stock):
        """Master weights blend 70% market cap with 30% equal weight."""
        weights = IndexCalculator().hybrid_weights([make_stock("AAA", 100.0), make_stock("BBB", 300.0)])
        assert weights["AAA"] == pytest.approx(0.325)
        assert weights["BBB"] == pytest.approx(0.675)

    def test_weights_sum_to_one(self, make_stock):
        """Weights of every rebuilt index sum to 1."""
        stocks = [make_stock(f"S{i}", 10.0 * (i + 1), sector="tech" if i % 2 else "energy") for i in range(9)]
        calculator = IndexCalculator()
        for index in (_master(), _sector("tech"), _sector("energy")):
            calculator.rebuild(index, stocks)
            assert sum(c.weight for c in index.components) == pytest.approx(1.0, abs=1e-9)

    def test_sector_weights_equal(self, make_stock):
        """Sector indices weight their constituents equally."""
        index = _sector("tech")
        IndexCalculator().rebuild(index, [make_stock("AAA", 10.0), make_stock("BBB", 5000.0)])
        assert [c.weight for c in index.components] == [0.5, 0.5]

    def test_only_active_bot_stocks_are_constituents(self, make_stock, make_ipo):
        """IPOs and inactive stocks never enter an index."""
        index = _master()
        IndexCalculator().rebuild(
            index, [make_stock("AAA"), make_stock("DEAD", is_active=False), make_ipo()]
        )
        assert index.constituents == frozenset({"AAA"})

    def test_sector_index_filters_by_sector(self, make_stock):
        """A sector index holds only that sector's stocks."""
        index = _sector("energy")
        IndexCalculator().rebuild(index, [make_stock("OIL", sector="energy"), make_stock("CHIP", sector="tech")])
        assert index.constituents == frozenset({"OIL"})

    def test_unchanged_constituents_skip_rebuild(self, make_stock):
        """Price noise alone does not churn weights."""
        calculator = IndexCalculator()
        index = _master()
        stocks = [make_stock("AAA", 100.0), make_stock("BBB", 200.0)]
        assert calculator.rebuild(index, stocks) is True
        weights = [c.weight for c in index.components]

        stocks[0].current_price = 150.0
        assert calculator.rebuild(index, stocks) is False
        assert [c.weight for c in index.components] == weights


class TestValues:
    """Tests for index value computation."""

    def test_value_tracks_relative_performance(self, make_stock):
        """Every constituent up 10% puts the index up 10%."""
        calculator = IndexCalculator()
        index = _master()
        calculator.rebuild(index, [make_stock("AAA", 100.0), make_stock("BBB", 2000.0)])
        assert calculator.recompute(index, {"AAA": 110.0, "BBB": 2200.0}) == pytest.approx(1100.0)

    def test_missing_price_counts_at_base(self, make_stock):
        """A constituent with no price given is treated as unchanged."""
        calculator = IndexCalculator()
        index = _sector()
        calculator.rebuild(index, [make_stock("AAA", 100.0), make_stock("BBB", 50.0)])
        assert calculator.recompute(index, {"AAA": 120.0}) == pytest.approx(110.0)

    def test_halted_constituent_keeps_last_price(self, make_stock):
        """A frozen price still counts; it does not drop out or block recomputation."""
        calculator = IndexCalculator()
        index = _sector()
        calculator.rebuild(index, [make_stock("AAA", 100.0), make_stock("HALT", 100.0)])
        # HALT frozen at 80 while AAA keeps trading
        assert calculator.recompute(index, {"AAA": 100.0, "HALT": 80.0}) == pytest.approx(90.0)
        assert calculator.recompute(index, {"AAA": 110.0, "HALT": 80.0}) == pytest.approx(95.0)

    def test_update_tracks_high_and_low(self, make_stock, now):
        """update() extends the 24h range and returns a delta."""
        calculator = IndexCalculator()
        index = _sector()
        calculator.rebuild(index, [make_stock("AAA", 100.0)])

        calculator.update(index, {"AAA": 120.0}, now)
        delta = calculator.update(index, {"AAA": 90.0}, now + 30)

        assert delta.current_value == pytest.approx(90.0)
        assert delta.high_24h == pytest.approx(120.0)
        assert delta.low_24h == pytest.approx(90.0)
        assert delta.components is None

    def test_rebuild_keeps_value_continuous(self, make_stock, now):
        """Adding a constituent does not make the published value jump."""
        calculator = IndexCalculator()
        index = _master()
        stocks = [make_stock("AAA", 100.0), make_stock("BBB", 200.0)]
        calculator.rebuild(index, stocks)
        stocks[0].current_price = 130.0
        calculator.update(index, {s.symbol: s.current_price for s in stocks}, now)
        before = index.current_value

        stocks.append(make_stock("CCC", 50.0, base_price=40.0))
        assert calculator.rebuild(index, stocks) is True
        after = calculator.recompute(index, {s.symbol: s.current_price for s in stocks})
        assert after == pytest.approx(before, abs=0.01)

    def test_retained_components_keep_base_price(self, make_stock):
        """Rebuilding keeps each surviving component's reference price."""
        calculator = IndexCalculator()
        index = _master()
        stocks = [make_stock("AAA", 100.0), make_stock("BBB", 200.0)]
        calculator.rebuild(index, stocks)
        stocks[0].current_price = 150.0
        calculator.rebuild(index, stocks[:1])
        assert index.components[0].base_price == 100.0

    def test_roll_window(self):
        """Rolling the window resets close, high and low to the current value."""
        index = _sector()
        index.current_value = 105.0
        index.high_24h = 110.0
        index.low_24h = 95.0
        IndexCalculator.roll_window(index)
        assert (index.previous_close, index.high_24h, index.low_24h) == (105.0, 105.0, 105.0)
