"""Tests for market context sources, interpretation and report rendering."""
import numpy as np
import pytest
import requests

from common.models import (
    BollingerBands, EmaValues, InterestRates, MacdValues, MacroData, MarketContext,
    NewsSentiment, TechnicalIndicators,
)
from market import prices
from market.context import MarketContextAggregator, build_market_report
from market.macro import MacroSource, analyze_macro_impact
from market.news import NewsSource, summarize
from market.technicals import TechnicalsSource, interpret_technicals


def make_technicals(rsi=50.0, histogram=1.0, ema50=101.0, ema200=99.0,
                    upper=104.0, middle=100.0, lower=96.0) -> TechnicalIndicators:
    return TechnicalIndicators(
        rsi=rsi,
        macd=MacdValues(value=histogram, signal=0.0, histogram=histogram),
        ema=EmaValues(ema50=ema50, ema200=ema200),
        bollinger_bands=BollingerBands(upper=upper, middle=middle, lower=lower),
    )


def make_macro(us=5.3, eu=4.2, jp=0.2, dxy=104.0, vix=20.0, liquidity="NEUTRAL") -> MacroData:
    return MacroData(interest_rates=InterestRates(us=us, eu=eu, jp=jp),
                     dxy=dxy, vix=vix, global_liquidity=liquidity)


def make_context(degraded=None) -> MarketContext:
    return MarketContext(
        technicals=make_technicals(),
        macro=make_macro(),
        news=NewsSentiment(score=35.0, summary="Positive sentiment around BTC.",
                           key_topics=["ETF inflows"], sources=42),
        degraded=degraded or [],
    )


class BrokenSource(MacroSource):
    def fetch(self, symbol, price):
        raise ConnectionError("macro feed unreachable")


# ── Technicals ────────────────────────────────────────────────────────────────

class TestTechnicals:
    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_simulated_values_in_range(self, seed):
        t = TechnicalsSource(rng=np.random.default_rng(seed)).fetch("BTC/EUR", 50000.0)
        assert 30 <= t.rsi <= 70
        assert t.macd.histogram == pytest.approx(t.macd.value - t.macd.signal)
        assert 0.95 * 50000 <= t.ema.ema50 <= 1.05 * 50000
        assert t.bollinger_bands.upper > t.bollinger_bands.middle > t.bollinger_bands.lower

    def test_same_seed_same_values(self):
        a = TechnicalsSource(rng=np.random.default_rng(7)).fetch("ETH/EUR", 2600.0)
        b = TechnicalsSource(rng=np.random.default_rng(7)).fetch("ETH/EUR", 2600.0)
        assert a == b

    def test_all_bullish(self):
        t = make_technicals(rsi=25, histogram=1.0, ema50=101, ema200=99)
        reading = interpret_technicals(t, price=96.5)
        assert reading.trend == "BULLISH"
        assert reading.strength == 100
        assert "Price near lower BB (oversold)" in reading.signals

    def test_all_bearish(self):
        t = make_technicals(rsi=75, histogram=-1.0, ema50=99, ema200=101)
        reading = interpret_technicals(t, price=103.8)
        assert reading.trend == "BEARISH"
        assert reading.strength == 100
        assert "RSI overbought (potential reversal down)" in reading.signals

    def test_mixed_signals_neutral_without_price(self):
        t = make_technicals(rsi=50, histogram=1.0, ema50=99, ema200=101)
        reading = interpret_technicals(t)
        assert reading.trend == "NEUTRAL"
        assert reading.strength == 0
        assert reading.signals[0] == "RSI neutral at 50.0"

    def test_zero_width_band_ignored(self):
        t = make_technicals(rsi=50, histogram=1.0, ema50=101, ema200=99,
                            upper=100, middle=100, lower=100)
        reading = interpret_technicals(t, price=100)
        assert reading.strength == 50
        assert not any("BB" in s for s in reading.signals)


# ── Macro ─────────────────────────────────────────────────────────────────────

class TestMacro:
    def test_high_risk(self):
        impact = analyze_macro_impact(make_macro(us=5.6, jp=0.2, dxy=106, vix=26, liquidity="CONTRACTING"))
        assert impact.risk_score == 125
        assert impact.risk == "HIGH"
        assert impact.crypto_friendly is False
        assert len(impact.warnings) == 5

    def test_crypto_friendly(self):
        impact = analyze_macro_impact(make_macro(us=4.0, jp=0.2, dxy=99, vix=14, liquidity="EXPANDING"))
        assert impact.risk_score == -55
        assert impact.risk == "LOW"
        assert impact.crypto_friendly is True

    def test_medium_risk(self):
        impact = analyze_macro_impact(make_macro(us=5.3, jp=0.2, dxy=104, vix=20, liquidity="NEUTRAL"))
        assert impact.risk_score == 30
        assert impact.risk == "MEDIUM"
        assert impact.crypto_friendly is False
        assert impact.warnings == ["⚠️ High US-JP rate differential: Carry trade unwinding risk"]

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_simulated_ranges(self, seed):
        m = MacroSource(rng=np.random.default_rng(seed), source="simulated").fetch("BTC/EUR", 1.0)
        assert 5.25 <= m.interest_rates.us <= 5.75
        assert 0.1 <= m.interest_rates.jp <= 0.3
        assert 103 <= m.dxy <= 106
        assert 15 <= m.vix <= 25
        assert m.global_liquidity in {"EXPANDING", "CONTRACTING", "NEUTRAL"}


# ── News ──────────────────────────────────────────────────────────────────────

class TestNews:
    def test_summary_buckets(self):
        assert summarize("BTC", 30)[0].startswith("Positive sentiment around BTC")
        assert summarize("BTC", -30)[0].startswith("Cautious sentiment for BTC")
        assert summarize("BTC", 0)[0] == "Mixed sentiment for BTC. Market awaiting catalysts."

    def test_simulated_values(self):
        n = NewsSource(rng=np.random.default_rng(5)).fetch("SOL/EUR", 118.6)
        assert -50 <= n.score <= 50
        assert 20 <= n.sources < 70
        assert "SOL" in n.summary
        assert len(n.key_topics) == 3


# ── Report ────────────────────────────────────────────────────────────────────

class TestMarketReport:
    def test_report_is_deterministic(self):
        context = make_context()
        first = build_market_report("BTC/EUR", 100.0, context)
        assert first == build_market_report("BTC/EUR", 100.0, context)
        assert first.startswith("=== COMPREHENSIVE MARKET ANALYSIS FOR BTC/EUR ===")
        assert first.endswith("=== END OF REPORT ===")
        for header in ("📊 TECHNICAL ANALYSIS:", "🌍 MACROECONOMIC ENVIRONMENT:", "📰 NEWS & SENTIMENT:"):
            assert header in first
        assert "- Sources Analyzed: 42" in first
        assert "DEGRADED" not in first

    def test_degraded_marker(self):
        report = build_market_report("BTC/EUR", 100.0, make_context(degraded=["macro", "news"]))
        assert report.splitlines()[1] == "[DEGRADED: macro, news] simulated values substituted for failed sources"

    @pytest.mark.asyncio
    async def test_failed_source_is_substituted(self):
        aggregator = MarketContextAggregator(
            technicals=TechnicalsSource(rng=np.random.default_rng(1)),
            macro=BrokenSource(rng=np.random.default_rng(2), source="simulated"),
            news=NewsSource(rng=np.random.default_rng(3)),
        )
        report, context = await aggregator.generate_report("BTC/EUR", 100.0)
        assert context.degraded == ["macro"]
        assert "[DEGRADED: macro]" in report
        assert 103 <= context.macro.dxy <= 106

    @pytest.mark.asyncio
    async def test_report_matches_returned_context(self, aggregator):
        report, context = await aggregator.generate_report("ETH/EUR", 2600.0)
        assert context.degraded == []
        assert report == build_market_report("ETH/EUR", 2600.0, context)
        assert f"- RSI: {context.technicals.rsi:.1f}" in report

    def test_no_module_level_aggregator(self):
        from market import context as context_module
        shared = [v for v in vars(context_module).values() if isinstance(v, MarketContextAggregator)]
        assert shared == []


# ── Prices ────────────────────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, data):
        self._data = data

    def raise_for_status(self):
        pass

    def json(self):
        return self._data


class TestPrices:
    def test_coingecko_rows(self, monkeypatch):
        data = {"bitcoin": {"eur": 50000, "eur_24h_change": 1.2, "eur_24h_vol": 9e9,
                            "eur_market_cap": 1e12, "last_updated_at": 1700000000}}
        monkeypatch.setattr(prices.requests, "get", lambda *a, **kw: FakeResponse(data))
        snapshot = prices.fetch_realtime_prices(["BTC", "ETH"])
        assert list(snapshot) == ["BTC/EUR"]
        assert snapshot["BTC/EUR"]["price"] == 50000.0
        assert snapshot["BTC/EUR"]["change24h"] == 1.2
        assert snapshot["BTC/EUR"]["source"] == "coingecko"

    def test_network_error_uses_fallback(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("offline")
        monkeypatch.setattr(prices.requests, "get", boom)
        snapshot = prices.fetch_realtime_prices(["BTC", "XYZ"])
        assert snapshot["BTC/EUR"]["price"] == 78235.50
        assert snapshot["XYZ/EUR"]["price"] == 100.0
        assert all(row["source"] == "fallback" for row in snapshot.values())

    def test_price_map(self):
        assert prices.price_map(prices.fallback_prices(["ETH"])) == {"ETH/EUR": 2625.80}
