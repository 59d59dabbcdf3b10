"""Market context aggregator.

Technical, macro and news sub-reports are gathered concurrently and rendered
into a single text report. The context the report was rendered from is
returned with it, so what gets persisted is exactly what the models saw.

A failing sub-source never aborts the analysis: its simulated values are
substituted, the source is listed in ``MarketContext.degraded`` and the report
carries a ``[DEGRADED: ...]`` line.
"""
import asyncio
from typing import Optional

from common.logger import get_logger
from common.models import MarketContext
from market.base import BaseSource
from market.macro import MacroSource, analyze_macro_impact
from market.news import NewsSource
from market.technicals import TechnicalsSource, interpret_technicals

logger = get_logger("market_context")


class MarketContextAggregator:
    def __init__(self,
                 technicals: Optional[BaseSource] = None,
                 macro: Optional[BaseSource] = None,
                 news: Optional[BaseSource] = None):
        self.technicals = technicals or TechnicalsSource()
        self.macro = macro or MacroSource()
        self.news = news or NewsSource()

    async def _fetch(self, source: BaseSource, symbol: str, price: float, failed: set):
        try:
            return await asyncio.to_thread(source.fetch, symbol, price)
        except Exception as e:
            logger.warning(f"{source.name} source failed for {symbol}: {e}. Using simulated values.")
            failed.add(source.name)
            return source.simulate(symbol, price)

    async def gather(self, symbol: str, price: float) -> MarketContext:
        sources = (self.technicals, self.macro, self.news)
        failed: set = set()
        technicals, macro, news = await asyncio.gather(
            *(self._fetch(s, symbol, price, failed) for s in sources)
        )
        return MarketContext(
            technicals=technicals,
            macro=macro,
            news=news,
            degraded=[s.name for s in sources if s.name in failed],
        )

    async def generate_report(self, symbol: str, price: float) -> tuple[str, MarketContext]:
        context = await self.gather(symbol, price)
        return build_market_report(symbol, price, context), context


def _rsi_label(rsi: float) -> str:
    if rsi < 30:
        return "(Oversold)"
    if rsi > 70:
        return "(Overbought)"
    return "(Neutral)"


def _news_label(score: float) -> str:
    if score > 20:
        return "(Positive)"
    if score < -20:
        return "(Negative)"
    return "(Neutral)"


def build_market_report(symbol: str, price: float, context: MarketContext) -> str:
    """Render the report. Pure: same inputs, same text."""
    t, m, n = context.technicals, context.macro, context.news
    reading = interpret_technicals(t, price)
    impact = analyze_macro_impact(m)
    rates = m.interest_rates

    lines = [f"=== COMPREHENSIVE MARKET ANALYSIS FOR {symbol} ==="]
    if context.degraded:
        lines.append(f"[DEGRADED: {', '.join(context.degraded)}] simulated values substituted for failed sources")

    lines += [
        "",
        "📊 TECHNICAL ANALYSIS:",
        f"- Current Price: €{price:.2f}",
        f"- Trend: {reading.trend} (Strength: {reading.strength:g}%)",
        f"- RSI: {t.rsi:.1f} {_rsi_label(t.rsi)}",
        f"- MACD: {'Bullish' if t.macd.histogram > 0 else 'Bearish'} (Histogram: {t.macd.histogram:.4f})",
        f"- EMA50: €{t.ema.ema50:.2f}",
        f"- EMA200: €{t.ema.ema200:.2f}",
        f"- Price vs EMA50: {'Above (Bullish)' if price > t.ema.ema50 else 'Below (Bearish)'}",
        f"- Bollinger Bands: Lower €{t.bollinger_bands.lower:.2f} | "
        f"Middle €{t.bollinger_bands.middle:.2f} | Upper €{t.bollinger_bands.upper:.2f}",
        "",
        "Technical Signals:",
        *(f"  • {s}" for s in reading.signals),
        "",
        "🌍 MACROECONOMIC ENVIRONMENT:",
        f"- US Interest Rate: {rates.us:.2f}%",
        f"- EU Interest Rate: {rates.eu:.2f}%",
        f"- Japan Interest Rate: {rates.jp:.2f}%"
        + (" ⚠️ HIGH CARRY TRADE RISK" if rates.us - rates.jp > 5 else ""),
        f"- US Dollar Index (DXY): {m.dxy:.2f} "
        + ("(Strong USD - Bearish for crypto)" if m.dxy > 105 else "(Weak USD - Bullish for crypto)"),
        f"- VIX (Fear Index): {m.vix:.2f} {'(High fear)' if m.vix > 25 else '(Low fear)'}",
        f"- Global Liquidity: {m.global_liquidity}",
        "",
        "Macro Assessment:",
        f"- Crypto Friendly: {'✅ YES' if impact.crypto_friendly else '❌ NO'}",
        f"- Risk Level: {impact.risk}",
    ]
    if impact.warnings:
        lines.append("Warnings:")
        lines += [f"  {w}" for w in impact.warnings]

    lines += [
        "",
        "📰 NEWS & SENTIMENT:",
        f"- Sentiment Score: {n.score:.1f}/100 {_news_label(n.score)}",
        f"- Sources Analyzed: {n.sources}",
        f"- Summary: {n.summary}",
        f"- Key Topics: {', '.join(n.key_topics)}",
        "",
        "=== END OF REPORT ===",
    ]
    return "\n".join(lines)

