"""Technical indicators.

Values are simulated around the current price until an OHLCV history feed is
wired in; ``interpret_technicals`` is a pure function over whatever values it
receives.
"""
from dataclasses import dataclass, field
from typing import Optional

from common.models import BollingerBands, EmaValues, MacdValues, TechnicalIndicators
from market.base import BaseSource


@dataclass
class TechnicalReading:
    trend: str                      # BULLISH | BEARISH | NEUTRAL
    strength: float                 # 0..100
    signals: list[str] = field(default_factory=list)


class TechnicalsSource(BaseSource):
    name = "technicals"

    def fetch(self, symbol: str, price: float) -> TechnicalIndicators:
        return self.simulate(symbol, price)

    def simulate(self, symbol: str, price: float) -> TechnicalIndicators:
        volatility = self.uniform(0.7, 1.0)
        rsi = self.uniform(30, 70)

        macd_value = self.uniform(-0.5, 0.5) * price * 0.02
        macd_signal = macd_value * self.uniform(0.8, 1.2)

        ema50 = price * self.uniform(0.95, 1.05)
        ema200 = price * self.uniform(0.90, 1.10)

        width = price * 0.04 * volatility
        middle = price * self.uniform(0.98, 1.02)

        return TechnicalIndicators(
            rsi=rsi,
            macd=MacdValues(value=macd_value, signal=macd_signal, histogram=macd_value - macd_signal),
            ema=EmaValues(ema50=ema50, ema200=ema200),
            bollinger_bands=BollingerBands(upper=middle + width, middle=middle, lower=middle - width),
        )


def interpret_technicals(t: TechnicalIndicators, price: Optional[float] = None) -> TechnicalReading:
    """Score RSI, MACD, EMA cross and Bollinger position into a trend call.

    *price* positions the close inside the Bollinger bands; without it the
    band midpoint is used, which never triggers the band signals.
    """
    signals = []
    bullish = bearish = 0

    if t.rsi < 30:
        signals.append("RSI oversold (potential reversal up)")
        bullish += 30
    elif t.rsi > 70:
        signals.append("RSI overbought (potential reversal down)")
        bearish += 30
    else:
        signals.append(f"RSI neutral at {t.rsi:.1f}")

    if t.macd.histogram > 0:
        signals.append("MACD bullish (histogram positive)")
        bullish += 25
    else:
        signals.append("MACD bearish (histogram negative)")
        bearish += 25

    if t.ema.ema50 > t.ema.ema200:
        signals.append("Golden cross (EMA50 > EMA200)")
        bullish += 25
    else:
        signals.append("Death cross (EMA50 < EMA200)")
        bearish += 25

    bb = t.bollinger_bands
    close = price if price is not None else bb.middle
    band = bb.upper - bb.lower
    if band > 0:
        position = (close - bb.lower) / band
        if position < 0.2:
            signals.append("Price near lower BB (oversold)")
            bullish += 20
        elif position > 0.8:
            signals.append("Price near upper BB (overbought)")
            bearish += 20

    net = bullish - bearish
    if net > 20:
        trend = "BULLISH"
    elif net < -20:
        trend = "BEARISH"
    else:
        trend = "NEUTRAL"
    return TechnicalReading(trend=trend, strength=abs(net), signals=signals)
