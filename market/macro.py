"""Macro environment: rates, dollar index, VIX, global liquidity.

MACRO_SOURCE=simulated (default) draws every value from realistic ranges.
MACRO_SOURCE=yfinance pulls the latest VIX and DXY closes from Yahoo Finance
and keeps simulated policy rates and liquidity.
"""
from dataclasses import dataclass, field

import pandas as pd

from common.models import InterestRates, MacroData
from config import settings
from market.base import BaseSource


@dataclass
class MacroImpact:
    crypto_friendly: bool
    risk: str                       # LOW | MEDIUM | HIGH
    risk_score: float
    warnings: list[str] = field(default_factory=list)


class MacroSource(BaseSource):
    name = "macro"

    MACRO_TICKERS = {
        "vix": "^VIX",      # Volatility Index
        "dxy": "DX-Y.NYB",  # US Dollar Index
    }

    def __init__(self, rng=None, source: str = None):
        super().__init__(rng)
        self.source = source or settings.MACRO_SOURCE

    def fetch(self, symbol: str, price: float) -> MacroData:
        simulated = self.simulate(symbol, price)
        if self.source != "yfinance":
            return simulated
        live = self._fetch_yfinance()
        return simulated.model_copy(update=live)

    def simulate(self, symbol: str, price: float) -> MacroData:
        return MacroData(
            interest_rates=InterestRates(
                us=self.uniform(5.25, 5.75),
                eu=self.uniform(4.0, 4.5),
                jp=self.uniform(0.1, 0.3),
            ),
            dxy=self.uniform(103, 106),
            vix=self.uniform(15, 25),
            global_liquidity=self._liquidity(),
        )

    def _liquidity(self) -> str:
        draw = self.rng.random()
        if draw < 0.3:
            return "CONTRACTING"
        if draw < 0.7:
            return "NEUTRAL"
        return "EXPANDING"

    def _fetch_yfinance(self) -> dict[str, float]:
        import yfinance as yf
        result = {}
        for name, ticker in self.MACRO_TICKERS.items():
            df = yf.download(ticker, period="5d", progress=False, auto_adjust=True)
            if df.empty:
                raise ValueError(f"Empty response for {ticker}")
            if isinstance(df.columns, pd.MultiIndex):
                df.columns = [c[0].lower() for c in df.columns]
            else:
                df.columns = [str(c).lower() for c in df.columns]
            result[name] = float(df["close"].dropna().iloc[-1])
            self.logger.info(f"Macro {ticker}: {result[name]:.2f}")
        return result


def analyze_macro_impact(macro: MacroData) -> MacroImpact:
    warnings = []
    risk = 0

    if macro.interest_rates.us - macro.interest_rates.jp > 5:
        warnings.append("⚠️ High US-JP rate differential: Carry trade unwinding risk")
        risk += 30
    if macro.interest_rates.us > 5.5:
        warnings.append("High US rates: Risk-off environment for crypto")
        risk += 20

    if macro.dxy > 105:
        warnings.append("Strong USD: Typically bearish for crypto")
        risk += 20
    elif macro.dxy < 100:
        warnings.append("Weak USD: Bullish for crypto")
        risk -= 20

    if macro.vix > 25:
        warnings.append("High VIX: Market fear, risk assets under pressure")
        risk += 30
    elif macro.vix < 15:
        warnings.append("Low VIX: Calm markets, supportive for risk assets")
        risk -= 10

    if macro.global_liquidity == "CONTRACTING":
        warnings.append("💧 Global liquidity contracting: Headwind for crypto")
        risk += 25
    elif macro.global_liquidity == "EXPANDING":
        warnings.append("💰 Global liquidity expanding: Tailwind for crypto")
        risk -= 25

    if risk < 20:
        level = "LOW"
    elif risk > 50:
        level = "HIGH"
    else:
        level = "MEDIUM"
    return MacroImpact(crypto_friendly=risk < 20, risk=level, risk_score=risk, warnings=warnings)
