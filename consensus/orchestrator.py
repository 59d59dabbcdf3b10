"""Multi-model consensus orchestrator.

Flow for one request:
  1. validate symbol and price
  2. gather market context and render the report (single gather)
  3. fan out to every configured provider concurrently, each call isolated
     by its own timeout
  4. reduce the successful analyses into one TradingSignal
"""
import asyncio
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from common.errors import AggregateFailure, InvariantViolation, ValidationError
from common.logger import get_logger
from common.models import (
    AIAnalysis, MarketContext, ProviderResult, ProviderStatus,
    SignalStrength, TradeDirection, TradingSignal,
)
from config import settings
from market.context import MarketContextAggregator
from providers.base import BaseProvider
from providers.registry import build_providers

logger = get_logger("orchestrator")

REASONING_EXCERPT = 100


@dataclass
class ConsensusResult:
    signal: TradingSignal
    market_context: MarketContext
    market_report: str
    provider_results: list[ProviderResult] = field(default_factory=list)

    @property
    def failures(self) -> list[ProviderResult]:
        return [r for r in self.provider_results if not r.ok]


def validate_request(symbol, market_data) -> tuple[str, float]:
    """Return the trimmed symbol and the price, or raise ValidationError naming the bad field."""
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError("symbol", symbol, "Must be a non-empty string.")
    if not isinstance(market_data, dict):
        raise ValidationError("marketData", market_data, "Must be an object with a price.")
    price = market_data.get("price")
    if (not isinstance(price, (int, float)) or isinstance(price, bool)
            or not math.isfinite(price) or price <= 0):
        raise ValidationError("price", price, "Must be a positive finite number.")
    return symbol.strip(), float(price)


def classify_signal(sentiment: float, confidence: float) -> tuple[SignalStrength, Optional[TradeDirection]]:
    """Threshold table; first match wins."""
    if sentiment >= 75 and confidence > 0.75:
        return SignalStrength.STRONG_BUY, TradeDirection.LONG
    if sentiment >= 60 and confidence > 0.65:
        return SignalStrength.BUY, TradeDirection.LONG
    if sentiment <= 25 and confidence > 0.75:
        return SignalStrength.STRONG_SELL, TradeDirection.SHORT
    if sentiment <= 40 and confidence > 0.65:
        return SignalStrength.SELL, TradeDirection.SHORT
    return SignalStrength.HOLD, None


def derive_levels(direction: Optional[TradeDirection], price: float,
                  stop_pct: float = 0.03, target_pct: float = 0.05) -> tuple[float, float]:
    """Stop-loss and take-profit for *direction*; (0, 0) when flat."""
    if direction is None:
        return 0.0, 0.0
    if direction == TradeDirection.LONG:
        stop, target = price * (1 - stop_pct), price * (1 + target_pct)
        ok = 0 < stop < price < target
    else:
        stop, target = price * (1 + stop_pct), price * (1 - target_pct)
        ok = 0 < target < price < stop
    if not ok:
        raise InvariantViolation(
            f"Invalid stopLoss/takeProfit for {direction.value}: SL={stop}, TP={target}, Price={price}"
        )
    return stop, target


def model_agreement(analyses: list[AIAnalysis], avg_sentiment: float) -> int:
    """Models whose sentiment sits on the same side of 50 as the consensus."""
    return sum(
        1 for a in analyses
        if (a.sentiment > 50 and avg_sentiment > 50) or (a.sentiment < 50 and avg_sentiment < 50)
    )


def synthesize_reasoning(analyses: list[AIAnalysis], avg_sentiment: float, avg_confidence: float,
                         strength: SignalStrength, direction: Optional[TradeDirection]) -> str:
    insights = "\n".join(
        f"   • {a.provider}: {a.reasoning[:REASONING_EXCERPT]}..." for a in analyses
    )
    return (
        f"Multi-factor consensus analysis based on {len(analyses)} AI models "
        f"with comprehensive market context:\n\n"
        f"📊 AI Consensus: {avg_sentiment:.1f}% sentiment, {avg_confidence * 100:.1f}% confidence\n"
        f"   Models in agreement: {model_agreement(analyses, avg_sentiment)}/{len(analyses)}\n\n"
        f"🔍 Analysis includes:\n"
        f"   • Technical indicators (RSI, MACD, EMAs, Bollinger Bands)\n"
        f"   • Macroeconomic factors (interest rates, USD strength, VIX, global liquidity)\n"
        f"   • News sentiment from multiple sources\n\n"
        f"💡 Key insights from AI models:\n{insights}\n\n"
        f"Signal: {strength.value} {direction.value if direction else 'NEUTRAL'}"
    )


class ConsensusOrchestrator:
    def __init__(self,
                 providers: Optional[list[BaseProvider]] = None,
                 aggregator: Optional[MarketContextAggregator] = None,
                 timeout: Optional[float] = None,
                 include_placeholders: Optional[bool] = None,
                 stop_pct: Optional[float] = None,
                 target_pct: Optional[float] = None):
        self.providers = providers if providers is not None else build_providers()
        self.aggregator = aggregator or MarketContextAggregator()
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.include_placeholders = (settings.INCLUDE_PLACEHOLDER_ANALYSES
                                     if include_placeholders is None else include_placeholders)
        self.stop_pct = stop_pct if stop_pct is not None else settings.STOP_LOSS_PCT
        self.target_pct = target_pct if target_pct is not None else settings.TAKE_PROFIT_PCT

    async def _run_provider(self, provider: BaseProvider, symbol: str,
                            market_data: dict, report: str) -> ProviderResult:
        try:
            return await asyncio.wait_for(provider.analyze(symbol, market_data, report), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"❌ {provider.name} timed out after {self.timeout}s")
            return ProviderResult(provider=provider.name, status=ProviderStatus.TRANSPORT_ERROR,
                                  error=f"timed out after {self.timeout}s")
        except Exception as e:
            logger.exception(f"❌ {provider.name} failed unexpectedly")
            return ProviderResult(provider=provider.name, status=ProviderStatus.TRANSPORT_ERROR, error=repr(e))

    def _usable(self, result: ProviderResult) -> bool:
        if not result.ok:
            return False
        return self.include_placeholders or not result.analysis.placeholder

    async def analyze(self, symbol: str, market_data: dict) -> ConsensusResult:
        symbol, price = validate_request(symbol, market_data)

        logger.info(f"🔍 Gathering market context for {symbol}...")
        report, context = await self.aggregator.generate_report(symbol, price)

        names = ", ".join(p.name for p in self.providers)
        logger.info(f"🚀 Starting parallel AI analysis ({names})...")
        results = await asyncio.gather(
            *(self._run_provider(p, symbol, market_data, report) for p in self.providers)
        )

        analyses = [r.analysis for r in results if self._usable(r)]
        if not analyses:
            raise AggregateFailure("All AI analyses failed")
        logger.info(f"📈 {len(analyses)}/{len(results)} AI models responded successfully")

        avg_sentiment = float(np.mean([a.sentiment for a in analyses]))
        avg_confidence = float(np.mean([a.confidence for a in analyses]))
        strength, direction = classify_signal(avg_sentiment, avg_confidence)
        stop, target = derive_levels(direction, price, self.stop_pct, self.target_pct)

        signal = TradingSignal(
            symbol=symbol,
            strength=strength,
            direction=direction,
            sentiment=avg_sentiment,
            confidence=avg_confidence,
            consensus=avg_confidence,
            entry_price=price,
            stop_loss=stop,
            take_profit=target,
            reasoning=synthesize_reasoning(analyses, avg_sentiment, avg_confidence, strength, direction),
            analyses=analyses,
        )
        logger.info(f"🎯 Final signal for {symbol}: {strength.value} {direction.value if direction else 'NEUTRAL'}")
        return ConsensusResult(signal=signal, market_context=context,
                               market_report=report, provider_results=list(results))
