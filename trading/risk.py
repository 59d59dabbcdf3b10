"""Pre-trade risk checklist."""
from dataclasses import dataclass, field

from common.models import SignalStrength, TradingSignal

MAX_POSITION_PCT = 0.10
MAX_DRAWDOWN_PCT = 0.15
MIN_CONFIDENCE = 0.70


@dataclass
class RiskCheck:
    name: str
    passed: bool
    detail: str


@dataclass
class RiskDecision:
    can_trade: bool
    position_size: float
    reasoning: str
    checks: list[RiskCheck] = field(default_factory=list)


def check_risk(signal: TradingSignal, equity: float, max_drawdown: float) -> RiskDecision:
    confidence_ok = signal.confidence >= MIN_CONFIDENCE
    drawdown_ok = max_drawdown < MAX_DRAWDOWN_PCT
    strength_ok = signal.strength != SignalStrength.HOLD

    checks = [
        RiskCheck("AI Confidence", confidence_ok,
                  f"Confidence {signal.confidence:.2f} {'>=' if confidence_ok else '<'} {MIN_CONFIDENCE}"),
        RiskCheck("Max Drawdown", drawdown_ok,
                  f"Drawdown {max_drawdown * 100:.2f}% {'<' if drawdown_ok else '>='} {MAX_DRAWDOWN_PCT * 100:.2f}%"),
        RiskCheck("Signal Strength", strength_ok, f"Signal is {signal.strength.value}"),
    ]
    can_trade = all(c.passed for c in checks)
    return RiskDecision(
        can_trade=can_trade,
        position_size=equity * MAX_POSITION_PCT if can_trade else 0.0,
        reasoning="All risk checks passed." if can_trade else "Risk checks failed.",
        checks=checks,
    )
