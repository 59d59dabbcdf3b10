"""Position sizing.

Kelly criterion once there is enough trade history, fixed fractional before
that. All functions are pure and validate their inputs strictly; a bad input
raises ValidationError naming the field, it is never clamped.
"""
import math
from dataclasses import dataclass
from typing import Optional

from common.errors import ValidationError

KELLY_MIN_TRADES = 30
DEFAULT_RISK = 0.02
KELLY_BALANCE_CAP = 0.10
FIXED_BALANCE_CAP = 0.05


@dataclass(frozen=True)
class HistoricalStats:
    win_rate: float
    avg_win: float          # average winning trade, percent
    avg_loss: float         # average losing trade, percent
    total_trades: int


@dataclass(frozen=True)
class SizingResult:
    size: float
    method: str
    reasoning: str


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_balance(balance) -> None:
    if not _finite(balance) or balance <= 0:
        raise ValidationError("balance", balance, "Must be a positive finite number.")


def _check_unit(field: str, value) -> None:
    if not _finite(value) or not 0 <= value <= 1:
        raise ValidationError(field, value, "Must be between 0 and 1.")


def kelly_position_size(balance: float, win_rate: float, avg_win_percent: float,
                        avg_loss_percent: float, confidence: float,
                        risk_per_trade: float = DEFAULT_RISK) -> float:
    """Half Kelly scaled by confidence, capped at twice the per-trade risk.

    f = (b*p - q) / b with b = |avg_win / avg_loss|, p = win rate, q = 1 - p.
    """
    _check_balance(balance)
    if not _finite(avg_loss_percent) or avg_loss_percent == 0:
        raise ValidationError("avg_loss_percent", avg_loss_percent, "Cannot be zero or infinite.")
    if not _finite(avg_win_percent):
        raise ValidationError("avg_win_percent", avg_win_percent, "Must be a finite number.")
    _check_unit("win_rate", win_rate)
    _check_unit("confidence", confidence)
    _check_unit("risk_per_trade", risk_per_trade)

    payoff = abs(avg_win_percent / avg_loss_percent)
    if payoff == 0:
        return 0.0
    kelly = (payoff * win_rate - (1 - win_rate)) / payoff
    fraction = max(0.0, kelly * 0.5) * confidence
    return balance * min(fraction, risk_per_trade * 2)


def fixed_fractional_size(balance: float, risk_percent: float = DEFAULT_RISK,
                          confidence: float = 1.0) -> float:
    _check_balance(balance)
    _check_unit("risk_percent", risk_percent)
    _check_unit("confidence", confidence)
    return balance * risk_percent * confidence


def volatility_adjusted_size(balance: float, base_risk: float, volatility: float) -> float:
    """Shrink the base risk as volatility grows: balance * risk / (1 + vol)."""
    _check_balance(balance)
    _check_unit("base_risk", base_risk)
    if not _finite(volatility) or volatility < 0:
        raise ValidationError("volatility", volatility, "Must be a non-negative finite number.")
    return balance * base_risk / (1 + volatility)


def _check_stats(stats: HistoricalStats) -> None:
    """avg_loss is left out: a bad loss figure falls back to fixed fractional."""
    _check_unit("win_rate", stats.win_rate)
    if not _finite(stats.avg_win):
        raise ValidationError("avg_win", stats.avg_win, "Must be a finite number.")
    if not isinstance(stats.total_trades, int) or isinstance(stats.total_trades, bool) or stats.total_trades < 0:
        raise ValidationError("total_trades", stats.total_trades, "Must be a non-negative integer.")


def calculate_optimal_size(balance: float, confidence: float,
                           historical_stats: Optional[HistoricalStats] = None) -> SizingResult:
    _check_balance(balance)
    _check_unit("confidence", confidence)
    if historical_stats is not None:
        _check_stats(historical_stats)

    if historical_stats is not None and historical_stats.total_trades >= KELLY_MIN_TRADES:
        if not _finite(historical_stats.avg_loss) or historical_stats.avg_loss == 0:
            size = fixed_fractional_size(balance, DEFAULT_RISK, confidence)
            return SizingResult(
                size=min(size, balance * FIXED_BALANCE_CAP),
                method="Fixed Fractional",
                reasoning="Falling back to fixed fractional due to invalid historical loss data",
            )
        size = kelly_position_size(
            balance,
            win_rate=historical_stats.win_rate,
            avg_win_percent=historical_stats.avg_win,
            avg_loss_percent=historical_stats.avg_loss,
            confidence=confidence,
        )
        return SizingResult(
            size=min(size, balance * KELLY_BALANCE_CAP),
            method="Kelly Criterion",
            reasoning=f"Optimal size based on {historical_stats.total_trades} historical trades",
        )

    size = fixed_fractional_size(balance, DEFAULT_RISK, confidence)
    return SizingResult(
        size=min(size, balance * FIXED_BALANCE_CAP),
        method="Fixed Fractional",
        reasoning="Conservative sizing due to limited historical data",
    )
