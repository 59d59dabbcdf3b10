"""Signal backtest.

Signals are replayed in timestamp order. Each tradable signal opens a
fixed-size position that the position monitor walks along a price path until
its stop-loss or take-profit triggers; a path that runs out closes the
position at its last price. Metrics are computed with pandas over the
resulting trades, and ``summarize_positions`` gives the same report for
closed paper positions.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

import numpy as np
import pandas as pd
from pydantic import field_validator

from common.errors import ValidationError
from common.logger import get_logger
from common.models import CamelModel, Position, TradeDirection, TradingSignal, is_positive_finite
from trading.positions import check_position

logger = get_logger("backtest")

TRADING_DAYS = 252
END_OF_PATH = "END_OF_PATH"

PricePath = Callable[[TradingSignal], Iterable[float]]


class BacktestConfig(CamelModel):
    initial_capital: float = 10000.0
    position_size: float = 200.0        # fixed amount per trade
    symbols: Optional[list[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class BacktestTrade(CamelModel):
    symbol: str
    direction: TradeDirection
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    pnl: float
    pnl_percent: float
    exit_reason: str


class EquityPoint(CamelModel):
    date: datetime
    equity: float


class BacktestResults(CamelModel):
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    trades: list[BacktestTrade] = []
    equity_curve: list[EquityPoint] = []


def _check_positive(field: str, value) -> None:
    if not is_positive_finite(value):
        raise ValidationError(field, value, "Must be a positive finite number.")


def random_walk(rng: Optional[np.random.Generator] = None, steps: int = 240,
                volatility: float = 0.01) -> PricePath:
    """Geometric random walk of *steps* ticks starting at the signal's entry price."""
    rng = rng if rng is not None else np.random.default_rng()

    def path(signal: TradingSignal) -> np.ndarray:
        return signal.entry_price * np.exp(np.cumsum(rng.normal(0.0, volatility, steps)))

    return path


def _in_window(signal: TradingSignal, config: BacktestConfig) -> bool:
    if config.symbols is not None and signal.symbol not in config.symbols:
        return False
    if config.start is not None and signal.timestamp < config.start:
        return False
    if config.end is not None and signal.timestamp > config.end:
        return False
    return True


def replay_signal(signal: TradingSignal, prices: Iterable[float], position_size: float,
                  step: timedelta = timedelta(hours=1)) -> Optional[BacktestTrade]:
    """Walk one signal's position along *prices*; None for HOLD or an empty path."""
    if signal.direction is None:
        return None
    position = Position(
        symbol=signal.symbol,
        direction=signal.direction,
        entry_price=signal.entry_price,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        quantity=position_size / signal.entry_price,
        position_value=position_size,
        entry_time=signal.timestamp,
    )

    update, ticks = None, 0
    for ticks, price in enumerate(prices, start=1):
        update = check_position(position, float(price))
        if update.should_close:
            break
    if update is None:
        return None

    return BacktestTrade(
        symbol=signal.symbol,
        direction=signal.direction,
        entry_time=signal.timestamp,
        entry_price=signal.entry_price,
        exit_time=signal.timestamp + ticks * step,
        exit_price=update.current_price,
        pnl=update.pnl,
        pnl_percent=update.pnl_percent,
        exit_reason=update.close_reason.value if update.should_close else END_OF_PATH,
    )


def run_backtest(config: BacktestConfig, signals: list[TradingSignal],
                 price_path: Optional[PricePath] = None,
                 step: timedelta = timedelta(hours=1)) -> BacktestResults:
    _check_positive("initial_capital", config.initial_capital)
    _check_positive("position_size", config.position_size)
    price_path = price_path or random_walk()

    capital = config.initial_capital
    trades: list[BacktestTrade] = []
    for signal in sorted(signals, key=lambda s: s.timestamp):
        if signal.direction is None or not _in_window(signal, config):
            continue
        if capital < config.position_size:
            logger.warning(f"Skipping {signal.symbol}: capital {capital:.2f} below position size")
            continue
        trade = replay_signal(signal, price_path(signal), config.position_size, step)
        if trade is None:
            continue
        capital += trade.pnl
        trades.append(trade)

    results = summarize(trades, config.initial_capital)
    logger.info(
        f"📊 Backtest: {results.total_trades} trades, win rate {results.win_rate:.1%}, "
        f"P&L {results.total_pnl:+.2f} ({results.total_pnl_percent:+.2f}%), "
        f"max drawdown {results.max_drawdown:.2%}"
    )
    return results


def summarize(trades: list[BacktestTrade], initial_capital: float) -> BacktestResults:
    """Performance metrics for *trades*, taken in the order given."""
    _check_positive("initial_capital", initial_capital)
    if not trades:
        return BacktestResults()

    df = pd.DataFrame([t.model_dump() for t in trades])
    equity = initial_capital + df["pnl"].cumsum()
    peak = equity.cummax().clip(lower=initial_capital)
    drawdown = (peak - equity) / peak

    wins = df.loc[df["pnl"] > 0, "pnl"]
    losses = df.loc[df["pnl"] < 0, "pnl"]
    loss_total = float(-losses.sum())

    # per-trade returns, annualized as if daily
    returns = df["pnl_percent"] / 100
    std = float(returns.std(ddof=0))
    sharpe = float(returns.mean()) / std * math.sqrt(TRADING_DAYS) if not np.isclose(std, 0.0) else 0.0

    total_pnl = float(equity.iloc[-1] - initial_capital)
    return BacktestResults(
        total_trades=len(df),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(df),
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / initial_capital * 100,
        max_drawdown=float(drawdown.max()),
        sharpe_ratio=sharpe,
        profit_factor=float(wins.sum()) / loss_total if loss_total > 0 else 0.0,
        avg_win=float(wins.mean()) if len(wins) else 0.0,
        avg_loss=loss_total / len(losses) if len(losses) else 0.0,
        largest_win=float(wins.max()) if len(wins) else 0.0,
        largest_loss=float(losses.min()) if len(losses) else 0.0,
        trades=trades,
        equity_curve=[EquityPoint(date=t.exit_time, equity=float(e)) for t, e in zip(trades, equity)],
    )


def summarize_positions(positions: list[Position], initial_capital: float) -> BacktestResults:
    """The backtest report for closed paper positions, in close order."""
    trades = [
        BacktestTrade(
            symbol=p.symbol,
            direction=p.direction,
            entry_time=p.entry_time,
            entry_price=p.entry_price,
            exit_time=p.exit_time or p.entry_time,
            exit_price=p.exit_price if p.exit_price is not None else p.entry_price,
            pnl=p.pnl,
            pnl_percent=p.pnl_percent,
            exit_reason=p.close_reason.value if p.close_reason else END_OF_PATH,
        )
        for p in positions
    ]
    return summarize(trades, initial_capital)
