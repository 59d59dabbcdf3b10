"""Paper trading account.

One account per user. Every mutation (open, price tick, manual close) runs
under the account lock, so the close decision and the balance credit for a
position happen in one critical section and a position closes at most once.
"""
import asyncio
from typing import Optional

import numpy as np

from common.errors import PositionNotFound, TradeRejected
from common.logger import get_logger
from common.models import (
    CloseReason, Position, TradeStatus, TradingSignal, is_positive_finite, utcnow,
)
from config import settings
from trading.positions import check_position, classify_outcome, update_trailing_stop
from trading.sizing import HistoricalStats, calculate_optimal_size

logger = get_logger("paper")

MIN_TRADES_FOR_STATS = 5
DEFAULT_AVG_WIN = 3.5
DEFAULT_AVG_LOSS = 2.0


class PaperAccount:
    def __init__(self, user_id: str,
                 balance: Optional[float] = None,
                 max_positions: Optional[int] = None,
                 max_trade_size: Optional[float] = None,
                 fee_rate: Optional[float] = None,
                 trailing_stop: Optional[bool] = None,
                 trailing_pct: Optional[float] = None):
        self.user_id = user_id
        self.balance = balance if balance is not None else settings.PAPER_STARTING_BALANCE
        self.starting_balance = self.balance
        self.max_positions = max_positions if max_positions is not None else settings.MAX_OPEN_POSITIONS
        self.max_trade_size = max_trade_size if max_trade_size is not None else settings.MAX_TRADE_SIZE
        self.fee_rate = fee_rate if fee_rate is not None else settings.TRADE_FEE_RATE
        self.trailing_stop = trailing_stop if trailing_stop is not None else settings.TRAILING_STOP_ENABLED
        self.trailing_pct = trailing_pct if trailing_pct is not None else settings.TRAILING_STOP_PCT

        self.lock = asyncio.Lock()
        self.positions: dict[str, Position] = {}
        self.closed: list[Position] = []
        self.last_prices: dict[str, float] = {}
        self.wins = 0
        self.losses = 0
        self.peak_equity = self.balance
        self.max_drawdown = 0.0

    # ── Derived state ─────────────────────────────────────────────────────────

    @property
    def total_trades(self) -> int:
        return len(self.closed)

    @property
    def equity(self) -> float:
        return self.balance + sum(p.position_value + p.pnl for p in self.positions.values())

    def historical_stats(self) -> Optional[HistoricalStats]:
        """Realized stats once enough trades are closed, else None."""
        if self.total_trades < MIN_TRADES_FOR_STATS:
            return None
        win_pcts = [p.pnl_percent for p in self.closed if p.pnl > 0]
        loss_pcts = [abs(p.pnl_percent) for p in self.closed if p.pnl < 0]
        return HistoricalStats(
            win_rate=self.wins / self.total_trades,
            avg_win=float(np.mean(win_pcts)) if win_pcts else DEFAULT_AVG_WIN,
            avg_loss=float(np.mean(loss_pcts)) if loss_pcts else DEFAULT_AVG_LOSS,
            total_trades=self.total_trades,
        )

    def _track_drawdown(self) -> None:
        equity = self.equity
        self.peak_equity = max(self.peak_equity, equity)
        if self.peak_equity > 0:
            self.max_drawdown = max(self.max_drawdown, (self.peak_equity - equity) / self.peak_equity)

    def snapshot(self) -> dict:
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "equity": self.equity,
            "maxDrawdown": self.max_drawdown,
            "positions": [p.model_dump(mode="json", by_alias=True) for p in self.positions.values()],
            "stats": {
                "wins": self.wins,
                "losses": self.losses,
                "totalTrades": self.total_trades,
                "winRate": self.wins / self.total_trades if self.total_trades else 0.0,
            },
        }

    # ── Mutations (lock held) ─────────────────────────────────────────────────

    async def open_position(self, signal: TradingSignal, session_id: Optional[str] = None) -> Position:
        async with self.lock:
            if signal.direction is None:
                raise TradeRejected(f"{signal.symbol}: HOLD signals are not tradable")
            if len(self.positions) >= self.max_positions:
                raise TradeRejected(f"Max positions reached ({self.max_positions})")
            if any(p.symbol == signal.symbol for p in self.positions.values()):
                raise TradeRejected(f"Position already open for {signal.symbol}")

            sizing = calculate_optimal_size(self.balance, signal.confidence, self.historical_stats())
            size = min(sizing.size, self.max_trade_size)
            if size <= 0:
                raise TradeRejected(f"{signal.symbol}: sizing returned zero ({sizing.method}, negative edge)")
            if self.balance < size:
                raise TradeRejected(f"Insufficient balance: {self.balance:.2f} for size {size:.2f}")

            position = Position(
                user_id=self.user_id,
                symbol=signal.symbol,
                direction=signal.direction,
                entry_price=signal.entry_price,
                stop_loss=signal.stop_loss,
                take_profit=signal.take_profit,
                quantity=size / signal.entry_price,
                position_value=size,
                fees=size * self.fee_rate,
                ai_confidence=signal.confidence,
                signal_strength=signal.strength,
                session_id=session_id,
            )
            self.balance -= size
            self.positions[position.id] = position
            logger.info(f"📊 Opened {position.direction.value} {position.symbol}: "
                        f"€{size:.2f} using {sizing.method} - {sizing.reasoning}")
            return position

    def _close(self, position: Position, price: float, pnl: float, pnl_percent: float,
               reason: CloseReason) -> Position:
        del self.positions[position.id]
        position.status = TradeStatus.CLOSED
        position.exit_price = price
        position.exit_time = utcnow()
        position.close_reason = reason
        position.pnl = pnl
        position.pnl_percent = pnl_percent

        self.balance += position.position_value + pnl
        if pnl > 0:
            self.wins += 1
        elif pnl < 0:
            self.losses += 1
        self.closed.append(position)
        logger.info(f"🔔 Closed {position.symbol} {position.direction.value} - {reason.value}: "
                    f"{pnl_percent:.2f}% ({classify_outcome(pnl).value})")
        return position

    async def on_prices(self, prices: dict[str, float]) -> list[Position]:
        """Apply a price tick; returns the positions it closed."""
        async with self.lock:
            valid = {s: p for s, p in prices.items() if is_positive_finite(p)}
            self.last_prices.update(valid)

            closed = []
            for position in list(self.positions.values()):
                price = valid.get(position.symbol)
                if price is None:
                    continue
                if self.trailing_stop:
                    position.stop_loss = update_trailing_stop(position, price, self.trailing_pct)
                update = check_position(position, price)
                if update.should_close:
                    closed.append(self._close(position, update.current_price, update.pnl,
                                              update.pnl_percent, update.close_reason))
                else:
                    position.pnl = update.pnl
                    position.pnl_percent = update.pnl_percent
            self._track_drawdown()
            return closed

    async def close_position(self, position_id: str, price: Optional[float] = None) -> Position:
        """Manual close at *price*, else the last seen price, else entry."""
        async with self.lock:
            position = self.positions.get(position_id)
            if position is None:
                raise PositionNotFound(f"No open position {position_id} for {self.user_id}")
            if not is_positive_finite(price):
                price = self.last_prices.get(position.symbol, position.entry_price)
            update = check_position(position, price)
            closed = self._close(position, price, update.pnl, update.pnl_percent, CloseReason.MANUAL)
            self._track_drawdown()
            return closed


class AccountRegistry:
    def __init__(self):
        self._accounts: dict[str, PaperAccount] = {}

    def get(self, user_id: str) -> PaperAccount:
        if user_id not in self._accounts:
            self._accounts[user_id] = PaperAccount(user_id)
        return self._accounts[user_id]

    def all(self) -> list[PaperAccount]:
        return list(self._accounts.values())
