"""Position monitor: stop-loss / take-profit checks and trailing stops."""
from typing import Optional

from common.logger import get_logger
from common.models import CloseReason, Outcome, Position, PositionUpdate, TradeDirection, is_positive_finite

logger = get_logger("positions")


def _unchanged(position: Position) -> PositionUpdate:
    return PositionUpdate(id=position.id, should_close=False,
                          current_price=position.entry_price, pnl=0.0, pnl_percent=0.0)


def check_position(position: Position, price: Optional[float]) -> PositionUpdate:
    if not is_positive_finite(price):
        return _unchanged(position)
    if position.entry_price <= 0:
        logger.error(f"Invalid entry price for position {position.id}: {position.entry_price}")
        return _unchanged(position)

    reason = None
    if position.direction == TradeDirection.LONG:
        if price <= position.stop_loss:
            reason = CloseReason.STOP_LOSS
        elif price >= position.take_profit:
            reason = CloseReason.TAKE_PROFIT
        diff = price - position.entry_price
    else:
        if price >= position.stop_loss:
            reason = CloseReason.STOP_LOSS
        elif price <= position.take_profit:
            reason = CloseReason.TAKE_PROFIT
        diff = position.entry_price - price

    move = diff / position.entry_price
    return PositionUpdate(
        id=position.id,
        should_close=reason is not None,
        close_reason=reason,
        current_price=price,
        pnl=move * position.position_value,
        pnl_percent=move * 100,
    )


def check_positions(positions: list[Position], prices: dict[str, float]) -> list[PositionUpdate]:
    """One update per position, same order. Pure: nothing is mutated."""
    return [check_position(p, prices.get(p.symbol)) for p in positions]


def update_trailing_stop(position: Position, price: float, trailing_percent: float = 0.02) -> float:
    """New stop level; moves only toward profit and only while in profit."""
    if position.direction == TradeDirection.LONG:
        if price > position.entry_price:
            return max(position.stop_loss, price * (1 - trailing_percent))
        return position.stop_loss
    if price < position.entry_price:
        return min(position.stop_loss, price * (1 + trailing_percent))
    return position.stop_loss


def classify_outcome(pnl: float) -> Outcome:
    if pnl > 0:
        return Outcome.WIN
    if pnl < 0:
        return Outcome.LOSS
    return Outcome.BREAK_EVEN
