"""SQLAlchemy ORM models for the learning store: analysis sessions and trades."""
from sqlalchemy import (
    CheckConstraint, Column, ForeignKey, Index, Boolean,
    String, DECIMAL, TIMESTAMP, TEXT,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class TradeDB(Base):
    __tablename__ = "trades"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    session_id = Column(String(64))
    symbol = Column(String(20), nullable=False)
    direction = Column(
        String(10),
        CheckConstraint("direction IN ('LONG', 'SHORT')", name="ck_trades_direction"),
        nullable=False,
    )
    status = Column(
        String(10),
        CheckConstraint("status IN ('OPEN', 'CLOSED')", name="ck_trades_status"),
        nullable=False,
    )

    entry_price = Column(DECIMAL(20, 8), nullable=False)
    stop_loss = Column(DECIMAL(20, 8))
    take_profit = Column(DECIMAL(20, 8))
    quantity = Column(DECIMAL(30, 12))
    position_value = Column(DECIMAL(20, 8))
    pnl = Column(DECIMAL(20, 8), server_default="0")
    pnl_percent = Column(DECIMAL(10, 4), server_default="0")
    fees = Column(DECIMAL(20, 8), server_default="0")

    entry_time = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    exit_time = Column(TIMESTAMP(timezone=True))
    exit_price = Column(DECIMAL(20, 8))
    close_reason = Column(
        String(20),
        CheckConstraint(
            "close_reason IN ('STOP_LOSS', 'TAKE_PROFIT', 'MANUAL')",
            name="ck_trades_close_reason",
        ),
    )

    ai_confidence = Column(DECIMAL(6, 4))
    signal_strength = Column(String(20))

    __table_args__ = (
        Index("idx_trades_user", "user_id", "entry_time"),
    )


class AnalysisSessionDB(Base):
    __tablename__ = "analysis_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    symbol = Column(String(20), nullable=False)
    timestamp = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    price = Column(DECIMAL(20, 8), nullable=False)

    # Context snapshots exactly as the models saw them
    technical_data = Column(JSONB)
    macro_data = Column(JSONB)
    news_data = Column(JSONB)
    market_report = Column(TEXT)
    ai_analyses = Column(JSONB)

    signal_strength = Column(
        String(20),
        CheckConstraint(
            "signal_strength IN ('STRONG_BUY', 'BUY', 'HOLD', 'SELL', 'STRONG_SELL')",
            name="ck_sessions_strength",
        ),
    )
    signal_direction = Column(String(10))
    consensus_sentiment = Column(DECIMAL(6, 2), nullable=False)
    consensus_confidence = Column(DECIMAL(6, 4), nullable=False)

    was_executed = Column(Boolean, nullable=False, server_default="false")
    trade_id = Column(String(64), ForeignKey("trades.id"))

    actual_outcome = Column(
        String(20),
        CheckConstraint(
            "actual_outcome IN ('WIN', 'LOSS', 'BREAK_EVEN')",
            name="ck_sessions_outcome",
        ),
    )
    actual_pnl = Column(DECIMAL(20, 8))
    actual_pnl_percent = Column(DECIMAL(10, 4))
    outcome_recorded_at = Column(TIMESTAMP(timezone=True))

    __table_args__ = (
        Index("idx_sessions_user", "user_id", "timestamp"),
        Index("idx_sessions_symbol", "symbol"),
    )
