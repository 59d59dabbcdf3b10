"""Learning schema - trades and analysis_sessions.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── trades ────────────────────────────────────────────────────────────────
    op.create_table(
        "trades",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("entry_price", sa.DECIMAL(precision=20, scale=8), nullable=False),
        sa.Column("stop_loss", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("take_profit", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("quantity", sa.DECIMAL(precision=30, scale=12), nullable=True),
        sa.Column("position_value", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("pnl", sa.DECIMAL(precision=20, scale=8), server_default="0", nullable=True),
        sa.Column("pnl_percent", sa.DECIMAL(precision=10, scale=4), server_default="0", nullable=True),
        sa.Column("fees", sa.DECIMAL(precision=20, scale=8), server_default="0", nullable=True),
        sa.Column("entry_time", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("exit_time", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("exit_price", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("close_reason", sa.String(length=20), nullable=True),
        sa.Column("ai_confidence", sa.DECIMAL(precision=6, scale=4), nullable=True),
        sa.Column("signal_strength", sa.String(length=20), nullable=True),
        sa.CheckConstraint("direction IN ('LONG', 'SHORT')", name="ck_trades_direction"),
        sa.CheckConstraint("status IN ('OPEN', 'CLOSED')", name="ck_trades_status"),
        sa.CheckConstraint(
            "close_reason IN ('STOP_LOSS', 'TAKE_PROFIT', 'MANUAL')", name="ck_trades_close_reason"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_trades_user", "trades", ["user_id", "entry_time"])

    # ── analysis_sessions ─────────────────────────────────────────────────────
    op.create_table(
        "analysis_sessions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("price", sa.DECIMAL(precision=20, scale=8), nullable=False),
        sa.Column("technical_data", postgresql.JSONB(), nullable=True),
        sa.Column("macro_data", postgresql.JSONB(), nullable=True),
        sa.Column("news_data", postgresql.JSONB(), nullable=True),
        sa.Column("market_report", sa.TEXT(), nullable=True),
        sa.Column("ai_analyses", postgresql.JSONB(), nullable=True),
        sa.Column("signal_strength", sa.String(length=20), nullable=True),
        sa.Column("signal_direction", sa.String(length=10), nullable=True),
        sa.Column("consensus_sentiment", sa.DECIMAL(precision=6, scale=2), nullable=False),
        sa.Column("consensus_confidence", sa.DECIMAL(precision=6, scale=4), nullable=False),
        sa.Column("was_executed", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("trade_id", sa.String(length=64), nullable=True),
        sa.Column("actual_outcome", sa.String(length=20), nullable=True),
        sa.Column("actual_pnl", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("actual_pnl_percent", sa.DECIMAL(precision=10, scale=4), nullable=True),
        sa.Column("outcome_recorded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "signal_strength IN ('STRONG_BUY', 'BUY', 'HOLD', 'SELL', 'STRONG_SELL')",
            name="ck_sessions_strength",
        ),
        sa.CheckConstraint(
            "actual_outcome IN ('WIN', 'LOSS', 'BREAK_EVEN')", name="ck_sessions_outcome"
        ),
        sa.ForeignKeyConstraint(["trade_id"], ["trades.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sessions_user", "analysis_sessions", ["user_id", "timestamp"])
    op.create_index("idx_sessions_symbol", "analysis_sessions", ["symbol"])


def downgrade() -> None:
    op.drop_index("idx_sessions_symbol", table_name="analysis_sessions")
    op.drop_index("idx_sessions_user", table_name="analysis_sessions")
    op.drop_table("analysis_sessions")
    op.drop_index("idx_trades_user", table_name="trades")
    op.drop_table("trades")
