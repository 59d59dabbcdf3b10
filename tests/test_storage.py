"""Tests for the learning store.

Coverage:
  - CSV helpers (_csv_* functions) - sync, no DB required
  - Public async API backed by CSV (monkeypatched USE_POSTGRES=False)
  - Public async API dispatcher routes to PostgreSQL helpers
    when USE_POSTGRES=True (mocked with AsyncMock - no real DB needed)
"""
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from common.errors import PersistenceFailure, SessionNotFound
from common.models import AnalysisSession, CloseReason, Outcome, Position, TradeDirection, TradeStatus
from storage import database
from storage.database import (
    _csv_create_session,
    _csv_execute_trade,
    _csv_get_session,
    _csv_get_trade,
    _csv_load_sessions,
    _csv_record_outcome,
    create_session,
    execute_trade,
    get_session,
    get_trade,
    load_sessions,
    record_outcome,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_session(session_id: str = "s-1", user_id: str = "user-1", symbol: str = "BTC/EUR") -> AnalysisSession:
    return AnalysisSession(
        id=session_id,
        user_id=user_id,
        symbol=symbol,
        timestamp=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        price=100.0,
        technical_data={"rsi": 42.5, "macd": {"value": 0.1, "signal": 0.05, "histogram": 0.05}},
        macro_data={"dxy": 104.2, "vix": 18.0},
        news_data={"score": 12.0, "summary": "Mixed, awaiting catalysts", "keyTopics": ["ETF inflows"]},
        market_report="=== COMPREHENSIVE MARKET ANALYSIS FOR BTC/EUR ===\n...\n=== END OF REPORT ===",
        ai_analyses=[{"provider": "claude", "sentiment": 80.0, "confidence": 0.8, "reasoning": "Up, \"strong\""}],
        signal_strength="STRONG_BUY",
        signal_direction="LONG",
        consensus_sentiment=80.0,
        consensus_confidence=0.8,
    )


def make_trade(trade_id: str = "t-1", session_id: str = "s-1") -> Position:
    return Position(
        id=trade_id,
        session_id=session_id,
        symbol="BTC/EUR",
        direction=TradeDirection.LONG,
        entry_price=100.0,
        stop_loss=97.0,
        take_profit=105.0,
        quantity=1.6,
        position_value=160.0,
        fees=0.16,
    )


# ── CSV helper unit tests (sync) ──────────────────────────────────────────────

class TestCSVHelpers:
    """Direct tests of sync CSV helpers - no async, no mocking."""

    def test_create_writes_file(self, tmp_path: Path) -> None:
        _csv_create_session(make_session(), tmp_path)
        assert (tmp_path / "sessions.csv").exists()

    def test_sessions_accumulate(self, tmp_path: Path) -> None:
        _csv_create_session(make_session("s-1"), tmp_path)
        _csv_create_session(make_session("s-2"), tmp_path)
        df = pd.read_csv(tmp_path / "sessions.csv")
        assert len(df) == 2

    def test_session_round_trip_keeps_nested_data(self, tmp_path: Path) -> None:
        original = make_session()
        _csv_create_session(original, tmp_path)
        loaded = _csv_get_session("s-1", tmp_path)
        assert loaded == original
        assert loaded.was_executed is False
        assert loaded.actual_outcome is None

    def test_get_missing_session(self, tmp_path: Path) -> None:
        assert _csv_get_session("nope", tmp_path) is None

    def test_execute_links_trade(self, tmp_path: Path) -> None:
        _csv_create_session(make_session(), tmp_path)
        _csv_execute_trade("s-1", make_trade(), tmp_path)

        session = _csv_get_session("s-1", tmp_path)
        trade = _csv_get_trade("t-1", tmp_path)
        assert session.was_executed is True
        assert session.trade_id == "t-1"
        assert trade.status == TradeStatus.OPEN
        assert trade.position_value == pytest.approx(160)

    def test_execute_unknown_session_writes_nothing(self, tmp_path: Path) -> None:
        with pytest.raises(SessionNotFound):
            _csv_execute_trade("missing", make_trade(), tmp_path)
        assert not (tmp_path / "trades.csv").exists()

    def test_duplicate_trade_rejected(self, tmp_path: Path) -> None:
        _csv_create_session(make_session("s-1"), tmp_path)
        _csv_create_session(make_session("s-2"), tmp_path)
        _csv_execute_trade("s-1", make_trade(), tmp_path)
        with pytest.raises(PersistenceFailure):
            _csv_execute_trade("s-2", make_trade(session_id="s-2"), tmp_path)
        assert _csv_get_session("s-2", tmp_path).was_executed is False

    def test_outcome_closes_linked_trade(self, tmp_path: Path) -> None:
        _csv_create_session(make_session(), tmp_path)
        _csv_execute_trade("s-1", make_trade(), tmp_path)
        _csv_record_outcome("s-1", Outcome.WIN, 8.0, 5.0, CloseReason.TAKE_PROFIT, 105.0, tmp_path)

        session = _csv_get_session("s-1", tmp_path)
        trade = _csv_get_trade("t-1", tmp_path)
        assert session.actual_outcome == Outcome.WIN
        assert session.actual_pnl == pytest.approx(8.0)
        assert session.outcome_recorded_at is not None
        assert trade.status == TradeStatus.CLOSED
        assert trade.close_reason == CloseReason.TAKE_PROFIT
        assert trade.exit_price == pytest.approx(105.0)

    def test_outcome_without_trade(self, tmp_path: Path) -> None:
        _csv_create_session(make_session(), tmp_path)
        _csv_record_outcome("s-1", Outcome.LOSS, -3.0, -2.0, CloseReason.MANUAL, None, tmp_path)
        assert _csv_get_session("s-1", tmp_path).actual_outcome == Outcome.LOSS
        assert not (tmp_path / "trades.csv").exists()

    def test_outcome_unknown_session(self, tmp_path: Path) -> None:
        with pytest.raises(SessionNotFound):
            _csv_record_outcome("missing", Outcome.WIN, 1.0, 1.0, CloseReason.MANUAL, None, tmp_path)

    def test_load_filters_by_user(self, tmp_path: Path) -> None:
        _csv_create_session(make_session("s-1", user_id="alice"), tmp_path)
        _csv_create_session(make_session("s-2", user_id="bob"), tmp_path)
        assert [s.id for s in _csv_load_sessions("alice", tmp_path)] == ["s-1"]
        assert len(_csv_load_sessions(None, tmp_path)) == 2

    def test_load_empty(self, tmp_path: Path) -> None:
        assert _csv_load_sessions(None, tmp_path) == []


# ── Async public API - CSV backend ────────────────────────────────────────────

@pytest.mark.asyncio
class TestAsyncCSVAPI:
    """Public async API tests using the CSV backend (USE_POSTGRES forced False)."""

    async def test_create_and_get(self, csv_store) -> None:
        session_id = await create_session(make_session())
        assert session_id == "s-1"
        assert (await get_session("s-1")).symbol == "BTC/EUR"

    async def test_full_lifecycle(self, csv_store) -> None:
        await create_session(make_session())
        await execute_trade("s-1", make_trade())
        await record_outcome("s-1", Outcome.WIN, 8.0, 5.0, CloseReason.TAKE_PROFIT, 105.0)

        trade = await get_trade("t-1")
        sessions = await load_sessions("user-1")
        assert trade.status == TradeStatus.CLOSED
        assert sessions[0].actual_outcome == Outcome.WIN
        assert sessions[0].trade_id == "t-1"

    async def test_execute_unknown_session(self, csv_store) -> None:
        with pytest.raises(SessionNotFound):
            await execute_trade("missing", make_trade())

    async def test_backend_error_becomes_persistence_failure(self, csv_store, monkeypatch) -> None:
        def broken(*args):
            raise OSError("disk full")
        monkeypatch.setattr(database, "_csv_create_session", broken)
        with pytest.raises(PersistenceFailure, match="disk full"):
            await create_session(make_session())


# ── Async public API - PostgreSQL backend (mocked) ────────────────────────────

@pytest.mark.asyncio
class TestAsyncPostgresDispatch:
    """Verify that public functions delegate to _pg_* helpers when USE_POSTGRES=True."""

    async def test_create_session_delegates_to_pg(self, monkeypatch) -> None:
        mock = AsyncMock()
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_create_session", mock)
        session = make_session()
        assert await create_session(session) == "s-1"
        mock.assert_awaited_once_with(session)

    async def test_execute_trade_delegates_to_pg(self, monkeypatch) -> None:
        mock = AsyncMock()
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_execute_trade", mock)
        trade = make_trade()
        await execute_trade("s-1", trade)
        mock.assert_awaited_once_with("s-1", trade)

    async def test_record_outcome_delegates_to_pg(self, monkeypatch) -> None:
        mock = AsyncMock()
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_record_outcome", mock)
        await record_outcome("s-1", Outcome.LOSS, -1.0, -0.5)
        mock.assert_awaited_once_with("s-1", Outcome.LOSS, -1.0, -0.5, CloseReason.MANUAL, None)

    async def test_load_sessions_delegates_to_pg(self, monkeypatch) -> None:
        mock = AsyncMock(return_value=[make_session()])
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_load_sessions", mock)
        sessions = await load_sessions("user-1")
        mock.assert_awaited_once_with("user-1")
        assert sessions[0].id == "s-1"

    async def test_session_not_found_passes_through(self, monkeypatch) -> None:
        mock = AsyncMock(side_effect=SessionNotFound("gone"))
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_execute_trade", mock)
        with pytest.raises(SessionNotFound):
            await execute_trade("s-1", make_trade())

    async def test_driver_error_wrapped(self, monkeypatch) -> None:
        mock = AsyncMock(side_effect=ConnectionRefusedError("db down"))
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_get_session", mock)
        with pytest.raises(PersistenceFailure):
            await get_session("s-1")
