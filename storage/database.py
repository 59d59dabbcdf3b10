"""Learning store: analysis sessions and paper trades.

Backend is selected at startup via the DATABASE_URL environment variable:
  - DATABASE_URL=none (or unset) → CSV files data/sessions.csv, data/trades.csv
  - DATABASE_URL=postgresql://... → PostgreSQL via SQLAlchemy async + asyncpg

All public functions are async so they integrate seamlessly with FastAPI.
Any backend error surfaces as PersistenceFailure; a missing session as
SessionNotFound.
"""
import asyncio
import json
import os
import threading
from pathlib import Path
from typing import Optional

import pandas as pd

from common.errors import PersistenceFailure, SessionNotFound, TradingAssistantError
from common.logger import get_logger
from common.models import AnalysisSession, CloseReason, Outcome, Position, TradeStatus, utcnow

logger = get_logger("database")

DATA_DIR = Path(__file__).parent.parent / "data"
DATA_DIR.mkdir(exist_ok=True)

SESSIONS_FILE = "sessions.csv"
TRADES_FILE = "trades.csv"
SESSION_COLUMNS = list(AnalysisSession.model_fields)
TRADE_COLUMNS = list(Position.model_fields)
JSON_FIELDS = {"technical_data", "macro_data", "news_data", "ai_analyses"}

# ── Backend detection ──────────────────────────────────────────────────────────
_raw_url: str = os.getenv("DATABASE_URL", "none").strip()
USE_POSTGRES: bool = _raw_url.lower() not in ("none", "", "null")

# PostgreSQL objects - populated only when USE_POSTGRES is True
_engine = None
_SessionFactory = None

if USE_POSTGRES:
    from sqlalchemy import select
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from storage.models import AnalysisSessionDB, Base, TradeDB

    # Normalise URL scheme for asyncpg driver
    _db_url = _raw_url
    if _db_url.startswith("postgres://"):
        _db_url = "postgresql+asyncpg://" + _db_url[len("postgres://"):]
    elif _db_url.startswith("postgresql://") and "+asyncpg" not in _db_url:
        _db_url = _db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    _engine = create_async_engine(
        _db_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    _SessionFactory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info(f"[PG] Backend: {_db_url.split('@')[-1]}")
else:
    logger.info("[CSV] Backend: %s", DATA_DIR)


# ── CSV helpers (sync; run via asyncio.to_thread) ─────────────────────────────

# Read-modify-write of the CSV files is serialized across worker threads
_csv_lock = threading.Lock()


def _encode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _to_row(model) -> dict[str, str]:
    return {k: _encode(v) for k, v in model.model_dump(mode="json").items()}


def _from_row(model_cls, columns: list[str], row: dict):
    data = {}
    for key, value in row.items():
        if key not in columns or value == "":
            continue
        data[key] = json.loads(value) if key in JSON_FIELDS else value
    return model_cls.model_validate(data)


def _csv_read(path: Path, columns: list[str]) -> pd.DataFrame:
    if not path.exists():
        return pd.DataFrame(columns=columns)
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def _csv_write(df: pd.DataFrame, path: Path) -> None:
    tmp = path.with_suffix(".tmp")
    df.to_csv(tmp, index=False)
    tmp.replace(path)


def _csv_append(df: pd.DataFrame, row: dict) -> pd.DataFrame:
    new = pd.DataFrame([row])
    return new if df.empty else pd.concat([df, new], ignore_index=True)


def _csv_find(df: pd.DataFrame, record_id: str):
    if df.empty:
        return None
    matches = df.index[df["id"] == record_id]
    return matches[0] if len(matches) else None


def _csv_create_session(session: AnalysisSession, data_dir: Path) -> None:
    with _csv_lock:
        path = data_dir / SESSIONS_FILE
        df = _csv_append(_csv_read(path, SESSION_COLUMNS), _to_row(session))
        _csv_write(df, path)
    logger.info("[CSV] Saved session %s → %s", session.id, path)


def _csv_get_session(session_id: str, data_dir: Path) -> Optional[AnalysisSession]:
    df = _csv_read(data_dir / SESSIONS_FILE, SESSION_COLUMNS)
    idx = _csv_find(df, session_id)
    if idx is None:
        return None
    return _from_row(AnalysisSession, SESSION_COLUMNS, df.loc[idx].to_dict())


def _csv_get_trade(trade_id: str, data_dir: Path) -> Optional[Position]:
    df = _csv_read(data_dir / TRADES_FILE, TRADE_COLUMNS)
    idx = _csv_find(df, trade_id)
    if idx is None:
        return None
    return _from_row(Position, TRADE_COLUMNS, df.loc[idx].to_dict())


def _csv_execute_trade(session_id: str, trade: Position, data_dir: Path) -> None:
    """Insert the trade and mark the session executed; nothing is written on error."""
    with _csv_lock:
        sessions_path, trades_path = data_dir / SESSIONS_FILE, data_dir / TRADES_FILE
        sessions = _csv_read(sessions_path, SESSION_COLUMNS)
        idx = _csv_find(sessions, session_id)
        if idx is None:
            raise SessionNotFound(f"Analysis session {session_id} not found")
        trades = _csv_read(trades_path, TRADE_COLUMNS)
        if _csv_find(trades, trade.id) is not None:
            raise PersistenceFailure(f"Trade {trade.id} already exists")

        trades = _csv_append(trades, _to_row(trade))
        sessions.loc[idx, ["was_executed", "trade_id"]] = ["true", trade.id]
        _csv_write(trades, trades_path)
        _csv_write(sessions, sessions_path)
    logger.info("[CSV] Trade %s linked to session %s", trade.id, session_id)


def _csv_record_outcome(session_id: str, outcome: Outcome, pnl: float, pnl_percent: float,
                        close_reason: CloseReason, exit_price: Optional[float], data_dir: Path) -> None:
    with _csv_lock:
        sessions_path, trades_path = data_dir / SESSIONS_FILE, data_dir / TRADES_FILE
        sessions = _csv_read(sessions_path, SESSION_COLUMNS)
        idx = _csv_find(sessions, session_id)
        if idx is None:
            raise SessionNotFound(f"Analysis session {session_id} not found")
        now = utcnow().isoformat()

        trade_id = sessions.at[idx, "trade_id"]
        if trade_id:
            trades = _csv_read(trades_path, TRADE_COLUMNS)
            tidx = _csv_find(trades, trade_id)
            if tidx is None:
                logger.warning("[CSV] Session %s references missing trade %s", session_id, trade_id)
            else:
                trades.loc[tidx, ["status", "pnl", "pnl_percent", "exit_time", "exit_price", "close_reason"]] = [
                    TradeStatus.CLOSED.value, str(pnl), str(pnl_percent), now,
                    _encode(exit_price), close_reason.value,
                ]
                _csv_write(trades, trades_path)

        sessions.loc[idx, ["actual_outcome", "actual_pnl", "actual_pnl_percent", "outcome_recorded_at"]] = [
            outcome.value, str(pnl), str(pnl_percent), now,
        ]
        _csv_write(sessions, sessions_path)


def _csv_load_sessions(user_id: Optional[str], data_dir: Path) -> list[AnalysisSession]:
    df = _csv_read(data_dir / SESSIONS_FILE, SESSION_COLUMNS)
    if df.empty:
        return []
    if user_id is not None:
        df = df[df["user_id"] == user_id]
    return [_from_row(AnalysisSession, SESSION_COLUMNS, row) for row in df.to_dict("records")]


# ── PostgreSQL helpers (async) ─────────────────────────────────────────────────

def _pg_values(model, datetime_fields: tuple[str, ...]) -> dict:
    """JSON-safe column values; datetimes kept as datetime objects."""
    values = model.model_dump(mode="json")
    for name in datetime_fields:
        values[name] = getattr(model, name)
    return values


def _pg_to_model(model_cls, row):
    data = {c.name: getattr(row, c.name) for c in row.__table__.columns}
    return model_cls.model_validate({k: v for k, v in data.items() if v is not None})


async def _pg_create_session(session: AnalysisSession) -> None:
    async with _SessionFactory() as db:
        async with db.begin():
            db.add(AnalysisSessionDB(**_pg_values(session, ("timestamp", "outcome_recorded_at"))))
    logger.info("[PG] Saved session %s", session.id)


async def _pg_get_session(session_id: str) -> Optional[AnalysisSession]:
    async with _SessionFactory() as db:
        row = await db.get(AnalysisSessionDB, session_id)
    return _pg_to_model(AnalysisSession, row) if row is not None else None


async def _pg_get_trade(trade_id: str) -> Optional[Position]:
    async with _SessionFactory() as db:
        row = await db.get(TradeDB, trade_id)
    return _pg_to_model(Position, row) if row is not None else None


async def _pg_execute_trade(session_id: str, trade: Position) -> None:
    async with _SessionFactory() as db:
        async with db.begin():
            row = await db.get(AnalysisSessionDB, session_id, with_for_update=True)
            if row is None:
                raise SessionNotFound(f"Analysis session {session_id} not found")
            db.add(TradeDB(**_pg_values(trade, ("entry_time", "exit_time"))))
            await db.flush()
            row.was_executed = True
            row.trade_id = trade.id
    logger.info("[PG] Trade %s linked to session %s", trade.id, session_id)


async def _pg_record_outcome(session_id: str, outcome: Outcome, pnl: float, pnl_percent: float,
                             close_reason: CloseReason, exit_price: Optional[float]) -> None:
    async with _SessionFactory() as db:
        async with db.begin():
            row = await db.get(AnalysisSessionDB, session_id, with_for_update=True)
            if row is None:
                raise SessionNotFound(f"Analysis session {session_id} not found")
            now = utcnow()
            if row.trade_id:
                trade = await db.get(TradeDB, row.trade_id)
                if trade is not None:
                    trade.status = TradeStatus.CLOSED.value
                    trade.pnl = pnl
                    trade.pnl_percent = pnl_percent
                    trade.exit_time = now
                    trade.exit_price = exit_price
                    trade.close_reason = close_reason.value
            row.actual_outcome = outcome.value
            row.actual_pnl = pnl
            row.actual_pnl_percent = pnl_percent
            row.outcome_recorded_at = now


async def _pg_load_sessions(user_id: Optional[str]) -> list[AnalysisSession]:
    async with _SessionFactory() as db:
        stmt = select(AnalysisSessionDB).order_by(AnalysisSessionDB.timestamp)
        if user_id is not None:
            stmt = stmt.where(AnalysisSessionDB.user_id == user_id)
        rows = (await db.execute(stmt)).scalars().all()
    return [_pg_to_model(AnalysisSession, r) for r in rows]


# ── Public async API ───────────────────────────────────────────────────────────

async def _guard(operation: str, coro):
    try:
        return await coro
    except TradingAssistantError:
        raise
    except Exception as e:
        raise PersistenceFailure(f"{operation} failed: {e}") from e


async def create_session(session: AnalysisSession) -> str:
    if USE_POSTGRES:
        await _guard("create_session", _pg_create_session(session))
    else:
        await _guard("create_session", asyncio.to_thread(_csv_create_session, session, DATA_DIR))
    return session.id


async def get_session(session_id: str) -> Optional[AnalysisSession]:
    if USE_POSTGRES:
        return await _guard("get_session", _pg_get_session(session_id))
    return await _guard("get_session", asyncio.to_thread(_csv_get_session, session_id, DATA_DIR))


async def get_trade(trade_id: str) -> Optional[Position]:
    if USE_POSTGRES:
        return await _guard("get_trade", _pg_get_trade(trade_id))
    return await _guard("get_trade", asyncio.to_thread(_csv_get_trade, trade_id, DATA_DIR))


async def execute_trade(session_id: str, trade: Position) -> None:
    """Insert *trade* and mark the session executed, as one unit."""
    if USE_POSTGRES:
        await _guard("execute_trade", _pg_execute_trade(session_id, trade))
    else:
        await _guard("execute_trade", asyncio.to_thread(_csv_execute_trade, session_id, trade, DATA_DIR))


async def record_outcome(session_id: str, outcome: Outcome, pnl: float, pnl_percent: float,
                         close_reason: CloseReason = CloseReason.MANUAL,
                         exit_price: Optional[float] = None) -> None:
    """Close the linked trade (if any) and store the outcome on the session."""
    if USE_POSTGRES:
        await _guard("record_outcome", _pg_record_outcome(
            session_id, outcome, pnl, pnl_percent, close_reason, exit_price))
    else:
        await _guard("record_outcome", asyncio.to_thread(
            _csv_record_outcome, session_id, outcome, pnl, pnl_percent, close_reason, exit_price, DATA_DIR))


async def load_sessions(user_id: Optional[str] = None) -> list[AnalysisSession]:
    if USE_POSTGRES:
        return await _guard("load_sessions", _pg_load_sessions(user_id))
    return await _guard("load_sessions", asyncio.to_thread(_csv_load_sessions, user_id, DATA_DIR))


async def init_db() -> None:
    """Create all tables (idempotent). Prefer Alembic for production migrations."""
    if not USE_POSTGRES:
        return
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[PG] Tables ensured")
