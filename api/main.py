"""AI Consensus Trader - FastAPI REST API with live price loop."""
import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

import numpy as np
from fastapi import APIRouter, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from common.errors import (
    AggregateFailure, PersistenceFailure, PositionNotFound, SessionNotFound,
    TradeRejected, ValidationError,
)
from common.logger import get_logger, new_request_id
from common.models import CamelModel, CloseReason, Outcome, Position, TradeDetails, TradingSignal
from config import settings
from consensus.orchestrator import ConsensusOrchestrator
from learning.effects import SideEffectRunner
from learning.logger import LearningLogger
from market.prices import get_prices, price_map
from storage.database import init_db
from trading.backtest import BacktestConfig, random_walk, run_backtest, summarize_positions
from trading.paper import AccountRegistry
from trading.positions import classify_outcome
from trading.risk import check_risk

logger = get_logger("api")


class ConnectionManager:
    """Manages active WebSocket connections and broadcasts messages."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, payload: dict):
        message = json.dumps(payload, default=str)
        dead = []
        for ws in self.active_connections:
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


manager = ConnectionManager()
accounts = AccountRegistry()
learning = LearningLogger()
side_effects = SideEffectRunner()

_orchestrator: Optional[ConsensusOrchestrator] = None
_last_snapshot: dict = {}


def get_orchestrator() -> ConsensusOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ConsensusOrchestrator()
    return _orchestrator


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ── Request bodies ────────────────────────────────────────────────────────────

class AnalyzeRequest(CamelModel):
    # Left untyped so malformed values reach the orchestrator's own validation
    symbol: Any = None
    market_data: Any = None
    user_id: str = settings.DEFAULT_USER_ID


class ExecuteRequest(CamelModel):
    session_id: str
    trade_id: str
    trade_details: TradeDetails


class OutcomeRequest(CamelModel):
    session_id: str
    outcome: Outcome
    pnl: float
    pnl_percent: float
    close_reason: Optional[CloseReason] = None
    exit_price: Optional[float] = None


class OpenPositionRequest(CamelModel):
    signal: TradingSignal
    session_id: Optional[str] = None


class ClosePositionRequest(CamelModel):
    price: Optional[float] = None


class BacktestRequest(CamelModel):
    config: BacktestConfig = BacktestConfig()
    signals: list[TradingSignal] = []
    seed: Optional[int] = None


# ── Post-commit persistence ───────────────────────────────────────────────────

def _persisted(session_id: Optional[str]) -> bool:
    return bool(session_id) and not session_id.startswith("fallback-")


def schedule_execution(position: Position) -> None:
    if _persisted(position.session_id):
        side_effects.schedule(f"execute:{position.session_id}",
                              learning.mark_executed(position.session_id, position),
                              key=position.session_id)


def schedule_outcome(position: Position) -> None:
    if _persisted(position.session_id):
        side_effects.schedule(
            f"outcome:{position.session_id}",
            learning.record_outcome(position.session_id, classify_outcome(position.pnl),
                                    position.pnl, position.pnl_percent,
                                    position.close_reason or CloseReason.MANUAL, position.exit_price),
            key=position.session_id,
        )


# ── Price loop ────────────────────────────────────────────────────────────────

async def run_price_tick() -> list[Position]:
    """Fetch prices, run every account's monitor, broadcast the tick."""
    global _last_snapshot
    snapshot = await get_prices()
    _last_snapshot = snapshot
    prices = price_map(snapshot)

    closed_all = []
    for account in accounts.all():
        closed = await account.on_prices(prices)
        for position in closed:
            schedule_outcome(position)
        closed_all.extend(closed)

    await manager.broadcast({
        "type": "prices_update",
        "timestamp": _now(),
        "prices": snapshot,
        "closed": [p.model_dump(mode="json", by_alias=True) for p in closed_all],
    })
    return closed_all


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    task = None
    if settings.PRICE_LOOP_ENABLED:
        async def price_loop():
            while True:
                try:
                    await run_price_tick()
                except Exception as e:
                    logger.error(f"❌ Price tick failed: {e}")
                await asyncio.sleep(settings.PRICE_POLL_SECONDS)
        task = asyncio.create_task(price_loop())
    yield
    if task is not None:
        task.cancel()
    await side_effects.drain()


app = FastAPI(title="AI Consensus Trader API", version="0.1.0", lifespan=lifespan)

app.add_middleware(CORSMiddleware,
    allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

# ── API routes (on a shared router, mounted at both "/" and "/api") ───────────

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/prices")
async def get_all_prices():
    return await get_prices()


@router.post("/analyze")
async def analyze(req: AnalyzeRequest):
    new_request_id()
    try:
        result = await get_orchestrator().analyze(req.symbol, req.market_data)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except AggregateFailure as e:
        raise HTTPException(502, str(e))
    except Exception as e:
        logger.exception("Analysis failed")
        detail = str(e) if settings.APP_ENV == "development" else "Internal error during analysis"
        raise HTTPException(500, detail)

    session_id = await learning.log_analysis(req.user_id, result)
    account = accounts.get(req.user_id)
    risk = check_risk(result.signal, account.equity, account.max_drawdown)

    body = result.signal.model_dump(mode="json", by_alias=True)
    body["sessionId"] = session_id
    body["degraded"] = result.market_context.degraded
    body["providers"] = [
        {"provider": r.provider, "status": r.status.value, "error": r.error}
        for r in result.provider_results
    ]
    body["risk"] = {
        "canTrade": risk.can_trade,
        "positionSize": risk.position_size,
        "reasoning": risk.reasoning,
        "checks": [{"name": c.name, "pass": c.passed, "detail": c.detail} for c in risk.checks],
    }
    return body


@router.post("/learning/execute")
async def learning_execute(req: ExecuteRequest):
    new_request_id()
    symbol = req.trade_details.symbol
    if symbol not in settings.TRADING_PAIRS:
        raise HTTPException(422, f"Unknown trading pair: {symbol}")
    trade = Position(id=req.trade_id, session_id=req.session_id, **req.trade_details.model_dump())
    try:
        await learning.mark_executed(req.session_id, trade)
    except SessionNotFound as e:
        raise HTTPException(404, str(e))
    except PersistenceFailure as e:
        logger.error(f"❌ Failed to mark execution: {e}")
        raise HTTPException(503, "Failed to create trade record")
    return {"success": True}


@router.post("/learning/outcome")
async def learning_outcome(req: OutcomeRequest):
    new_request_id()
    try:
        await learning.record_outcome(req.session_id, req.outcome, req.pnl, req.pnl_percent,
                                      req.close_reason or CloseReason.MANUAL, req.exit_price)
    except SessionNotFound as e:
        raise HTTPException(404, str(e))
    except PersistenceFailure as e:
        logger.error(f"❌ Failed to record outcome: {e}")
        raise HTTPException(503, "Failed to record outcome")
    return {"success": True}


@router.get("/learning/stats")
async def learning_stats(user_id: str = Query(settings.DEFAULT_USER_ID, alias="userId")):
    try:
        stats = await learning.get_stats(user_id)
    except PersistenceFailure as e:
        raise HTTPException(503, str(e))
    return stats.model_dump(by_alias=True)


@router.get("/learning/export")
async def learning_export(user_id: str = Query(settings.DEFAULT_USER_ID, alias="userId")):
    try:
        rows = await learning.export_training_data(user_id)
    except PersistenceFailure as e:
        raise HTTPException(503, str(e))
    return {"userId": user_id, "count": len(rows), "data": rows}


@router.get("/paper/{user_id}")
def get_paper_account(user_id: str):
    return accounts.get(user_id).snapshot()


@router.post("/paper/{user_id}/positions")
async def open_paper_position(user_id: str, req: OpenPositionRequest):
    new_request_id()
    try:
        position = await accounts.get(user_id).open_position(req.signal, req.session_id)
    except TradeRejected as e:
        raise HTTPException(409, str(e))
    schedule_execution(position)
    return position.model_dump(mode="json", by_alias=True)


@router.post("/paper/{user_id}/positions/{position_id}/close")
async def close_paper_position(user_id: str, position_id: str, req: Optional[ClosePositionRequest] = None):
    new_request_id()
    price = req.price if req is not None else None
    try:
        position = await accounts.get(user_id).close_position(position_id, price)
    except PositionNotFound as e:
        raise HTTPException(404, str(e))
    schedule_outcome(position)
    return position.model_dump(mode="json", by_alias=True)


@router.get("/paper/{user_id}/performance")
def get_paper_performance(user_id: str):
    account = accounts.get(user_id)
    return summarize_positions(account.closed, account.starting_balance).model_dump(mode="json", by_alias=True)


@router.post("/backtest")
def backtest(req: BacktestRequest):
    new_request_id()
    try:
        results = run_backtest(req.config, req.signals, random_walk(np.random.default_rng(req.seed)))
    except ValidationError as e:
        raise HTTPException(400, str(e))
    return results.model_dump(mode="json", by_alias=True)


# Mount routes at root (for nginx) and at /api (for direct browser access)
app.include_router(router)
app.include_router(router, prefix="/api")

# ── WebSocket ─────────────────────────────────────────────────────────────────

@app.websocket("/ws/live")
async def websocket_live(websocket: WebSocket):
    """WebSocket endpoint - pushes price ticks and auto-closes in real time."""
    await manager.connect(websocket)
    try:
        await websocket.send_text(json.dumps({
            "type": "prices_update",
            "timestamp": _now(),
            "prices": _last_snapshot,
            "closed": [],
        }, default=str))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception:
        manager.disconnect(websocket)
