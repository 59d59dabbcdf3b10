"""Learning logger.

Every analysis is stored as a session together with the exact market context
and report the models saw. Sessions are later linked to the trade they
produced and to its realized outcome; stats and training data are read back
from the same store.
"""
import time
import uuid
from typing import Optional

import pandas as pd

from common.errors import PersistenceFailure
from common.logger import get_logger
from common.models import AnalysisSession, CamelModel, CloseReason, Outcome, Position, TradeDirection
from consensus.orchestrator import ConsensusResult
from storage import database

logger = get_logger("learning")


class LearningStats(CamelModel):
    total_analyses: int = 0
    executed: int = 0
    win_rate: float = 0.0
    avg_confidence_when_win: float = 0.0
    avg_confidence_when_loss: float = 0.0
    best_performing_model: str = "N/A"


def build_session(user_id: str, result: ConsensusResult) -> AnalysisSession:
    signal, context = result.signal, result.market_context
    return AnalysisSession(
        id=str(uuid.uuid4()),
        user_id=user_id,
        symbol=signal.symbol,
        timestamp=signal.timestamp,
        price=signal.entry_price,
        technical_data=context.technicals.model_dump(mode="json"),
        macro_data=context.macro.model_dump(mode="json"),
        news_data=context.news.model_dump(mode="json"),
        market_report=result.market_report,
        ai_analyses=[a.model_dump(mode="json") for a in signal.analyses],
        signal_strength=signal.strength.value,
        signal_direction=signal.direction.value if signal.direction else None,
        consensus_sentiment=signal.sentiment,
        consensus_confidence=signal.confidence,
    )


def model_accuracy(sessions: list[AnalysisSession]) -> pd.DataFrame:
    """Directional hit rate per provider over sessions with a WIN/LOSS outcome.

    A model is right when its sentiment (above or below 50) matches the way
    the price actually moved: up for a winning LONG or a losing SHORT.
    """
    records = []
    for s in sessions:
        if s.actual_outcome not in (Outcome.WIN, Outcome.LOSS) or not s.signal_direction:
            continue
        won = s.actual_outcome == Outcome.WIN
        moved_up = won if s.signal_direction == TradeDirection.LONG.value else not won
        for a in s.ai_analyses:
            sentiment = a.get("sentiment")
            if sentiment is None or sentiment == 50:
                continue
            records.append({"provider": a.get("provider"), "correct": (sentiment > 50) == moved_up})
    if not records:
        return pd.DataFrame(columns=["provider", "accuracy", "samples"])
    df = pd.DataFrame(records)
    grouped = df.groupby("provider", sort=False)["correct"]
    return pd.DataFrame({"accuracy": grouped.mean(), "samples": grouped.size()}).reset_index()


class LearningLogger:

    async def log_analysis(self, user_id: str, result: ConsensusResult) -> str:
        """Persist the session; on failure log it and hand back a fallback id."""
        session = build_session(user_id, result)
        try:
            session_id = await database.create_session(session)
        except PersistenceFailure as e:
            logger.error(f"❌ Failed to save analysis session: {e}")
            return f"fallback-{int(time.time() * 1000)}"
        signal = result.signal
        logger.info(f"📚 Learning session saved: {signal.symbol} - {signal.strength.value} "
                    f"{signal.direction.value if signal.direction else 'HOLD'}")
        return session_id

    async def mark_executed(self, session_id: str, trade: Position) -> None:
        await database.execute_trade(session_id, trade)

    async def record_outcome(self, session_id: str, outcome: Outcome, pnl: float, pnl_percent: float,
                             close_reason: CloseReason = CloseReason.MANUAL,
                             exit_price: Optional[float] = None) -> None:
        await database.record_outcome(session_id, outcome, pnl, pnl_percent, close_reason, exit_price)
        logger.info(f"🎓 Outcome recorded for {session_id}: {outcome.value} ({pnl_percent:.2f}%)")

    async def get_stats(self, user_id: str) -> LearningStats:
        sessions = await database.load_sessions(user_id)
        if not sessions:
            return LearningStats()

        df = pd.DataFrame([s.model_dump(mode="json") for s in sessions])
        completed = df[df["actual_outcome"].notna()]
        wins = completed[completed["actual_outcome"] == Outcome.WIN.value]
        losses = completed[completed["actual_outcome"] == Outcome.LOSS.value]

        accuracy = model_accuracy(sessions)
        best = "N/A"
        if not accuracy.empty:
            top = accuracy.loc[accuracy["accuracy"].idxmax()]
            best = f"{top['provider']} ({top['accuracy'] * 100:.1f}%)"

        return LearningStats(
            total_analyses=len(df),
            executed=int(df["was_executed"].sum()),
            win_rate=len(wins) / len(completed) if len(completed) else 0.0,
            avg_confidence_when_win=float(wins["consensus_confidence"].mean()) if len(wins) else 0.0,
            avg_confidence_when_loss=float(losses["consensus_confidence"].mean()) if len(losses) else 0.0,
            best_performing_model=best,
        )

    async def export_training_data(self, user_id: str) -> list[dict]:
        sessions = await database.load_sessions(user_id)
        return [
            {
                "input": {
                    "symbol": s.symbol,
                    "price": s.price,
                    "technicals": s.technical_data,
                    "macro": s.macro_data,
                    "news": s.news_data,
                    "marketReport": s.market_report,
                },
                "prediction": {
                    "sentiment": s.consensus_sentiment,
                    "confidence": s.consensus_confidence,
                    "direction": s.signal_direction,
                },
                "actual": {
                    "outcome": s.actual_outcome.value,
                    "pnl": s.actual_pnl,
                    "pnlPercent": s.actual_pnl_percent,
                },
                "timestamp": s.timestamp.isoformat(),
            }
            for s in sessions
            if s.actual_outcome is not None
        ]
