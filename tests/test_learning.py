"""Tests for the learning logger, model accuracy and post-commit side effects."""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from common.errors import PersistenceFailure
from common.models import AnalysisSession, Outcome
from consensus.orchestrator import ConsensusOrchestrator
from learning.effects import SideEffectRunner
from learning.logger import LearningLogger, model_accuracy
from storage import database


def session(session_id, direction, outcome, confidence, sentiments, executed=False) -> AnalysisSession:
    return AnalysisSession(
        id=session_id,
        user_id="user-1",
        symbol="BTC/EUR",
        timestamp=datetime(2026, 10, 1, tzinfo=timezone.utc),
        price=100.0,
        market_report="report",
        ai_analyses=[{"provider": p, "sentiment": s, "confidence": 0.8, "reasoning": "r"}
                     for p, s in sentiments.items()],
        signal_strength="BUY" if direction == "LONG" else "SELL",
        signal_direction=direction,
        consensus_sentiment=60.0,
        consensus_confidence=confidence,
        was_executed=executed,
        actual_outcome=outcome,
        actual_pnl=None if outcome is None else 1.0,
        actual_pnl_percent=None if outcome is None else 1.0,
    )


HISTORY = [
    session("s-1", "LONG", Outcome.WIN, 0.8, {"claude": 80, "gpt4": 40}, executed=True),
    session("s-2", "LONG", Outcome.LOSS, 0.7, {"claude": 70, "gpt4": 30}),
    session("s-3", "SHORT", Outcome.WIN, 0.9, {"claude": 20, "gpt4": 60}),
    session("s-4", "LONG", None, 0.6, {"claude": 65, "gpt4": 65}),
]


async def analysis_result(stub_provider, aggregator):
    orch = ConsensusOrchestrator(providers=[stub_provider("claude", 80), stub_provider("gpt4", 75)],
                                 aggregator=aggregator)
    return await orch.analyze("BTC/EUR", {"price": 100.0})


class TestModelAccuracy:
    def test_directional_hit_rate(self):
        df = model_accuracy(HISTORY).set_index("provider")
        assert df.loc["claude", "accuracy"] == pytest.approx(2 / 3)
        assert df.loc["gpt4", "accuracy"] == pytest.approx(1 / 3)
        assert df.loc["claude", "samples"] == 3

    def test_ignores_break_even_and_neutral_calls(self):
        history = [
            session("a", "LONG", Outcome.BREAK_EVEN, 0.8, {"claude": 80}),
            session("b", "LONG", Outcome.WIN, 0.8, {"claude": 50}),
        ]
        assert model_accuracy(history).empty


class TestLearningLogger:
    @pytest.mark.asyncio
    async def test_log_analysis_stores_exact_context(self, csv_store, stub_provider, aggregator):
        result = await analysis_result(stub_provider, aggregator)
        session_id = await LearningLogger().log_analysis("user-1", result)

        stored = await database.get_session(session_id)
        assert stored.market_report == result.market_report
        assert stored.technical_data["rsi"] == pytest.approx(result.market_context.technicals.rsi)
        assert [a["provider"] for a in stored.ai_analyses] == ["claude", "gpt4"]
        assert stored.signal_direction == "LONG"

    @pytest.mark.asyncio
    async def test_log_analysis_falls_back_on_store_failure(self, monkeypatch, stub_provider, aggregator):
        monkeypatch.setattr(database, "create_session", AsyncMock(side_effect=PersistenceFailure("down")))
        result = await analysis_result(stub_provider, aggregator)
        session_id = await LearningLogger().log_analysis("user-1", result)
        assert session_id.startswith("fallback-")

    @pytest.mark.asyncio
    async def test_stats(self, csv_store):
        for s in HISTORY:
            await database.create_session(s)
        stats = await LearningLogger().get_stats("user-1")

        assert stats.total_analyses == 4
        assert stats.executed == 1
        assert stats.win_rate == pytest.approx(2 / 3)
        assert stats.avg_confidence_when_win == pytest.approx(0.85)
        assert stats.avg_confidence_when_loss == pytest.approx(0.7)
        assert stats.best_performing_model == "claude (66.7%)"

    @pytest.mark.asyncio
    async def test_stats_empty(self, csv_store):
        stats = await LearningLogger().get_stats("nobody")
        assert stats.total_analyses == 0
        assert stats.best_performing_model == "N/A"

    @pytest.mark.asyncio
    async def test_export_only_completed(self, csv_store):
        for s in HISTORY:
            await database.create_session(s)
        rows = await LearningLogger().export_training_data("user-1")

        assert len(rows) == 3
        assert rows[0]["input"]["marketReport"] == "report"
        assert rows[0]["prediction"]["direction"] == "LONG"
        assert {r["actual"]["outcome"] for r in rows} == {"WIN", "LOSS"}


class TestSideEffectRunner:
    @pytest.mark.asyncio
    async def test_failure_recorded_not_raised(self):
        runner = SideEffectRunner()

        async def boom():
            raise PersistenceFailure("store offline")

        runner.schedule("record_outcome", boom())
        await runner.drain()
        assert len(runner.failures) == 1
        assert runner.failures[0].name == "record_outcome"
        assert "store offline" in runner.failures[0].error

    @pytest.mark.asyncio
    async def test_success_leaves_no_failures(self):
        runner = SideEffectRunner()
        done = []

        async def work():
            done.append(True)

        runner.schedule("link_trade", work())
        await runner.drain()
        assert done == [True]
        assert not runner.failures

    @pytest.mark.asyncio
    async def test_failure_log_is_bounded(self):
        runner = SideEffectRunner(max_failures=2)

        async def boom():
            raise RuntimeError("x")

        for _ in range(5):
            runner.schedule("noop", boom())
        await runner.drain()
        assert len(runner.failures) == 2

    @pytest.mark.asyncio
    async def test_same_key_runs_in_order(self):
        runner = SideEffectRunner()
        order = []

        async def slow_execute():
            await asyncio.sleep(0.05)
            order.append("execute")

        async def outcome():
            order.append("outcome")

        async def other_session():
            order.append("other")

        runner.schedule("execute:s-1", slow_execute(), key="s-1")
        runner.schedule("outcome:s-1", outcome(), key="s-1")
        runner.schedule("outcome:s-2", other_session(), key="s-2")
        await runner.drain()
        assert order == ["other", "execute", "outcome"]

    @pytest.mark.asyncio
    async def test_failed_predecessor_does_not_block_key(self):
        runner = SideEffectRunner()
        done = []

        async def boom():
            raise PersistenceFailure("store offline")

        async def work():
            done.append(True)

        runner.schedule("execute:s-1", boom(), key="s-1")
        runner.schedule("outcome:s-1", work(), key="s-1")
        await runner.drain()
        assert done == [True]
        assert [f.name for f in runner.failures] == ["execute:s-1"]
