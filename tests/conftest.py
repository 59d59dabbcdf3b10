"""Pytest configuration and shared fixtures."""
import asyncio
import sys
from pathlib import Path

# Ensure project root is importable regardless of where pytest is invoked
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from common.models import (
    AIAnalysis, ProviderResult, ProviderStatus, SignalStrength, TradeDirection, TradingSignal,
)
from market.context import MarketContextAggregator
from market.macro import MacroSource
from market.news import NewsSource
from market.technicals import TechnicalsSource
from storage import database


class StubProvider:
    """Stands in for a provider adapter; records what it was called with."""

    def __init__(self, name, sentiment=None, confidence=0.8, placeholder=False,
                 delay=0.0, exc=None, status=ProviderStatus.OK):
        self.name = name
        self.sentiment = sentiment
        self.confidence = confidence
        self.placeholder = placeholder
        self.delay = delay
        self.exc = exc
        self.status = status
        self.calls = []

    async def analyze(self, symbol, market_data, market_report):
        self.calls.append((symbol, market_data, market_report))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        if self.sentiment is None:
            return ProviderResult(provider=self.name, status=ProviderStatus.TRANSPORT_ERROR, error="down")
        analysis = AIAnalysis(
            provider=self.name,
            sentiment=self.sentiment,
            confidence=self.confidence,
            reasoning=f"{self.name} sees a clear setup. " * 10,
            placeholder=self.placeholder,
        )
        return ProviderResult(provider=self.name, status=self.status, analysis=analysis)


@pytest.fixture
def stub_provider():
    return StubProvider


@pytest.fixture
def aggregator():
    """Market context aggregator with seeded, offline sources."""
    return MarketContextAggregator(
        technicals=TechnicalsSource(rng=np.random.default_rng(1)),
        macro=MacroSource(rng=np.random.default_rng(2), source="simulated"),
        news=NewsSource(rng=np.random.default_rng(3)),
    )


@pytest.fixture
def make_signal():
    def _make(symbol="BTC/EUR", direction=TradeDirection.LONG, price=100.0, confidence=0.8):
        if direction == TradeDirection.LONG:
            strength, stop, target, sentiment = SignalStrength.STRONG_BUY, price * 0.97, price * 1.05, 80.0
        elif direction == TradeDirection.SHORT:
            strength, stop, target, sentiment = SignalStrength.STRONG_SELL, price * 1.03, price * 0.95, 20.0
        else:
            strength, stop, target, sentiment = SignalStrength.HOLD, 0.0, 0.0, 50.0
        return TradingSignal(
            symbol=symbol, strength=strength, direction=direction,
            sentiment=sentiment, confidence=confidence, consensus=confidence,
            entry_price=price, stop_loss=stop, take_profit=target,
        )
    return _make


@pytest.fixture
def csv_store(tmp_path, monkeypatch):
    """Point the learning store at an empty CSV directory."""
    monkeypatch.setattr(database, "USE_POSTGRES", False)
    monkeypatch.setattr(database, "DATA_DIR", tmp_path)
    return tmp_path
