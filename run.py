"""
AI Consensus Trader - Entry point
Runs one consensus analysis per configured trading pair and prints the signals.
Run: python run.py [--offline]
  --offline  use the static fallback price table instead of CoinGecko
"""
import asyncio
import sys

from common.errors import AggregateFailure, ValidationError
from common.logger import get_logger, new_request_id
from config import settings
from consensus.orchestrator import ConsensusOrchestrator
from market.prices import fallback_prices, get_prices, price_map

logger = get_logger("run")

EMOJI = {"STRONG_BUY": "🟢🟢", "BUY": "🟢", "HOLD": "🟡", "SELL": "🔴", "STRONG_SELL": "🔴🔴"}


async def analyze_pairs(offline: bool = False) -> None:
    snapshot = fallback_prices() if offline else await get_prices()
    prices = price_map(snapshot)
    orchestrator = ConsensusOrchestrator()

    print("\n" + "=" * 96)
    print(f"  🚀  AI Consensus Trader  -  {', '.join(p.name for p in orchestrator.providers)}")
    print("=" * 96)
    print(f"{'Pair':<10} {'Price':>12} {'Sntmt':>6} {'Conf':>6} {'Stop':>12} {'Target':>12} {'Models':>7}  Signal")
    print("-" * 96)

    for pair in settings.TRADING_PAIRS:
        try:
            result = await orchestrator.analyze(pair, {"price": prices.get(pair)})
        except (ValidationError, AggregateFailure) as e:
            print(f"{pair:<10} {'ERROR':>70}  ❌ {e}")
            continue
        s = result.signal
        ok = sum(1 for r in result.provider_results if r.ok)
        print(
            f"{pair:<10}"
            f" {s.entry_price:>12.4f}"
            f" {s.sentiment:>6.1f}"
            f" {s.confidence:>6.2f}"
            f" {s.stop_loss:>12.4f}"
            f" {s.take_profit:>12.4f}"
            f" {ok:>3}/{len(result.provider_results):<3}"
            f"  {EMOJI[s.strength.value]} {s.strength.value}"
        )

    print("=" * 96)
    print(f"  Stops: {settings.STOP_LOSS_PCT:.0%} | Targets: {settings.TAKE_PROFIT_PCT:.0%} | Prices: "
          + ("fallback table" if offline else "CoinGecko"))
    print("=" * 96 + "\n")


def main():
    new_request_id()
    asyncio.run(analyze_pairs(offline="--offline" in sys.argv[1:]))


if __name__ == "__main__":
    main()
