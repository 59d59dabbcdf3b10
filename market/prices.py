"""CoinGecko spot prices (no API key required), with a static fallback table."""
import asyncio
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import requests

from common.logger import get_logger
from config import settings

logger = get_logger("prices")

COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

COIN_IDS = {
    "BTC":  "bitcoin",
    "ETH":  "ethereum",
    "SOL":  "solana",
    "LINK": "chainlink",
    "ARB":  "arbitrum",
}

FALLBACK_PRICES = {
    "BTC":  78235.50,
    "ETH":  2625.80,
    "SOL":  118.60,
    "LINK": 11.45,
    "ARB":  0.19,
}


def _pair(symbol: str) -> str:
    return f"{symbol}/{settings.QUOTE_CURRENCY}"


def fetch_realtime_prices(symbols: Optional[list[str]] = None) -> dict[str, dict]:
    """Return {"BTC/EUR": {price, change24h, volume, marketCap, lastUpdated, source}}.

    Never raises: any transport or decoding error yields the fallback table.
    """
    symbols = symbols or settings.PRICE_SYMBOLS
    quote = settings.QUOTE_CURRENCY.lower()
    ids = {s: COIN_IDS.get(s, s.lower()) for s in symbols}
    try:
        resp = requests.get(
            COINGECKO_PRICE_URL,
            params={
                "ids": ",".join(ids.values()),
                "vs_currencies": quote,
                "include_24hr_change": "true",
                "include_24hr_vol": "true",
                "include_market_cap": "true",
                "include_last_updated_at": "true",
            },
            headers={"Accept": "application/json"},
            timeout=10,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"CoinGecko failed: {e}. Using fallback prices.")
        return fallback_prices(symbols)

    prices = {}
    for symbol, coin_id in ids.items():
        coin = data.get(coin_id)
        if not coin or coin.get(quote) is None:
            continue
        updated = coin.get("last_updated_at")
        prices[_pair(symbol)] = {
            "price": float(coin[quote]),
            "change24h": coin.get(f"{quote}_24h_change"),
            "volume": coin.get(f"{quote}_24h_vol"),
            "marketCap": coin.get(f"{quote}_market_cap"),
            "lastUpdated": (datetime.fromtimestamp(updated, tz=timezone.utc).isoformat()
                            if updated else datetime.now(timezone.utc).isoformat()),
            "source": "coingecko",
        }
    logger.info(f"Got {len(prices)} prices from CoinGecko")
    return prices


def fallback_prices(symbols: Optional[list[str]] = None) -> dict[str, dict]:
    symbols = symbols or settings.PRICE_SYMBOLS
    rng = np.random.default_rng()
    now = datetime.now(timezone.utc).isoformat()
    return {
        _pair(s): {
            "price": FALLBACK_PRICES.get(s, 100.0),
            "change24h": float(rng.uniform(-5, 5)),
            "volume": float(rng.uniform(1_000_000, 6_000_000)),
            "marketCap": 100_000_000,
            "lastUpdated": now,
            "source": "fallback",
        }
        for s in symbols
    }


async def get_prices(symbols: Optional[list[str]] = None) -> dict[str, dict]:
    return await asyncio.to_thread(fetch_realtime_prices, symbols)


def price_map(snapshot: dict[str, dict]) -> dict[str, float]:
    """Flatten a snapshot to {pair: price} for the position monitor."""
    return {pair: row["price"] for pair, row in snapshot.items()}
