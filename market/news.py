"""News sentiment (simulated until a news API key is configured)."""
from common.models import NewsSentiment
from market.base import BaseSource

POSITIVE_TOPICS = ["Institutional adoption", "ETF inflows", "Network upgrade success",
                   "Major partnerships", "Regulatory clarity"]
NEGATIVE_TOPICS = ["Regulatory concerns", "Market volatility", "Exchange issues",
                   "Security breaches", "Macro headwinds"]
NEUTRAL_TOPICS = ["Price consolidation", "Technical analysis", "Market analysis", "Volume trends"]


def summarize(asset: str, score: float) -> tuple[str, list[str]]:
    if score > 20:
        topics = POSITIVE_TOPICS[:3]
        return f"Positive sentiment around {asset}. Key drivers: {', '.join(topics[:2])}.", topics
    if score < -20:
        topics = NEGATIVE_TOPICS[:3]
        return f"Cautious sentiment for {asset}. Concerns: {', '.join(topics[:2])}.", topics
    return f"Mixed sentiment for {asset}. Market awaiting catalysts.", NEUTRAL_TOPICS[:3]


class NewsSource(BaseSource):
    name = "news"

    def fetch(self, symbol: str, price: float) -> NewsSentiment:
        return self.simulate(symbol, price)

    def simulate(self, symbol: str, price: float) -> NewsSentiment:
        asset = symbol.split("/")[0]
        score = self.uniform(-50, 50)
        summary, topics = summarize(asset, score)
        return NewsSentiment(
            score=score,
            summary=summary,
            key_topics=topics,
            sources=int(self.rng.integers(20, 70)),
        )
