"""Google Gemini adapter (Generative Language API)."""
from typing import Optional

import httpx

from providers.base import RESPONSE_SCHEMA, BaseProvider


class GeminiProvider(BaseProvider):
    name = "gemini"
    placeholder = (70, 82, "Placeholder analysis: Gemini detects a bullish divergence on RSI.")

    def build_prompt(self, symbol: str, market_report: str) -> str:
        return (
            "You are a sophisticated crypto trading AI with expertise in quantitative analysis.\n\n"
            f"Analyze {symbol} using this comprehensive market intelligence:\n\n"
            f"{market_report}\n\n"
            "Task:\n"
            "1. Evaluate technical setup (trend, support/resistance, momentum)\n"
            "2. Assess macro risks (carry trade, liquidity, rates)\n"
            "3. Integrate news sentiment\n"
            "4. Provide probability-weighted recommendation\n\n"
            f"JSON response:\n{RESPONSE_SCHEMA}\n\n"
            "Be analytical. Cite specific data. Output ONLY valid JSON."
        )

    async def _complete(self, client: httpx.AsyncClient, symbol: str,
                        market_data: dict, market_report: str) -> tuple[str, Optional[int]]:
        resp = await client.post(
            f"{self.config.base_url}/models/{self.config.model}:generateContent",
            params={"key": self.config.api_key},
            json={"contents": [{"parts": [{"text": self.build_prompt(symbol, market_report)}]}]},
            timeout=self.config.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(p.get("text", "") for p in parts)
        tokens = (data.get("usageMetadata") or {}).get("totalTokenCount")
        return text, tokens
