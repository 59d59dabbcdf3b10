"""Anthropic Claude adapter (Messages API)."""
from typing import Optional

import httpx

from providers.base import RESPONSE_SCHEMA, BaseProvider

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(BaseProvider):
    name = "claude"
    placeholder = (65, 80, "Placeholder analysis: Claude identifies a potential support level.")

    def build_prompt(self, symbol: str, market_report: str) -> str:
        return (
            "You are an expert crypto trading analyst specializing in multi-factor analysis.\n\n"
            f"Analyze {symbol} using the comprehensive market intelligence below:\n\n"
            f"{market_report}\n\n"
            "Your analysis should:\n"
            "1. Weight technical, macro, and sentiment factors appropriately\n"
            "2. Identify the most critical risks (carry trade unwinding, regulation, technical breakdowns)\n"
            "3. Provide actionable insight\n\n"
            f"Respond in JSON:\n{RESPONSE_SCHEMA}\n\n"
            "Be rigorous. Consider risk-reward. Output ONLY valid JSON."
        )

    async def _complete(self, client: httpx.AsyncClient, symbol: str,
                        market_data: dict, market_report: str) -> tuple[str, Optional[int]]:
        resp = await client.post(
            f"{self.config.base_url}/messages",
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": self.config.model,
                "max_tokens": 1024,
                "messages": [{"role": "user", "content": self.build_prompt(symbol, market_report)}],
            },
            timeout=self.config.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        text = "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        usage = data.get("usage") or {}
        tokens = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)
        return text, tokens
