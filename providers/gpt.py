"""OpenAI-compatible chat-completions adapters: GPT-4, DeepSeek, Grok."""
import json
from typing import Optional

import httpx

from providers.base import RESPONSE_SCHEMA, BaseProvider


class OpenAIProvider(BaseProvider):
    name = "gpt4"
    placeholder = (60, 75, "Placeholder analysis: GPT-4 sees a consolidation pattern.")
    json_mode = True

    def build_messages(self, symbol: str, market_data: dict, market_report: str) -> list[dict]:
        prompt = (
            "You are an expert crypto trading analyst with deep knowledge of technical analysis, "
            "macroeconomics, and market psychology.\n\n"
            f"Analyze {symbol} for a potential trading opportunity using the comprehensive market data below:\n\n"
            f"{market_report}\n\n"
            "Your task:\n"
            "1. Synthesize ALL information (technicals, macro, news)\n"
            "2. Identify key risks and opportunities\n"
            "3. Provide a clear, data-driven trading recommendation\n\n"
            f"Respond in JSON format:\n{RESPONSE_SCHEMA}\n\n"
            "Be objective. Consider ALL factors. Output ONLY valid JSON."
        )
        return [
            {"role": "system", "content": "You are an expert crypto trading analyst."},
            {"role": "user", "content": prompt},
        ]

    async def _complete(self, client: httpx.AsyncClient, symbol: str,
                        market_data: dict, market_report: str) -> tuple[str, Optional[int]]:
        payload = {
            "model": self.config.model,
            "messages": self.build_messages(symbol, market_data, market_report),
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        resp = await client.post(
            f"{self.config.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            json=payload,
            timeout=self.config.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        text = data["choices"][0]["message"]["content"] or ""
        tokens = (data.get("usage") or {}).get("total_tokens")
        return text, tokens


class DeepSeekProvider(OpenAIProvider):
    name = "deepseek"
    placeholder = None

    def build_messages(self, symbol: str, market_data: dict, market_report: str) -> list[dict]:
        return [
            {
                "role": "system",
                "content": (
                    f"You are an expert crypto trading analyst. Analyze the provided market data and report for {symbol}.\n"
                    "Return a JSON object with:\n"
                    "- sentiment (0-100 score, >50 bullish)\n"
                    "- confidence (0-100 score)\n"
                    "- reasoning (concise explanation)"
                ),
            },
            {
                "role": "user",
                "content": f"Market Report: {market_report}\n\nTechnical Data: {json.dumps(market_data, default=str)}",
            },
        ]


class GrokProvider(DeepSeekProvider):
    name = "grok"
    # xAI does not reliably honour response_format, the JSON object is extracted from the text
    json_mode = False
