"""Base provider adapter.

Every adapter turns (symbol, market data, market report) into one tagged
``ProviderResult``. The reply text is parsed into a JSON object first and then
validated field by field; nothing the provider sends is trusted implicitly.
Adapters make exactly one HTTP call and never retry.
"""
import json
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from common.errors import ProviderFailure
from common.logger import get_logger
from common.models import AIAnalysis, ProviderResult, ProviderStatus

_FENCE_RE = re.compile(r"```(?:json)?")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

RESPONSE_SCHEMA = """{
  "sentiment": <0-100, where 0=extremely bearish, 100=extremely bullish>,
  "confidence": <0-100, your conviction level>,
  "reasoning": "<concise explanation citing specific data points>"
}"""


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    api_key: str
    model: str
    base_url: str
    timeout: float = 15.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_reply(provider: str, text: Optional[str]) -> dict:
    """Extract the JSON object from a free-form reply (code fences allowed)."""
    if not text or not text.strip():
        raise ProviderFailure(provider, ProviderStatus.PARSE_ERROR.value, "empty response")
    cleaned = _FENCE_RE.sub("", text).strip()
    match = _OBJECT_RE.search(cleaned)
    if match is None:
        raise ProviderFailure(provider, ProviderStatus.PARSE_ERROR.value,
                              f"no JSON object in response: {cleaned[:80]!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ProviderFailure(provider, ProviderStatus.PARSE_ERROR.value,
                              f"invalid JSON response: {e}") from e
    if not isinstance(data, dict):
        raise ProviderFailure(provider, ProviderStatus.PARSE_ERROR.value, "JSON reply is not an object")
    return data


def validate_reply(provider: str, data: dict,
                   tokens_used: Optional[int] = None,
                   response_time_ms: Optional[float] = None,
                   placeholder: bool = False) -> AIAnalysis:
    """Check fields and ranges, then normalise confidence from 0-100 to 0-1."""
    sentiment = data.get("sentiment")
    confidence = data.get("confidence")
    reasoning = data.get("reasoning")

    if not (_is_number(sentiment) and _is_number(confidence)
            and isinstance(reasoning, str) and reasoning.strip()):
        raise ProviderFailure(provider, ProviderStatus.PARSE_ERROR.value,
                              "response missing required fields (sentiment, confidence, reasoning)")
    if not math.isfinite(sentiment) or not 0 <= sentiment <= 100:
        raise ProviderFailure(provider, ProviderStatus.RANGE_ERROR.value,
                              f"sentiment out of range: {sentiment} (expected 0-100)")
    if not math.isfinite(confidence) or not 0 <= confidence <= 100:
        raise ProviderFailure(provider, ProviderStatus.RANGE_ERROR.value,
                              f"confidence out of range: {confidence} (expected 0-100)")

    return AIAnalysis(
        provider=provider,
        sentiment=float(sentiment),
        confidence=float(confidence) / 100,
        reasoning=reasoning,
        tokens_used=tokens_used,
        response_time_ms=response_time_ms,
        placeholder=placeholder,
    )


class BaseProvider(ABC):
    name: str = ""
    # (sentiment 0-100, confidence 0-100, reasoning) served when no API key is set
    placeholder: Optional[tuple[float, float, str]] = None

    def __init__(self, config: ProviderConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def _complete(self, client: httpx.AsyncClient, symbol: str,
                        market_data: dict, market_report: str) -> tuple[str, Optional[int]]:
        """Perform the HTTP call. Returns (reply text, tokens used)."""

    async def analyze(self, symbol: str, market_data: dict, market_report: str) -> ProviderResult:
        if not self.config.configured:
            return self._unconfigured()

        start = time.perf_counter()
        try:
            text, tokens = await self._call(symbol, market_data, market_report)
        except httpx.HTTPError as e:
            self.logger.error(f"❌ {self.name} transport error: {e!r}")
            return ProviderResult(provider=self.name, status=ProviderStatus.TRANSPORT_ERROR, error=repr(e))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            self.logger.error(f"❌ {self.name} unexpected response envelope: {e!r}")
            return ProviderResult(provider=self.name, status=ProviderStatus.PARSE_ERROR,
                                  error=f"unexpected response envelope: {e!r}")
        elapsed_ms = (time.perf_counter() - start) * 1000

        try:
            data = parse_reply(self.name, text)
            analysis = validate_reply(self.name, data, tokens, elapsed_ms)
        except ProviderFailure as e:
            self.logger.error(f"❌ {e}")
            return ProviderResult(provider=self.name, status=ProviderStatus(e.kind), error=str(e))

        self.logger.info(f"✅ {self.name}: sentiment={analysis.sentiment:.1f} "
                         f"confidence={analysis.confidence:.2f} ({elapsed_ms:.0f} ms)")
        return ProviderResult(provider=self.name, status=ProviderStatus.OK, analysis=analysis)

    async def _call(self, symbol: str, market_data: dict, market_report: str) -> tuple[str, Optional[int]]:
        if self._client is not None:
            return await self._complete(self._client, symbol, market_data, market_report)
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            return await self._complete(client, symbol, market_data, market_report)

    def _unconfigured(self) -> ProviderResult:
        if self.placeholder is None:
            self.logger.warning(f"Missing API key for {self.name}, provider unavailable")
            return ProviderResult(provider=self.name, status=ProviderStatus.UNCONFIGURED,
                                  error=f"{self.name} API key not configured")
        self.logger.warning(f"Missing API key for {self.name}, returning placeholder analysis")
        sentiment, confidence, reasoning = self.placeholder
        analysis = validate_reply(
            self.name,
            {"sentiment": sentiment, "confidence": confidence, "reasoning": reasoning},
            tokens_used=0, response_time_ms=0, placeholder=True,
        )
        return ProviderResult(provider=self.name, status=ProviderStatus.UNCONFIGURED, analysis=analysis)
