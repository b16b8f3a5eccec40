from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

import aiohttp

from .models import AnalysisResult, Candle

log = logging.getLogger("analysis")

TRADING_STYLES = ("Day Trading", "Swing Trading", "Position Trading")
RISK_TOLERANCES = ("Conservative", "Moderate", "Aggressive")


class AnalysisError(RuntimeError):
    pass


@dataclass(frozen=True)
class AnalysisRequest:
    candles: str  # JSON array of {time, open, high, low, close}
    trading_pair: str
    trading_style: Optional[str] = None
    risk_tolerance: Optional[str] = None

    @classmethod
    def build(
        cls,
        candles: Sequence[Candle],
        trading_pair: str,
        *,
        trading_style: Optional[str] = None,
        risk_tolerance: Optional[str] = None,
    ) -> "AnalysisRequest":
        payload = json.dumps([c.to_dict() for c in candles], separators=(",", ":"))
        return cls(candles=payload, trading_pair=trading_pair, trading_style=trading_style, risk_tolerance=risk_tolerance)

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"chartData": self.candles, "tradingPair": self.trading_pair}
        if self.trading_style:
            body["tradingStyle"] = self.trading_style
        if self.risk_tolerance:
            body["riskTolerance"] = self.risk_tolerance
        return body


class Analyzer(Protocol):
    async def analyze(self, request: AnalysisRequest) -> AnalysisResult: ...


class HttpAnalysisClient:
    """POSTs the chart window to an inference endpoint and parses the plan."""

    def __init__(self, url: str, *, api_key: str = "", timeout_s: int = 60, headers: Optional[dict] = None):
        self.url = url or ""
        self.api_key = api_key or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 60
        self.headers = headers or {}

    def enabled(self) -> bool:
        return bool(self.url)

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        if not self.enabled():
            raise AnalysisError("analysis endpoint is not configured")

        headers = {"Content-Type": "application/json", **self.headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=request.to_payload(), headers=headers) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise AnalysisError(f"analysis failed: {resp.status} {text[:300]}")
                    body = await resp.json(content_type=None)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise AnalysisError(f"analysis transport error: {e!r}") from e

        try:
            result = AnalysisResult.from_dict(body)
        except (KeyError, TypeError, ValueError) as e:
            raise AnalysisError(f"malformed analysis response: {e}") from e
        log.info("analysis_ok pair=%s risk=%s confidence=%s", request.trading_pair, result.risk_level, result.confidence_level)
        return result
