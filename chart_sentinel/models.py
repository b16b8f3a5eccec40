from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Interval(str, Enum):
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @classmethod
    def parse(cls, value: str) -> "Interval":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(i.value for i in cls)
            raise ValueError(f"Unsupported interval: {value} (use one of {allowed})") from None


class AlertType(str, Enum):
    ENTRY = "entry"
    TAKE_PROFIT = "takeProfit"
    STOP_LOSS = "stopLoss"


@dataclass(frozen=True)
class Candle:
    time: int  # bar open, seconds since epoch
    open: float
    high: float
    low: float
    close: float

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "open": self.open, "high": self.high, "low": self.low, "close": self.close}


@dataclass(frozen=True)
class IndicatorSeries:
    """values[i] belongs to candles[offset + i]."""

    kind: str
    offset: int = 0
    values: Tuple[float, ...] = ()

    def __len__(self) -> int:
        return len(self.values)

    @property
    def empty(self) -> bool:
        return not self.values


@dataclass(frozen=True)
class TradeSignal:
    entry_price_range: str
    take_profit_levels: Tuple[str, ...]
    stop_loss: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TradeSignal":
        if not isinstance(raw, dict):
            raise ValueError("tradeSignal must be an object")
        tps = raw.get("takeProfitLevels") or []
        if isinstance(tps, str):
            tps = [tps]
        return cls(
            entry_price_range=str(raw.get("entryPriceRange", "")),
            take_profit_levels=tuple(str(x) for x in tps),
            stop_loss=str(raw.get("stopLoss", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entryPriceRange": self.entry_price_range,
            "takeProfitLevels": list(self.take_profit_levels),
            "stopLoss": self.stop_loss,
        }


@dataclass(frozen=True)
class AnalysisResult:
    analysis_summary: str
    trade_signal: TradeSignal
    risk_level: Optional[str] = None
    confidence_level: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AnalysisResult":
        if not isinstance(raw, dict) or "tradeSignal" not in raw:
            raise ValueError("analysis response is missing tradeSignal")
        risk = raw.get("riskLevel")
        conf = raw.get("confidenceLevel")
        return cls(
            analysis_summary=str(raw.get("analysisSummary", "")),
            trade_signal=TradeSignal.from_dict(raw["tradeSignal"]),
            risk_level=None if risk is None else str(risk),
            confidence_level=None if conf is None else str(conf),
        )


@dataclass(frozen=True)
class AnalysisRecord:
    trading_pair: str
    interval: str
    analysis_summary: str
    trade_signal: TradeSignal
    risk_level: Optional[str] = None
    confidence_level: Optional[str] = None
    trading_style: Optional[str] = None
    risk_tolerance: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tradingPair": self.trading_pair,
            "interval": self.interval,
            "analysisSummary": self.analysis_summary,
            "tradeSignal": self.trade_signal.to_dict(),
            "riskLevel": self.risk_level,
            "confidenceLevel": self.confidence_level,
            "tradingStyle": self.trading_style,
            "riskTolerance": self.risk_tolerance,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AnalysisRecord":
        created = datetime.fromisoformat(raw["createdAt"])
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return cls(
            trading_pair=raw["tradingPair"],
            interval=raw.get("interval", ""),
            analysis_summary=raw.get("analysisSummary", ""),
            trade_signal=TradeSignal.from_dict(raw["tradeSignal"]),
            risk_level=raw.get("riskLevel"),
            confidence_level=raw.get("confidenceLevel"),
            trading_style=raw.get("tradingStyle"),
            risk_tolerance=raw.get("riskTolerance"),
            created_at=created,
        )


@dataclass(frozen=True)
class PriceAlert:
    level: str
    type: AlertType
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class AlertState:
    entry_hit: bool = False
    fired_levels: frozenset = frozenset()


@dataclass(frozen=True)
class SessionSnapshot:
    symbol: str
    interval: str
    candles: Tuple[Candle, ...]
    indicators: Dict[str, IndicatorSeries]
    latest_price: Optional[float]
    analysis: Optional[AnalysisResult]
    alerts: Tuple[PriceAlert, ...]
    alert_state: AlertState
    feed_state: str
    is_loading: bool
    auto_refresh: bool
    last_error: Optional[str] = None
    active_indicators: List[str] = field(default_factory=list)
