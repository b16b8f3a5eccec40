from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set, Tuple

from .models import AlertState, AlertType, PriceAlert, TradeSignal

log = logging.getLogger("alerts")

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")
_RANGE_SEP_RE = re.compile(r"(?<=\d)-")
_DASHES_RE = re.compile(r"\s*(?:[\u2012\u2013\u2014\u2212]|\bto\b)\s*", re.IGNORECASE)

ENTRY_LEVEL_ID = "entry"


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse a price string such as '$90,500.25'. None when unparseable."""
    if text is None:
        return None
    cleaned = _NON_NUMERIC_RE.sub("", str(text))
    if not cleaned:
        return None
    try:
        val = float(cleaned)
    except ValueError:
        return None
    if math.isnan(val) or math.isinf(val):
        return None
    return val


def parse_price_range(text: Optional[str]) -> Optional[Tuple[float, float]]:
    """'100-110' -> (100.0, 110.0); a single value gives low == high."""
    if text is None:
        return None
    normalized = _DASHES_RE.sub("-", str(text))
    cleaned = _NON_NUMERIC_RE.sub("", normalized)
    parts = [p for p in _RANGE_SEP_RE.split(cleaned) if p]
    prices = [parse_price(p) for p in parts]
    if not prices or any(p is None for p in prices):
        return None
    return min(prices), max(prices)


def stop_loss_id(stop_loss: str) -> str:
    return f"sl-{stop_loss}"


def take_profit_id(level: str) -> str:
    return f"tp-{level}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertEngine:
    """Watches prices against one trade plan; each level fires at most once.

    Exit levels (stop loss / take profit) are only armed once the entry
    range has been reached. Installing a new plan clears all fired levels
    and the alert log.
    """

    def __init__(self, signal: Optional[TradeSignal] = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._signal: Optional[TradeSignal] = None
        self._entry_hit = False
        self._fired: Set[str] = set()
        self._log: List[PriceAlert] = []
        if signal is not None:
            self.set_signal(signal)

    @property
    def signal(self) -> Optional[TradeSignal]:
        return self._signal

    @property
    def entry_hit(self) -> bool:
        return self._entry_hit

    @property
    def fired_levels(self) -> frozenset:
        return frozenset(self._fired)

    @property
    def alerts(self) -> Tuple[PriceAlert, ...]:
        return tuple(self._log)

    def state(self) -> AlertState:
        return AlertState(entry_hit=self._entry_hit, fired_levels=frozenset(self._fired))

    def set_signal(self, signal: Optional[TradeSignal]) -> None:
        self._signal = signal
        self._entry_hit = False
        self._fired = set()
        self._log = []
        if signal is not None:
            log.info(
                "plan_installed entry=%s sl=%s tps=%s",
                signal.entry_price_range,
                signal.stop_loss,
                list(signal.take_profit_levels),
            )

    def clear(self) -> None:
        self.set_signal(None)

    def _fire(self, level_id: str, level: str, typ: AlertType, price: float) -> PriceAlert:
        self._fired.add(level_id)
        alert = PriceAlert(level=level, type=typ, price=price, timestamp=self._clock())
        self._log.append(alert)
        log.info("alert_fired type=%s level=%s price=%s", typ.value, level, price)
        return alert

    def on_price(self, last_price: float) -> List[PriceAlert]:
        sig = self._signal
        if sig is None or last_price is None:
            return []
        fired: List[PriceAlert] = []

        if not self._entry_hit:
            rng = parse_price_range(sig.entry_price_range)
            if rng is not None:
                low, high = rng
                if low <= last_price <= high and ENTRY_LEVEL_ID not in self._fired:
                    self._entry_hit = True
                    fired.append(self._fire(ENTRY_LEVEL_ID, sig.entry_price_range, AlertType.ENTRY, last_price))

        if not self._entry_hit:
            return fired

        sl = parse_price(sig.stop_loss)
        sl_id = stop_loss_id(sig.stop_loss)
        if sl is not None and last_price <= sl and sl_id not in self._fired:
            fired.append(self._fire(sl_id, sig.stop_loss, AlertType.STOP_LOSS, last_price))

        for level in sig.take_profit_levels:
            tp = parse_price(level)
            tp_id = take_profit_id(level)
            if tp is None or tp_id in self._fired:
                continue
            if last_price >= tp:
                fired.append(self._fire(tp_id, level, AlertType.TAKE_PROFIT, last_price))

        return fired
