from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from .models import Candle

log = logging.getLogger("candles")


class CandleStore:
    """Time-ascending OHLC bars; only the last bar may still change."""

    def __init__(self) -> None:
        self._candles: List[Candle] = []
        self.version: int = 0  # bumped on every mutation

    def __len__(self) -> int:
        return len(self._candles)

    def replace_all(self, candles: Iterable[Candle]) -> None:
        ordered: List[Candle] = []
        for c in sorted(candles, key=lambda x: x.time):
            if ordered and c.time == ordered[-1].time:
                # keep the later copy of a duplicated bar
                ordered[-1] = c
                continue
            ordered.append(c)
        self._candles = ordered
        self.version += 1

    def clear(self) -> None:
        self._candles = []
        self.version += 1

    def upsert_last(self, candle: Candle) -> bool:
        """Returns False when the candle was discarded as stale/out-of-order."""
        if not self._candles or candle.time > self._candles[-1].time:
            self._candles.append(candle)
        elif candle.time == self._candles[-1].time:
            self._candles[-1] = candle
        else:
            log.debug("stale_candle_dropped time=%s last=%s", candle.time, self._candles[-1].time)
            return False
        self.version += 1
        return True

    @property
    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def snapshot(self) -> Tuple[Candle, ...]:
        return tuple(self._candles)

    def tail(self, n: int) -> List[Candle]:
        if n <= 0:
            return []
        return list(self._candles[-n:])

    def closes(self) -> List[float]:
        return [c.close for c in self._candles]
