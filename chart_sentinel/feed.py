from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from .candle_store import CandleStore
from .models import Candle

log = logging.getLogger("feed")


class FeedState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERROR = "error"  # transport failure; idle until the next start()


class Subscription(Protocol):
    def close(self) -> None: ...


class MarketDataProvider(Protocol):
    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> List[Candle]: ...

    def subscribe(
        self,
        symbol: str,
        interval: str,
        on_candle: Callable[[Candle], None],
        on_error: Callable[[BaseException], None],
    ) -> Subscription: ...


class FeedController:
    """One historical fetch plus one live subscription for a (symbol, interval).

    Every start()/stop() bumps a generation counter. Fetch results and
    stream callbacks carry the generation they were issued under and are
    dropped once it is no longer current, so a superseded start can never
    touch the store.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        store: CandleStore,
        *,
        history_limit: int = 200,
        on_update: Optional[Callable[[], Any]] = None,
        on_state: Optional[Callable[[FeedState], Any]] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.history_limit = int(history_limit)
        self._on_update = on_update
        self._on_state = on_state

        self.state = FeedState.IDLE
        self.symbol: Optional[str] = None
        self.interval: Optional[str] = None
        self.last_error: Optional[str] = None
        self._generation = 0
        self._sub: Optional[Subscription] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._sub

    def _set_state(self, state: FeedState) -> None:
        if state == self.state:
            return
        log.info("feed_state %s -> %s symbol=%s interval=%s gen=%d", self.state.value, state.value, self.symbol, self.interval, self._generation)
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    def _teardown(self) -> None:
        sub, self._sub = self._sub, None
        if sub is not None:
            sub.close()

    async def start(self, symbol: str, interval: str) -> bool:
        """Load history then stream. False when superseded or failed."""
        self._generation += 1
        gen = self._generation
        self._teardown()
        self.symbol = symbol.upper()
        self.interval = interval
        self.last_error = None
        self._set_state(FeedState.LOADING)
        log.info("feed_start symbol=%s interval=%s limit=%d gen=%d", self.symbol, interval, self.history_limit, gen)

        try:
            candles = await self.provider.fetch_klines(self.symbol, interval, self.history_limit)
        except Exception as e:
            if gen != self._generation:
                log.info("feed_fetch_failed_stale gen=%d current=%d err=%s", gen, self._generation, e)
                return False
            self.last_error = repr(e)
            log.warning("feed_fetch_failed symbol=%s interval=%s err=%s", self.symbol, interval, e)
            self._set_state(FeedState.ERROR)
            return False

        if gen != self._generation:
            log.info("feed_fetch_stale symbol=%s interval=%s gen=%d current=%d", symbol, interval, gen, self._generation)
            return False

        if candles:
            self.store.replace_all(candles)
            self._notify()
        else:
            log.warning("feed_history_empty symbol=%s interval=%s", self.symbol, interval)

        self._sub = self.provider.subscribe(
            self.symbol,
            interval,
            lambda c: self._handle_candle(gen, c),
            lambda err: self._handle_error(gen, err),
        )
        self._set_state(FeedState.STREAMING)
        return True

    def stop(self) -> None:
        self._generation += 1
        self._teardown()
        if self.state != FeedState.IDLE:
            self._set_state(FeedState.CLOSED)

    def _handle_candle(self, gen: int, candle: Candle) -> None:
        if gen != self._generation:
            return
        if self.store.upsert_last(candle):
            self._notify()

    def _handle_error(self, gen: int, err: BaseException) -> None:
        if gen != self._generation:
            return
        self.last_error = repr(err)
        log.warning("feed_transport_error symbol=%s interval=%s err=%s", self.symbol, self.interval, err)
        self._teardown()
        self._set_state(FeedState.ERROR)

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update()
