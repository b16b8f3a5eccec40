from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import websockets

from ..models import Candle

log = logging.getLogger("binance")

CandleCallback = Callable[[Candle], None]
ErrorCallback = Callable[[BaseException], None]


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _klines_path(market: str) -> str:
    return "/fapi/v1/klines" if market == "futures" else "/api/v3/klines"


def _ws_url(market: str) -> str:
    return "wss://fstream.binance.com/ws" if market == "futures" else "wss://stream.binance.com:9443/ws"


def _stream_name(symbol: str, interval: str) -> str:
    return f"{symbol.lower()}@kline_{interval}"


def candle_from_rest_row(row: List[Any]) -> Candle:
    # [0]=open time ms, [1..4]=o/h/l/c
    return Candle(
        time=int(row[0]) // 1000,
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
    )


def parse_kline_message(msg: Any) -> Optional[Candle]:
    """Candle from a raw kline frame; None for acks / non-kline frames.

    Raises ValueError for frames that look like klines but are malformed.
    """
    try:
        j = json.loads(msg) if isinstance(msg, (str, bytes, bytearray)) else msg
    except ValueError as e:
        raise ValueError(f"invalid json: {e}") from e
    if not isinstance(j, dict):
        raise ValueError("frame is not an object")
    if "result" in j and "id" in j:
        return None  # subscribe ack

    data = j.get("data") or j
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None

    k = data.get("k")
    if not isinstance(k, dict):
        raise ValueError("kline payload missing")
    try:
        return Candle(
            time=int(k["t"]) // 1000,
            open=float(k["o"]),
            high=float(k["h"]),
            low=float(k["l"]),
            close=float(k["c"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"bad kline fields: {e}") from e


class KlineSubscription:
    """Handle for one live kline stream. close() is idempotent."""

    def __init__(self, symbol: str, interval: str, on_candle: CandleCallback, on_error: ErrorCallback) -> None:
        self.symbol = symbol
        self.interval = interval
        self._on_candle = on_candle
        self._on_error = on_error
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        log.info("ws_closed symbol=%s interval=%s", self.symbol, self.interval)

    def deliver(self, candle: Candle) -> None:
        if not self._closed:
            self._on_candle(candle)

    def fail(self, err: BaseException) -> None:
        if not self._closed:
            self._closed = True
            self._on_error(err)


class BinanceProvider:
    def __init__(
        self,
        market: str = "spot",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 20,
        rest_conn_limit_per_host: int = 10,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s

        # REST robustness
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Most recent `limit` candles, time-ascending. [] on transport failure."""
        url = _rest_base(self.market) + _klines_path(self.market)
        params = {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)}

        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        data: Optional[List[Any]] = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in (418, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s symbol=%s interval=%s sleep=%.1fs body=%s",
                            resp.status,
                            symbol,
                            interval,
                            sleep_s,
                            txt[:200],
                        )
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        log.warning("rest_bad_status status=%s symbol=%s interval=%s body=%s", resp.status, symbol, interval, txt[:500])
                        return []

                    # Some proxies return a wrong content-type; be tolerant.
                    data = await resp.json(content_type=None)
                break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                if attempt >= int(self.rest_max_retries):
                    log.warning("rest_failed symbol=%s interval=%s attempts=%d err=%s", symbol, interval, attempt, e)
                    return []
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d symbol=%s interval=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    symbol,
                    interval,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if not isinstance(data, list):
            log.warning("rest_unexpected_body symbol=%s interval=%s type=%s", symbol, interval, type(data).__name__)
            return []

        out: List[Candle] = []
        for row in data:
            try:
                out.append(candle_from_rest_row(row))
            except (IndexError, TypeError, ValueError) as e:
                log.warning("rest_bad_row symbol=%s interval=%s err=%s", symbol, interval, e)
        out.sort(key=lambda c: c.time)
        return out[-int(limit):] if limit > 0 else []

    def subscribe(
        self,
        symbol: str,
        interval: str,
        on_candle: CandleCallback,
        on_error: ErrorCallback,
    ) -> KlineSubscription:
        """Open a live kline stream. Must be called from a running event loop."""
        sub = KlineSubscription(symbol.upper(), interval, on_candle, on_error)
        sub._task = asyncio.get_running_loop().create_task(self._stream(sub), name=f"ws:{_stream_name(symbol, interval)}")
        return sub

    async def _stream(self, sub: KlineSubscription) -> None:
        url = f"{_ws_url(self.market)}/{_stream_name(sub.symbol, sub.interval)}"
        try:
            async with websockets.connect(
                url,
                ping_interval=self.ws_heartbeat_s,
                ping_timeout=self.ws_heartbeat_s,
                close_timeout=5,
                max_queue=1000,
            ) as ws:
                log.info("ws_subscribed symbol=%s interval=%s market=%s", sub.symbol, sub.interval, self.market)
                async for msg in ws:
                    if sub.closed:
                        return
                    try:
                        candle = parse_kline_message(msg)
                    except ValueError as e:
                        log.warning("ws_bad_frame symbol=%s interval=%s err=%s", sub.symbol, sub.interval, e)
                        continue
                    if candle is not None:
                        sub.deliver(candle)
            if not sub.closed:
                sub.fail(ConnectionError("websocket closed by server"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("ws_error symbol=%s interval=%s err=%s", sub.symbol, sub.interval, e)
            sub.fail(e)
