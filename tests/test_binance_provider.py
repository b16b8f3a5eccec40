import asyncio
import json

import aiohttp

from chart_sentinel.models import Candle
from chart_sentinel.providers import binance
from chart_sentinel.providers.binance import BinanceProvider


def _frame(t_ms: int, close: str) -> str:
    k = {"t": t_ms, "o": "100", "h": "110", "l": "90", "c": close, "x": False}
    return json.dumps({"e": "kline", "E": 1, "s": "BTCUSDT", "k": k})


def _row(t_ms: int, close: str):
    return [t_ms, "100", "110", "90", close, "12.5", t_ms + 3_599_999]


class _FakeWS:
    def __init__(self, frames, hold: bool):
        self.frames = frames
        self.hold = hold

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for f in self.frames:
            yield f
        if self.hold:
            await asyncio.Event().wait()


def _patch_ws(monkeypatch, frames, *, hold=False, error=None):
    urls = []

    def connect(url, **kwargs):
        urls.append(url)
        if error is not None:
            raise error
        return _FakeWS(frames, hold)

    monkeypatch.setattr(binance.websockets, "connect", connect)
    return urls


def _subscribe(provider):
    got, errors = [], []
    sub = provider.subscribe("btcusdt", "1h", got.append, errors.append)
    return sub, got, errors


def test_stream_skips_bad_frame_and_keeps_delivering(monkeypatch):
    frames = [_frame(1_700_000_000_000, "101"), "garbage", json.dumps({"result": None, "id": 1}), _frame(1_700_000_000_000, "102")]
    urls = _patch_ws(monkeypatch, frames, hold=True)

    async def scenario():
        sub, got, errors = _subscribe(BinanceProvider())
        await asyncio.sleep(0.01)
        delivered = list(got)
        sub.close()
        await asyncio.sleep(0)
        return sub, delivered, errors

    sub, delivered, errors = asyncio.run(scenario())
    assert urls == ["wss://stream.binance.com:9443/ws/btcusdt@kline_1h"]
    assert [c.close for c in delivered] == [101.0, 102.0]
    assert delivered[0] == Candle(time=1_700_000_000, open=100.0, high=110.0, low=90.0, close=101.0)
    assert errors == []
    assert sub.closed is True


def test_server_close_reports_error_once(monkeypatch):
    _patch_ws(monkeypatch, [_frame(1_700_000_000_000, "101")])

    async def scenario():
        sub, got, errors = _subscribe(BinanceProvider())
        await asyncio.sleep(0.01)
        sub.fail(RuntimeError("late"))
        sub.deliver(Candle(time=1, open=1, high=1, low=1, close=1))
        return sub, got, errors

    sub, got, errors = asyncio.run(scenario())
    assert len(got) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ConnectionError)
    assert sub.closed is True


def test_connect_failure_is_reported(monkeypatch):
    _patch_ws(monkeypatch, [], error=OSError("dns"))

    async def scenario():
        sub, got, errors = _subscribe(BinanceProvider(market="futures"))
        await asyncio.sleep(0.01)
        return got, errors

    got, errors = asyncio.run(scenario())
    assert got == []
    assert [str(e) for e in errors] == ["dns"]


class _Resp:
    def __init__(self, status, body, headers=None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return json.dumps(self.body)

    async def json(self, content_type=None):
        return self.body


class _FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None):
        self.calls.append((url, params))
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(r, BaseException):
            raise r
        return r


def _provider(monkeypatch, responses, **kw):
    provider = BinanceProvider(rest_backoff_s=0, **kw)
    session = _FakeSession(responses)

    async def get_session():
        return session

    monkeypatch.setattr(provider, "_get_session", get_session)
    return provider, session


def test_fetch_returns_empty_after_client_errors(monkeypatch):
    provider, session = _provider(monkeypatch, [aiohttp.ClientError("reset")], rest_max_retries=3)
    assert asyncio.run(provider.fetch_klines("BTCUSDT", "1h", 200)) == []
    assert len(session.calls) == 3


def test_fetch_retries_timeout_then_succeeds(monkeypatch):
    rows = [_row(1_700_003_600_000, "2"), _row(1_700_000_000_000, "1")]
    provider, session = _provider(monkeypatch, [asyncio.TimeoutError(), _Resp(200, rows)])
    out = asyncio.run(provider.fetch_klines("btcusdt", "1h", 200))
    assert [c.time for c in out] == [1_700_000_000, 1_700_003_600]
    assert len(session.calls) == 2
    url, params = session.calls[0]
    assert url == "https://api.binance.com/api/v3/klines"
    assert params == {"symbol": "BTCUSDT", "interval": "1h", "limit": 200}


def test_fetch_waits_out_rate_limit_and_trims(monkeypatch):
    rows = [_row(1_700_000_000_000 + i * 3_600_000, str(i)) for i in range(3)] + [["bad"]]
    provider, session = _provider(monkeypatch, [_Resp(429, {"msg": "slow down"}, {"Retry-After": "0"}), _Resp(200, rows)])
    out = asyncio.run(provider.fetch_klines("BTCUSDT", "1h", 2))
    assert [c.close for c in out] == [1.0, 2.0]
    assert len(session.calls) == 2


def test_fetch_bad_status_or_body_is_empty(monkeypatch):
    provider, session = _provider(monkeypatch, [_Resp(400, {"code": -1121, "msg": "Invalid symbol."})])
    assert asyncio.run(provider.fetch_klines("NOPE", "1h", 200)) == []
    assert len(session.calls) == 1

    provider, _ = _provider(monkeypatch, [_Resp(200, {"code": 0})])
    assert asyncio.run(provider.fetch_klines("BTCUSDT", "1h", 200)) == []
