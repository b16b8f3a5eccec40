import asyncio

from chart_sentinel.config import build_config
from chart_sentinel.models import AlertType
from chart_sentinel.runner import AlertRunner

from fakes import FakeAnalyzer, FakeProvider, candle, candles_from_closes, result


def test_runner_starts_session_and_forwards_alerts(tmp_path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_IDS", raising=False)
    cfg = build_config(
        {
            "provider": {"symbol": "BTCUSDT", "interval": "1h"},
            "indicators": {"active": ["RSI"]},
            "analysis": {"auto_refresh": True, "refresh_interval_s": 30},
            "history": {"path": str(tmp_path / "h.jsonl")},
            "telegram": {"enabled": False},
        }
    )
    hist = candles_from_closes([130.0 - i for i in range(20)])
    provider = FakeProvider({("BTCUSDT", "1h"): hist})

    async def scenario():
        runner = AlertRunner(cfg, provider=provider, analyzer=FakeAnalyzer(result()))
        delivered = []

        async def capture(alert, symbol, interval):
            delivered.append((alert.type, symbol, interval))

        runner._deliver_alert = capture
        res = await runner.start()
        provider.active()[0].push(candle(hist[-1].time + 3600, 105))
        await asyncio.sleep(0)
        refresh = runner.session.refresh_scheduled
        runner.session.close()
        return runner, res, delivered, refresh

    runner, res, delivered, refresh = asyncio.run(scenario())
    assert res is not None
    assert refresh is True
    assert delivered == [(AlertType.ENTRY, "BTCUSDT", "1h")]
    assert len(runner.history.load()) == 1
    assert "RSI" in runner.session.indicators


def test_runner_delivers_alerts_in_log_order(tmp_path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_IDS", raising=False)
    cfg = build_config(
        {
            "provider": {"symbol": "BTCUSDT", "interval": "1h"},
            "history": {"enabled": False},
            "telegram": {"enabled": False},
        }
    )
    hist = candles_from_closes([130.0 - i for i in range(20)])
    provider = FakeProvider({("BTCUSDT", "1h"): hist})

    async def scenario():
        runner = AlertRunner(cfg, provider=provider, analyzer=FakeAnalyzer(result()))
        delivered = []

        async def slow_first(alert, symbol, interval):
            # the entry notification is the slowest to send
            await asyncio.sleep(0.03 if alert.type == AlertType.ENTRY else 0)
            delivered.append(alert.type)

        runner._deliver_alert = slow_first
        await runner.start()
        t = hist[-1].time + 3600
        sub = provider.active()[0]
        sub.push(candle(t, 105))
        sub.push(candle(t, 89))
        sub.push(candle(t + 3600, 135))
        runner.session.close()
        await runner.flush_alerts()
        return runner, delivered

    runner, delivered = asyncio.run(scenario())
    assert delivered == [AlertType.ENTRY, AlertType.STOP_LOSS, AlertType.TAKE_PROFIT, AlertType.TAKE_PROFIT]
    assert [a.type for a in runner.session.alerts] == delivered
