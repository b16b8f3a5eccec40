import logging

import pytest

from chart_sentinel.config import build_config, load_config
from chart_sentinel.main import main


def test_defaults():
    cfg = build_config({})
    assert cfg.provider.symbol == "BTCUSDT"
    assert cfg.provider.interval == "1d"
    assert cfg.provider.history_limit == 200
    assert cfg.analysis.window == 100
    assert cfg.analysis.refresh_interval_s == 60.0
    assert cfg.analysis.watchdog_s == 30.0
    assert cfg.indicators.periods()["RSI"] == 14
    assert cfg.telegram.chat_ids == []
    assert cfg.webhook.headers == {}


def test_load_yaml_and_normalize(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "provider:\n"
        "  symbol: ethusdt\n"
        "  interval: 4H\n"
        "indicators:\n"
        "  active: [rsi, ema]\n"
        "analysis:\n"
        "  trading_style: Day Trading\n"
        "  risk_tolerance: Aggressive\n"
        "  auto_refresh: true\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.provider.symbol == "ETHUSDT"
    assert cfg.provider.interval == "4h"
    assert cfg.indicators.active == ["RSI", "EMA"]
    assert cfg.analysis.auto_refresh is True


@pytest.mark.parametrize(
    "raw",
    [
        {"provider": {"interval": "15m"}},
        {"provider": {"market": "margin"}},
        {"indicators": {"active": ["MACD"]}},
        {"analysis": {"risk_tolerance": "YOLO"}},
        {"analysis": {"window": 0}},
    ],
)
def test_invalid_values_raise(raw):
    with pytest.raises(ValueError):
        build_config(raw)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "tok")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "1, 2,,3")
    monkeypatch.setenv("ANALYSIS_URL", "http://localhost:9000/analyze")
    monkeypatch.setenv("WEBHOOK_SECRET", "s3")
    cfg = build_config({"telegram": {"token": "yaml"}})
    assert cfg.telegram.token == "tok"
    assert cfg.telegram.chat_ids == ["1", "2", "3"]
    assert cfg.analysis.url == "http://localhost:9000/analyze"
    assert cfg.webhook.secret == "s3"


def test_cli_logs_bad_config_and_exits_1(tmp_path, caplog):
    path = tmp_path / "cfg.yaml"
    path.write_text("provider:\n  interval: 5m\n", encoding="utf-8")
    with caplog.at_level(logging.ERROR, logger="main"):
        assert main(["--config", str(path)]) == 1
        assert main(["--config", str(tmp_path / "missing.yaml")]) == 1
    assert caplog.text.count("fatal") == 2
    assert "Invalid config" in caplog.text
