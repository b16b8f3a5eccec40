from datetime import datetime, timezone
from types import SimpleNamespace

from chart_sentinel.formatters import ALERT_PRESENTATION, alert_title, format_alert, format_analysis, format_error
from chart_sentinel.models import AlertType, PriceAlert
from chart_sentinel.notifier.webhook import alert_payload

from fakes import result

TS = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def test_every_alert_type_has_presentation():
    assert set(ALERT_PRESENTATION) == set(AlertType)
    assert alert_title(AlertType.STOP_LOSS) == "Stop Loss Hit"


def test_format_alert_html():
    alert = PriceAlert(level="<120>", type=AlertType.TAKE_PROFIT, price=121.456, timestamp=TS)
    text = format_alert(alert, "BTCUSDT", "1h", SimpleNamespace(parse_mode="HTML", footer="nfa"))
    assert "<b>Take Profit Hit</b>" in text
    assert "Level: &lt;120&gt;" in text
    assert "Price reached 121.46 at 2024-03-01 12:30 UTC" in text
    assert text.endswith("nfa")


def test_format_alert_markdown_escapes():
    alert = PriceAlert(level="$90.50", type=AlertType.STOP_LOSS, price=90.0, timestamp=TS)
    text = format_alert(alert, "BTCUSDT", "1h", SimpleNamespace(parse_mode="MarkdownV2", footer=""))
    assert "*Stop Loss Hit*" in text
    assert "$90\\.50" in text
    assert "\\|" in text


def test_format_analysis_and_error_default_to_html():
    text = format_analysis(result(summary="Bullish & strong"), "ETHUSDT", "4h")
    assert "<b>AI ANALYSIS ETHUSDT 4h</b>" in text
    assert "Take Profit: 120, 130" in text
    assert "Risk: Medium | Confidence: High" in text
    assert "Bullish &amp; strong" in text
    assert "Analysis Failed" in format_error("boom", "ETHUSDT")


def test_webhook_payload():
    alert = PriceAlert(level="100-110", type=AlertType.ENTRY, price=105.0, timestamp=TS)
    payload = alert_payload(alert, "BTCUSDT", "1h", secret="s")
    assert payload == {
        "symbol": "BTCUSDT",
        "interval": "1h",
        "type": "entry",
        "level": "100-110",
        "price": 105.0,
        "timestamp": "2024-03-01T12:30:00+00:00",
        "secret": "s",
    }
    assert "secret" not in alert_payload(alert, "BTCUSDT", "1h")
