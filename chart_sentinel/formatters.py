from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .models import AlertType, AnalysisResult, PriceAlert


# (icon, title) per alert type; every AlertType must be present.
ALERT_PRESENTATION: Dict[AlertType, Tuple[str, str]] = {
    AlertType.ENTRY: ("↘️", "Entry Price Hit"),
    AlertType.TAKE_PROFIT: ("✅", "Take Profit Hit"),
    AlertType.STOP_LOSS: ("⚠️", "Stop Loss Hit"),
}

_missing = set(AlertType) - set(ALERT_PRESENTATION)
if _missing:
    raise RuntimeError(f"ALERT_PRESENTATION is missing {sorted(t.value for t in _missing)}")


def alert_icon(typ: AlertType) -> str:
    return ALERT_PRESENTATION[typ][0]


def alert_title(typ: AlertType) -> str:
    return ALERT_PRESENTATION[typ][1]


def _fmt_dt(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:.2f}"


def _parse_mode(cfg) -> str:
    return (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()


def _footer_lines(cfg, parse_mode: str):
    footer = (getattr(cfg, "footer", "") or "").strip()
    if not footer:
        return []
    return ["", _escape_text(footer, parse_mode)]


def format_alert(alert: PriceAlert, symbol: str, interval: str, cfg=None) -> str:
    """Telegram text for one price alert."""
    parse_mode = _parse_mode(cfg)
    icon, title = ALERT_PRESENTATION[alert.type]
    pipe = "\\|" if parse_mode == "MARKDOWNV2" else "|"
    lines = [
        f"{icon} {_bold(title, parse_mode)}",
        f"{_escape_text(symbol, parse_mode)}  {pipe}  {_bold(interval, parse_mode)}",
        _escape_text(f"Level: {alert.level}", parse_mode),
        _escape_text(f"Price reached {_fmt_price(alert.price)} at {_fmt_dt(alert.timestamp)}", parse_mode),
    ]
    lines.extend(_footer_lines(cfg, parse_mode))
    return "\n".join(lines)


def format_analysis(result: AnalysisResult, symbol: str, interval: str, cfg=None) -> str:
    parse_mode = _parse_mode(cfg)
    sig = result.trade_signal
    lines = [
        _bold(f"AI ANALYSIS {symbol} {interval}", parse_mode),
        _escape_text(f"Entry: {sig.entry_price_range}", parse_mode),
        _escape_text(f"Stop Loss: {sig.stop_loss}", parse_mode),
        _escape_text(f"Take Profit: {', '.join(sig.take_profit_levels) or '-'}", parse_mode),
    ]
    meta = []
    if result.risk_level:
        meta.append(f"Risk: {result.risk_level}")
    if result.confidence_level:
        meta.append(f"Confidence: {result.confidence_level}")
    if meta:
        lines.append(_escape_text(" | ".join(meta), parse_mode))
    if result.analysis_summary:
        lines.append("")
        lines.append(_escape_text(result.analysis_summary, parse_mode))
    lines.extend(_footer_lines(cfg, parse_mode))
    return "\n".join(lines)


def format_error(message: str, symbol: str, cfg=None) -> str:
    parse_mode = _parse_mode(cfg)
    return f"{_bold('Analysis Failed', parse_mode)}\n{_escape_text(f'{symbol}: {message}', parse_mode)}"
