from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .analysis import RISK_TOLERANCES, TRADING_STYLES
from .indicators import DEFAULT_PERIODS
from .models import Interval


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Chart Sentinel"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "binance"
    market: str = "spot"  # spot|futures
    symbol: str = "BTCUSDT"
    interval: str = "1d"
    history_limit: int = 200
    rest_timeout_s: int = 20
    rest_max_retries: int = 4
    ws_heartbeat_s: int = 20


@dataclass
class IndicatorsConfig:
    active: List[str] = field(default_factory=list)
    rsi_period: int = 14
    sma_period: int = 20
    ema_period: int = 20

    def periods(self) -> Dict[str, int]:
        return {"RSI": self.rsi_period, "SMA": self.sma_period, "EMA": self.ema_period}


@dataclass
class AnalysisConfig:
    url: str = ""
    api_key: str = ""
    timeout_s: int = 60
    trading_style: str = "Swing Trading"
    risk_tolerance: str = "Moderate"
    window: int = 100
    auto_refresh: bool = False
    refresh_interval_s: float = 60.0
    watchdog_s: float = 30.0


@dataclass
class HistoryConfig:
    enabled: bool = True
    path: str = "data/analysis_history.jsonl"


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    footer: str = ""
    send_analysis: bool = True


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    indicators: IndicatorsConfig
    analysis: AnalysisConfig
    history: HistoryConfig
    telegram: TelegramConfig
    webhook: WebhookConfig
    alerts: AlertsConfig


def _validate(cfg: Config) -> None:
    errs: List[str] = []
    try:
        cfg.provider.interval = Interval.parse(cfg.provider.interval).value
    except ValueError as e:
        errs.append(str(e))
    if cfg.provider.type != "binance":
        errs.append(f"provider.type must be binance, got {cfg.provider.type}")
    if cfg.provider.market not in ("spot", "futures"):
        errs.append(f"provider.market must be spot or futures, got {cfg.provider.market}")
    if int(cfg.provider.history_limit) <= 0:
        errs.append("provider.history_limit must be positive")
    cfg.provider.symbol = (cfg.provider.symbol or "").strip().upper()
    if not cfg.provider.symbol:
        errs.append("provider.symbol is required")

    cfg.indicators.active = [str(k).strip().upper() for k in (cfg.indicators.active or [])]
    for kind in cfg.indicators.active:
        if kind not in DEFAULT_PERIODS:
            errs.append(f"indicators.active: unsupported indicator {kind}")

    if cfg.analysis.trading_style and cfg.analysis.trading_style not in TRADING_STYLES:
        errs.append(f"analysis.trading_style must be one of {list(TRADING_STYLES)}")
    if cfg.analysis.risk_tolerance and cfg.analysis.risk_tolerance not in RISK_TOLERANCES:
        errs.append(f"analysis.risk_tolerance must be one of {list(RISK_TOLERANCES)}")
    if int(cfg.analysis.window) <= 0:
        errs.append("analysis.window must be positive")
    if float(cfg.analysis.refresh_interval_s) <= 0 or float(cfg.analysis.watchdog_s) <= 0:
        errs.append("analysis.refresh_interval_s and analysis.watchdog_s must be positive")

    if errs:
        raise ValueError("Invalid config: " + "; ".join(errs))


def build_config(raw: Optional[Dict[str, Any]] = None) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        indicators=IndicatorsConfig(**raw.get("indicators", {})),
        analysis=AnalysisConfig(**raw.get("analysis", {})),
        history=HistoryConfig(**raw.get("history", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    cfg.analysis.url = _env_override(cfg.analysis.url, "ANALYSIS_URL")
    cfg.analysis.api_key = _env_override(cfg.analysis.api_key, "ANALYSIS_API_KEY")

    _validate(cfg)
    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return build_config(raw)
