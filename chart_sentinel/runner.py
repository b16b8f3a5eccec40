from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .analysis import HttpAnalysisClient
from .config import Config
from .formatters import format_alert, format_analysis, format_error
from .history import JsonlHistoryRecorder
from .models import AnalysisResult, PriceAlert
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .providers.binance import BinanceProvider
from .session import AnalysisSession, AnalysisTrigger

log = logging.getLogger("runner")


class AlertRunner:
    """Headless service: one session for the configured pair, alerts pushed out."""

    def __init__(self, cfg: Config, *, provider=None, analyzer=None):
        self.cfg = cfg
        self.provider = provider or BinanceProvider(
            market=cfg.provider.market,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
            rest_max_retries=cfg.provider.rest_max_retries,
        )
        self.analyzer = analyzer or HttpAnalysisClient(
            cfg.analysis.url,
            api_key=cfg.analysis.api_key,
            timeout_s=cfg.analysis.timeout_s,
        )
        self.history = JsonlHistoryRecorder(cfg.history.path) if cfg.history.enabled else None

        self.tg = TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )

        self.session = AnalysisSession(
            self.provider,
            self.analyzer,
            symbol=cfg.provider.symbol,
            interval=cfg.provider.interval,
            trading_style=cfg.analysis.trading_style,
            risk_tolerance=cfg.analysis.risk_tolerance,
            indicators=cfg.indicators.active,
            indicator_periods=cfg.indicators.periods(),
            history=self.history,
            history_limit=cfg.provider.history_limit,
            analysis_window=cfg.analysis.window,
            refresh_interval_s=cfg.analysis.refresh_interval_s,
            watchdog_s=cfg.analysis.watchdog_s,
            on_alert=self._on_alert,
            on_error=self._on_error,
            on_analysis=self._on_analysis,
        )
        self._pending: Set[asyncio.Task] = set()
        self._alert_queue: Optional[asyncio.Queue] = None
        self._alert_task: Optional[asyncio.Task] = None

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_alert(self, alert: PriceAlert) -> None:
        # one consumer keeps delivery in alert-log order
        if self._alert_queue is None:
            self._alert_queue = asyncio.Queue()
            self._alert_task = asyncio.get_running_loop().create_task(self._drain_alerts(self._alert_queue))
        self._alert_queue.put_nowait((alert, self.session.symbol, self.session.interval))

    async def _drain_alerts(self, queue: asyncio.Queue) -> None:
        while True:
            alert, symbol, interval = await queue.get()
            try:
                await self._deliver_alert(alert, symbol, interval)
            except Exception as e:
                log.warning("alert_delivery_failed symbol=%s level=%s err=%s", symbol, alert.level, e)
            finally:
                queue.task_done()

    async def flush_alerts(self) -> None:
        """Wait for queued alerts to be delivered, then stop the consumer."""
        if self._alert_queue is not None:
            await self._alert_queue.join()
        if self._alert_task is not None:
            self._alert_task.cancel()
            try:
                await self._alert_task
            except asyncio.CancelledError:
                pass
        self._alert_queue = None
        self._alert_task = None

    def _on_error(self, message: str) -> None:
        log.warning("user_error symbol=%s msg=%s", self.session.symbol, message)
        if self.tg.enabled():
            text = format_error(message, self.session.symbol, self.cfg.alerts)
            self._spawn(self.tg.send(text, parse_mode=self.cfg.alerts.parse_mode))

    def _on_analysis(self, result: AnalysisResult) -> None:
        if self.cfg.alerts.send_analysis and self.tg.enabled():
            text = format_analysis(result, self.session.symbol, self.session.interval, self.cfg.alerts)
            self._spawn(self.tg.send(text, parse_mode=self.cfg.alerts.parse_mode))

    async def _deliver_alert(self, alert: PriceAlert, symbol: str, interval: str) -> None:
        if self.webhook.enabled:
            try:
                await self.webhook.send_alert(alert, symbol, interval)
            except Exception as e:
                log.warning("webhook_send_failed symbol=%s err=%s", symbol, e)
        if self.tg.enabled():
            text = format_alert(alert, symbol, interval, self.cfg.alerts)
            await self.tg.send(text, parse_mode=self.cfg.alerts.parse_mode)

    async def start(self) -> Optional[AnalysisResult]:
        ok = await self.session.start()
        if not ok:
            log.warning("feed_not_started symbol=%s err=%s", self.session.symbol, self.session.feed.last_error)
            return None
        result = await self.session.run_analysis(AnalysisTrigger.MANUAL)
        if self.cfg.analysis.auto_refresh:
            self.session.set_auto_refresh(True)
        if self.tg.enabled():
            await self.tg.send(f"✅ {self.cfg.app.name}: watching {self.session.symbol} {self.session.interval}.")
        return result

    async def run_forever(self) -> None:
        await self.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            self.session.close()
            await self.flush_alerts()
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
