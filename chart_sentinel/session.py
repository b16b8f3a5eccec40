from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import indicators as ind
from .alerts import AlertEngine
from .analysis import AnalysisRequest, Analyzer
from .candle_store import CandleStore
from .feed import FeedController, MarketDataProvider
from .history import HistoryRecorder
from .models import (
    AnalysisRecord,
    AnalysisResult,
    IndicatorSeries,
    Interval,
    PriceAlert,
    SessionSnapshot,
    TradeSignal,
)
from .scheduler import ScheduledTask

log = logging.getLogger("session")


class AnalysisTrigger(str, Enum):
    MANUAL = "manual"
    PERIODIC = "periodic"


class AnalysisSession:
    """Binds one (symbol, interval) to a feed, the indicators and the alert engine.

    All mutation happens on the event loop; the presentation layer reads
    through snapshot().
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        analyzer: Analyzer,
        *,
        symbol: str = "BTCUSDT",
        interval: str = "1d",
        trading_style: Optional[str] = None,
        risk_tolerance: Optional[str] = None,
        indicators: Iterable[str] = (),
        indicator_periods: Optional[Dict[str, int]] = None,
        history: Optional[HistoryRecorder] = None,
        history_limit: int = 200,
        analysis_window: int = 100,
        refresh_interval_s: float = 60.0,
        watchdog_s: float = 30.0,
        on_alert: Optional[Callable[[PriceAlert], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_analysis: Optional[Callable[[AnalysisResult], Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.symbol = symbol.upper()
        self.interval = Interval.parse(interval).value
        self.trading_style = trading_style
        self.risk_tolerance = risk_tolerance
        self.analyzer = analyzer
        self.history = history
        self.analysis_window = int(analysis_window)
        self.refresh_interval_s = float(refresh_interval_s)
        self.watchdog_s = float(watchdog_s)
        self._on_alert = on_alert
        self._on_error = on_error
        self._on_analysis = on_analysis

        self.store = CandleStore()
        self.alert_engine = AlertEngine(clock=clock) if clock is not None else AlertEngine()
        self.feed = FeedController(provider, self.store, history_limit=history_limit, on_update=self._on_candles)

        self._indicator_periods: Dict[str, int] = {k.upper(): int(v) for k, v in (indicator_periods or {}).items()}
        self._active_indicators: List[str] = []
        self.indicators: Dict[str, IndicatorSeries] = {}

        self.analysis: Optional[AnalysisResult] = None
        self.is_loading = False
        self.auto_refresh = False
        self.last_error: Optional[str] = None

        self._generation = 0  # bumped when symbol/interval change
        self._request_seq = 0
        self._applied_seq = 0
        self._loading_seq = 0
        self._refresh = ScheduledTask("refresh")
        self._watchdog = ScheduledTask("watchdog")

        self.set_indicators(indicators)

    # ------------------------------------------------------------------ state

    @property
    def trade_signal(self) -> Optional[TradeSignal]:
        return self.alert_engine.signal

    @property
    def latest_price(self) -> Optional[float]:
        last = self.store.last
        return last.close if last is not None else None

    @property
    def alerts(self):
        return self.alert_engine.alerts

    @property
    def active_indicators(self) -> List[str]:
        return list(self._active_indicators)

    @property
    def refresh_scheduled(self) -> bool:
        return self._refresh.active

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            symbol=self.symbol,
            interval=self.interval,
            candles=self.store.snapshot(),
            indicators=dict(self.indicators),
            latest_price=self.latest_price,
            analysis=self.analysis,
            alerts=self.alert_engine.alerts,
            alert_state=self.alert_engine.state(),
            feed_state=self.feed.state.value,
            is_loading=self.is_loading,
            auto_refresh=self.auto_refresh,
            last_error=self.last_error,
            active_indicators=list(self._active_indicators),
        )

    # -------------------------------------------------------------- lifecycle

    async def start(self) -> bool:
        return await self.feed.start(self.symbol, self.interval)

    def close(self) -> None:
        self.feed.stop()
        self._refresh.cancel()
        self._watchdog.cancel()
        self.is_loading = False
        self._loading_seq = 0

    async def change_symbol_or_interval(self, symbol: Optional[str] = None, interval: Optional[str] = None) -> bool:
        new_symbol = (symbol or self.symbol).upper()
        new_interval = Interval.parse(interval).value if interval else self.interval
        log.info("session_change %s/%s -> %s/%s", self.symbol, self.interval, new_symbol, new_interval)

        self.feed.stop()
        self._generation += 1
        self.symbol = new_symbol
        self.interval = new_interval

        self.analysis = None
        self.alert_engine.clear()
        self.auto_refresh = False
        self._refresh.cancel()
        self._watchdog.cancel()
        self.is_loading = False
        self._loading_seq = 0
        self.last_error = None

        self.store.clear()
        self._recompute_indicators()
        return await self.feed.start(self.symbol, self.interval)

    def set_trading_preferences(self, trading_style: Optional[str] = None, risk_tolerance: Optional[str] = None) -> None:
        if trading_style is not None:
            self.trading_style = trading_style
        if risk_tolerance is not None:
            self.risk_tolerance = risk_tolerance

    # ------------------------------------------------------------- indicators

    def set_indicators(self, kinds: Iterable[str]) -> None:
        active: List[str] = []
        for k in kinds:
            kind = str(k).strip().upper()
            if kind not in ind.DEFAULT_PERIODS:
                raise ValueError(f"Unsupported indicator: {k}")
            if kind not in active:
                active.append(kind)
        self._active_indicators = active
        self._recompute_indicators()

    def toggle_indicator(self, kind: str) -> bool:
        kind = kind.strip().upper()
        if kind in self._active_indicators:
            self.set_indicators([k for k in self._active_indicators if k != kind])
            return False
        self.set_indicators(self._active_indicators + [kind])
        return True

    def _recompute_indicators(self) -> None:
        candles = self.store.snapshot()
        self.indicators = {
            kind: ind.compute(kind, candles, self._indicator_periods.get(kind))
            for kind in self._active_indicators
        }

    # ------------------------------------------------------------ price feed

    def _on_candles(self) -> None:
        self._recompute_indicators()
        self._evaluate_alerts()

    def _evaluate_alerts(self) -> None:
        price = self.latest_price
        if price is None or self.alert_engine.signal is None:
            return
        for alert in self.alert_engine.on_price(price):
            if self._on_alert is None:
                continue
            try:
                self._on_alert(alert)
            except Exception as e:
                log.exception("alert_callback_failed level=%s err=%s", alert.level, e)

    # -------------------------------------------------------------- analysis

    def set_auto_refresh(self, enabled: bool) -> None:
        self.auto_refresh = bool(enabled)
        self._reschedule_refresh()

    def _reschedule_refresh(self) -> None:
        should_run = self.auto_refresh and self.trade_signal is not None
        if not should_run:
            self._refresh.cancel()
        elif not self._refresh.active:
            self._refresh.schedule(self.refresh_interval_s, self._periodic_tick, repeat=True)

    async def _periodic_tick(self) -> None:
        await self.run_analysis(AnalysisTrigger.PERIODIC)

    def _watchdog_expired(self) -> None:
        if self.is_loading:
            log.warning("analysis_watchdog_expired after=%.0fs symbol=%s", self.watchdog_s, self.symbol)
            self.is_loading = False
            self._loading_seq = 0

    def _report_error(self, message: str) -> None:
        self.last_error = message
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception as e:
            log.exception("error_callback_failed err=%s", e)

    async def run_analysis(self, trigger: AnalysisTrigger = AnalysisTrigger.MANUAL) -> Optional[AnalysisResult]:
        manual = trigger == AnalysisTrigger.MANUAL
        if manual and self.is_loading:
            log.info("analysis_skipped reason=in_flight symbol=%s", self.symbol)
            return None
        if len(self.store) == 0:
            if manual:
                self._report_error("Chart data is not loaded yet. Please wait.")
            return None

        gen = self._generation
        self._request_seq += 1
        seq = self._request_seq
        symbol = self.symbol
        if manual:
            self.is_loading = True
            self._loading_seq = seq
            self.last_error = None
            self._watchdog.schedule(self.watchdog_s, self._watchdog_expired)

        request = AnalysisRequest.build(
            self.store.tail(self.analysis_window),
            symbol,
            trading_style=self.trading_style,
            risk_tolerance=self.risk_tolerance,
        )
        log.info("analysis_start trigger=%s symbol=%s interval=%s seq=%d", trigger.value, symbol, self.interval, seq)

        try:
            try:
                result = await self.analyzer.analyze(request)
            except Exception as e:
                log.warning("analysis_failed trigger=%s symbol=%s err=%s", trigger.value, symbol, e)
                if gen != self._generation:
                    return None
                if manual:
                    self._report_error("Could not analyze the chart data. Please try again.")
                else:
                    self.set_auto_refresh(False)
                return None

            if gen != self._generation:
                log.info("analysis_stale symbol=%s seq=%d", symbol, seq)
                return None
            if seq < self._applied_seq:
                log.info("analysis_superseded symbol=%s seq=%d applied=%d", symbol, seq, self._applied_seq)
                return None
            self._applied_seq = seq

            previous = self.trade_signal
            self.analysis = result
            if manual or result.trade_signal != previous:
                self.alert_engine.set_signal(result.trade_signal)
            if manual:
                # a fresh plan restarts the refresh period
                self._refresh.cancel()
            self._reschedule_refresh()
            self._evaluate_alerts()

            if self._on_analysis is not None:
                try:
                    self._on_analysis(result)
                except Exception as e:
                    log.exception("analysis_callback_failed err=%s", e)

            if manual and self.history is not None:
                await self._record(result, symbol)
            return result
        finally:
            if manual and self._loading_seq == seq:
                self.is_loading = False
                self._loading_seq = 0
                self._watchdog.cancel()

    async def _record(self, result: AnalysisResult, symbol: str) -> None:
        record = AnalysisRecord(
            trading_pair=symbol,
            interval=self.interval,
            analysis_summary=result.analysis_summary,
            trade_signal=result.trade_signal,
            risk_level=result.risk_level,
            confidence_level=result.confidence_level,
            trading_style=self.trading_style,
            risk_tolerance=self.risk_tolerance,
        )
        try:
            await self.history.record_analysis(record)
        except Exception as e:
            log.warning("history_record_failed symbol=%s err=%s", symbol, e)
