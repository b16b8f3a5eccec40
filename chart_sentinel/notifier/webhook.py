from __future__ import annotations

import logging
from typing import Any, Dict

import aiohttp

from ..models import PriceAlert

log = logging.getLogger("webhook")


def alert_payload(alert: PriceAlert, symbol: str, interval: str, secret: str = "") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "symbol": symbol,
        "interval": interval,
        "type": alert.type.value,
        "level": alert.level,
        "price": alert.price,
        "timestamp": alert.timestamp.isoformat(),
    }
    if secret:
        payload["secret"] = secret
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_alert(self, alert: PriceAlert, symbol: str, interval: str) -> None:
        if not self.enabled or not self.url:
            return

        payload = alert_payload(alert, symbol, interval, self.secret)
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
        except Exception as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
