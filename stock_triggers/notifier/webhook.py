from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import aiohttp

from ..models import Signal

log = logging.getLogger("webhook")


def build_payload(symbol: str, signal: Signal, price: float, *, secret: str = "", ts: Optional[int] = None) -> Dict[str, Any]:
    return {
        "secret": secret,
        "symbol": symbol,
        "signal": signal.value,
        "price": round(float(price), 8),
        "ts": int(time.time()) if ts is None else int(ts),
    }


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def notify(self, symbol: str, signal: Signal, price: float) -> None:
        if not self.enabled or not self.url:
            return

        payload = build_payload(symbol, signal, price, secret=self.secret)
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers=self.headers) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
        except Exception as e:
            # Log but do not crash
            log.warning("webhook_post_failed symbol=%s err=%s", symbol, e)
