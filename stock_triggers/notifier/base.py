from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from ..formatters import alert_body, alert_title
from ..models import Signal

log = logging.getLogger("notifier")


class Notifier(Protocol):
    async def notify(self, symbol: str, signal: Signal, price: float) -> None:
        ...


class LogNotifier:
    """Writes alerts to the log only; used when no delivery channel is configured."""

    async def notify(self, symbol: str, signal: Signal, price: float) -> None:
        log.info("alert %s | %s", alert_title(symbol, signal), alert_body(price))


class MultiNotifier:
    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers: List[Notifier] = list(notifiers)

    async def notify(self, symbol: str, signal: Signal, price: float) -> None:
        for n in self.notifiers:
            try:
                await n.notify(symbol, signal, price)
            except Exception as e:
                log.warning("notify_failed notifier=%s symbol=%s err=%s", type(n).__name__, symbol, e)
