from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, List, Optional, Protocol

from .models import DailyClose

log = logging.getLogger("repository")

DAY_SECONDS = 86_400

_FALLBACK_CLOSES = (21500.0, 21600.0, 21550.0, 21700.0, 21800.0, 22200.0)


class CloseProvider(Protocol):
    async def fetch_daily_closes(self, symbol: str) -> List[DailyClose]:
        ...


def fallback_series(now_ts: Optional[int] = None) -> List[DailyClose]:
    """Fixed six-day series ending at ``now_ts``, one day apart."""
    base = int(time.time()) if now_ts is None else int(now_ts)
    n = len(_FALLBACK_CLOSES)
    return [
        DailyClose(timestamp=base - (n - 1 - i) * DAY_SECONDS, close=c)
        for i, c in enumerate(_FALLBACK_CLOSES)
    ]


class StockRepository:
    def __init__(
        self,
        provider: CloseProvider,
        *,
        use_fallback: bool = True,
        now_ts: Callable[[], int] = lambda: int(time.time()),
    ):
        self.provider = provider
        self.use_fallback = use_fallback
        self._now_ts = now_ts

    async def get_last_working_days(self, symbol: str, limit: int = 6) -> List[DailyClose]:
        try:
            rows = await self.provider.fetch_daily_closes(symbol)
        except Exception as e:
            if not self.use_fallback:
                raise
            log.warning("fetch_failed_using_fallback symbol=%s err=%s", symbol, e)
            return fallback_series(self._now_ts())[-limit:]
        log.debug("fetched symbol=%s points=%d", symbol, len(rows))
        return rows[-limit:]

    async def close(self) -> None:
        closer: Optional[Callable[[], Awaitable[None]]] = getattr(self.provider, "close", None)
        if closer is not None:
            await closer()
