from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from ..models import DailyClose

log = logging.getLogger("yahoo")


def _chart_path(symbol: str) -> str:
    # symbols such as ^NSEI must be escaped in the path
    return "/v8/finance/chart/" + quote(symbol.strip().upper(), safe="")


def parse_chart_payload(payload: Dict[str, Any]) -> List[DailyClose]:
    """Turn a v8 chart response into DailyClose rows, skipping null closes."""
    chart = (payload or {}).get("chart") or {}
    results = chart.get("result") or []
    if not results:
        err = chart.get("error")
        raise ValueError(f"chart response has no result (error={err})")

    result = results[0] or {}
    timestamps = result.get("timestamp") or []
    quotes = ((result.get("indicators") or {}).get("quote")) or []
    closes = (quotes[0] or {}).get("close") if quotes else None
    if closes is None:
        raise ValueError("chart response has no close series")

    out: List[DailyClose] = []
    for i, ts in enumerate(timestamps):
        if i >= len(closes) or closes[i] is None:
            continue
        out.append(DailyClose(timestamp=int(ts), close=float(closes[i])))
    return out


class YahooChartProvider:
    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        *,
        interval: str = "1d",
        range_: str = "10d",
        rest_timeout_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self.range = range_
        self.rest_timeout_s = rest_timeout_s

        # REST robustness
        self.rest_max_retries = max(1, int(rest_max_retries))
        self.rest_backoff_s = rest_backoff_s
        self._sleep = sleep

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Yahoo rejects requests without a browser-ish user agent.
            self._session = aiohttp.ClientSession(
                timeout=self._timeout(),
                headers={"User-Agent": "Mozilla/5.0 (stock-triggers)"},
            )
        return self._session

    async def fetch_daily_closes(self, symbol: str) -> List[DailyClose]:
        url = self.base_url + _chart_path(symbol)
        params = {"interval": self.interval, "range": self.range}

        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        data: Any = None
        for attempt in range(1, self.rest_max_retries + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status == 429:
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning("rest_rate_limited symbol=%s sleep=%.1fs", symbol, sleep_s)
                        last_err = RuntimeError(f"chart rate limited for {symbol}")
                        await self._sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise RuntimeError(f"chart request failed: {resp.status} {txt[:500]}")

                    data = await resp.json(content_type=None)

                last_err = None
                break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= self.rest_max_retries:
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d symbol=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    symbol,
                    backoff,
                    e,
                )
                await self._sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is not None:
            raise last_err

        rows = parse_chart_payload(data)
        log.debug("chart_parsed symbol=%s points=%d", symbol, len(rows))
        return rows
