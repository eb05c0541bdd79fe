from __future__ import annotations

import aiohttp
from typing import List, Optional
import logging

from ..formatters import format_alert
from ..models import Signal

log = logging.getLogger("telegram")

_PARSE_MODES = {"HTML": "HTML", "MARKDOWNV2": "MarkdownV2"}


class TelegramNotifier:
    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        alerts_cfg=None,
        disable_web_page_preview: bool = True,
        api_base: str = "https://api.telegram.org",
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.alerts_cfg = alerts_cfg
        self.disable_web_page_preview = disable_web_page_preview
        self.api_base = api_base.rstrip("/")
        mode = (getattr(alerts_cfg, "parse_mode", "HTML") or "HTML").upper()
        if mode not in _PARSE_MODES:
            raise ValueError(f"Unsupported Telegram parse_mode: {mode}")
        # formatters escape for this mode, so it must always be sent along
        self.parse_mode = _PARSE_MODES[mode]

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    async def notify(self, symbol: str, signal: Signal, price: float) -> None:
        text = format_alert(symbol, signal, price, self.alerts_cfg)
        await self.send(text, parse_mode=self.parse_mode)

    async def send(self, text: str, *, parse_mode: Optional[str] = None) -> None:
        if not self.enabled():
            return
        url = f"{self.api_base}/bot{self.token}/sendMessage"
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in self.chat_ids:
                payload = {
                    "chat_id": chat_id,
                    "text": text,
                    "disable_web_page_preview": self.disable_web_page_preview,
                }
                if parse_mode:
                    payload["parse_mode"] = parse_mode
                try:
                    async with sess.post(url, json=payload) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                except Exception as e:
                    log.exception("telegram_send_exception chat_id=%s err=%s", chat_id, e)
