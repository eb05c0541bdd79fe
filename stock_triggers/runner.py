from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .analyzer import MIN_HISTORY, analyze
from .config import Config
from .favorites import FavoritesStore
from .models import AnalysisResult, Signal, SymbolReport, TimeOfDay
from .notifier.base import LogNotifier, MultiNotifier, Notifier
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .providers.yahoo import YahooChartProvider
from .repository import StockRepository
from .timefilter import NotificationWindow

log = logging.getLogger("runner")

Clock = Callable[[], datetime]


@dataclass
class EvaluationRound:
    results: Dict[str, AnalysisResult] = field(default_factory=dict)
    notified: List[str] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        return (
            f"evaluated={len(self.results)} notified={len(self.notified)} "
            f"suppressed={len(self.suppressed)} failed={len(self.failures)}"
        )


class SignalService:
    def __init__(
        self,
        repository: StockRepository,
        favorites: FavoritesStore,
        notifier: Notifier,
        window: NotificationWindow,
        clock: Optional[Clock] = None,
        *,
        history_limit: int = MIN_HISTORY,
        concurrency: int = 3,
    ):
        self.repository = repository
        self.favorites = favorites
        self.notifier = notifier
        self.window = window
        self.clock: Clock = clock or (lambda: datetime.now(window.tz))
        self.history_limit = max(MIN_HISTORY, int(history_limit))
        self.concurrency = max(1, int(concurrency))

    async def evaluate_symbol(self, symbol: str) -> SymbolReport:
        """Interactive path: fetch and analyse one symbol, no notification gating."""
        sym = symbol.strip().upper()
        history = await self.repository.get_last_working_days(sym, self.history_limit)
        result = analyze(history)
        log.info(
            "analysis symbol=%s mean=%.4f current=%.4f diff=%.4f pct=%.3f signal=%s",
            sym,
            result.mean,
            result.current_price,
            result.difference,
            result.percentage_change,
            result.signal.value,
        )
        return SymbolReport(symbol=sym, history=list(history), result=result)

    async def evaluate_all_favorites(self, force: bool = False) -> EvaluationRound:
        out = EvaluationRound()
        symbols = sorted(self.favorites.get())
        if not symbols:
            log.info("no_favorites")
            return out

        log.info("round_start symbols=%s force=%s", symbols, force)
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(sym: str) -> Tuple[str, Optional[AnalysisResult], Optional[bool], Optional[str]]:
            try:
                async with sem:
                    history = await self.repository.get_last_working_days(sym, self.history_limit)
                result = analyze(history)
                if result.signal == Signal.NEUTRAL:
                    return sym, result, None, None
                log.info("trigger_detected symbol=%s signal=%s pct=%.3f", sym, result.signal.value, result.percentage_change)
                if not self.window.should_notify(self.clock(), force):
                    log.info("notify_skipped symbol=%s reason=outside_window", sym)
                    return sym, result, False, None
                await self.notifier.notify(sym, result.signal, result.current_price)
                return sym, result, True, None
            except Exception as e:
                log.warning("evaluate_failed symbol=%s err=%r", sym, e)
                return sym, None, None, repr(e)

        for sym, result, sent, err in await asyncio.gather(*[_one(s) for s in symbols]):
            if err is not None:
                out.failures[sym] = err
                continue
            out.results[sym] = result
            if sent is True:
                out.notified.append(sym)
            elif sent is False:
                out.suppressed.append(sym)

        log.info("round_done %s", out.summary())
        return out


class Scheduler:
    """Runs favorite evaluation at the configured local times, forever.

    Each slot becomes one daily APScheduler cron job in the configured zone,
    so fire times follow the zone's DST rules. Notification slots run forced
    rounds when ``force_on_notification_times`` is set.
    """

    def __init__(
        self,
        service: SignalService,
        *,
        sync_times: Sequence[TimeOfDay],
        notification_times: Sequence[TimeOfDay] = (),
        tz: tzinfo,
        force_on_notification_times: bool = True,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.service = service
        self.tz = tz
        self._slots: Dict[TimeOfDay, bool] = {}
        for t in sync_times:
            self._slots[t] = False
        for t in notification_times:
            self._slots[t] = self._slots.get(t, False) or bool(force_on_notification_times)
        if not self._slots:
            raise ValueError("No schedule times configured.")
        self.scheduler = scheduler or AsyncIOScheduler(timezone=tz)

    def triggers(self) -> List[Tuple[TimeOfDay, CronTrigger, bool]]:
        return [
            (t, CronTrigger(hour=t.hour, minute=t.minute, timezone=self.tz), force)
            for t, force in sorted(self._slots.items(), key=lambda kv: kv[0].total_minutes)
        ]

    def register_jobs(self) -> List[Job]:
        jobs = []
        for t, trigger, force in self.triggers():
            jobs.append(self.scheduler.add_job(
                self.run_round,
                trigger=trigger,
                kwargs={"force": force},
                id=f"evaluate_{t.hour:02d}{t.minute:02d}",
                name=f"Evaluate favorites at {t} (force={force})",
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=300,
            ))
        return jobs

    def next_run(self, now: datetime) -> Tuple[datetime, bool]:
        """Earliest slot strictly after ``now`` and whether it runs forced."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=self.tz)
        now = now.astimezone(self.tz)
        best: Optional[Tuple[datetime, bool]] = None
        for _, trigger, force in self.triggers():
            at = trigger.get_next_fire_time(None, now + timedelta(microseconds=1))
            if best is None or at.timestamp() < best[0].timestamp():
                best = (at, force)
        return best

    async def run_round(self, force: bool) -> Optional[EvaluationRound]:
        try:
            result = await self.service.evaluate_all_favorites(force=force)
        except Exception as e:
            log.exception("scheduled_round_failed force=%s err=%s", force, e)
            return None
        log.info("scheduled_round_done force=%s %s", force, result.summary())
        return result

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        self.register_jobs()
        self.scheduler.start()
        for job in self.scheduler.get_jobs():
            log.info("job_scheduled id=%s next_run=%s", job.id, job.next_run_time)
        try:
            await (stop or asyncio.Event()).wait()
        finally:
            self.scheduler.shutdown(wait=False)
            log.info("scheduler_stopped")




def build_notifier(cfg: Config) -> Notifier:
    notifiers: List[Notifier] = []
    tg = TelegramNotifier(
        token=cfg.telegram.token,
        chat_ids=cfg.telegram.chat_ids,
        alerts_cfg=cfg.alerts,
        disable_web_page_preview=cfg.telegram.disable_web_page_preview,
    )
    if cfg.telegram.enabled and tg.enabled():
        notifiers.append(tg)
    if cfg.webhook.enabled and cfg.webhook.url:
        notifiers.append(WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        ))
    if not notifiers:
        log.info("no_delivery_channel_configured using=log")
        return LogNotifier()
    return MultiNotifier(notifiers)


def build_service(cfg: Config, *, clock: Optional[Clock] = None) -> SignalService:
    provider = YahooChartProvider(
        cfg.provider.base_url,
        interval=cfg.provider.interval,
        range_=cfg.provider.range,
        rest_timeout_s=cfg.provider.rest_timeout_s,
        rest_max_retries=cfg.provider.max_retries,
        rest_backoff_s=cfg.provider.backoff_s,
    )
    return SignalService(
        repository=StockRepository(provider, use_fallback=cfg.provider.use_fallback),
        favorites=FavoritesStore(cfg.favorites.path, cfg.favorites.max_favorites),
        notifier=build_notifier(cfg),
        window=cfg.notification_window(),
        clock=clock,
        history_limit=cfg.provider.history_limit,
        concurrency=cfg.provider.concurrency,
    )


def build_scheduler(cfg: Config, service: SignalService) -> Scheduler:
    return Scheduler(
        service,
        sync_times=cfg.schedule.sync_slots(),
        notification_times=cfg.schedule.notification_slots(),
        tz=service.window.tz,
        force_on_notification_times=cfg.schedule.force_on_notification_times,
    )
