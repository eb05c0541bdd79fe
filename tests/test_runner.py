import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.cron import CronTrigger

from stock_triggers.analyzer import InsufficientDataError
from stock_triggers.favorites import FavoritesStore
from stock_triggers.models import DailyClose, Signal, TimeOfDay
from stock_triggers.repository import StockRepository
from stock_triggers.runner import EvaluationRound, Scheduler, SignalService
from stock_triggers.timefilter import NotificationWindow

MONDAY_11 = datetime(2024, 1, 15, 11, 5, tzinfo=timezone.utc)
MONDAY_10 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
SATURDAY_11 = datetime(2024, 1, 20, 11, 5, tzinfo=timezone.utc)


def _series(*closes: float):
    return [DailyClose(timestamp=86_400 * (i + 1), close=float(c)) for i, c in enumerate(closes)]


SERIES = {
    "BUYME": _series(100, 100, 100, 100, 100, 98),
    "SELLME": _series(100, 100, 100, 100, 100, 104),
    "FLAT": _series(100, 100, 100, 100, 100, 101),
    "SHORT": _series(100, 100),
}


class FakeProvider:
    def __init__(self, series=None, fail=()):
        self.series = dict(SERIES if series is None else series)
        self.fail = set(fail)
        self.calls = []

    async def fetch_daily_closes(self, symbol):
        self.calls.append(symbol)
        if symbol in self.fail:
            raise RuntimeError(f"boom {symbol}")
        return list(self.series[symbol])


class RecordingNotifier:
    def __init__(self, fail=()):
        self.sent = []
        self.fail = set(fail)

    async def notify(self, symbol, signal, price):
        if symbol in self.fail:
            raise RuntimeError("delivery down")
        self.sent.append((symbol, signal, price))


def _service(tmp_path, symbols, *, now=MONDAY_11, provider=None, notifier=None, use_fallback=False):
    store = FavoritesStore(tmp_path / "favorites.json", max_favorites=3)
    for s in symbols:
        assert store.add(s)
    window = NotificationWindow(times=[TimeOfDay(11, 0), TimeOfDay(14, 0)], timezone="UTC")
    return SignalService(
        repository=StockRepository(provider or FakeProvider(), use_fallback=use_fallback),
        favorites=store,
        notifier=notifier or RecordingNotifier(),
        window=window,
        clock=lambda: now,
    )


def test_evaluate_symbol_is_not_gated(tmp_path):
    svc = _service(tmp_path, [], now=SATURDAY_11)
    report = asyncio.run(svc.evaluate_symbol(" buyme "))
    assert report.symbol == "BUYME"
    assert report.result.signal == Signal.BUY
    assert len(report.history) == 6
    assert svc.notifier.sent == []


def test_evaluate_symbol_insufficient_data(tmp_path):
    svc = _service(tmp_path, [])
    with pytest.raises(InsufficientDataError):
        asyncio.run(svc.evaluate_symbol("SHORT"))


def test_evaluate_symbol_uses_last_six_points(tmp_path):
    provider = FakeProvider({"LONG": _series(1, 1, 1, 100, 100, 100, 100, 100, 104)})
    svc = _service(tmp_path, [], provider=provider)
    report = asyncio.run(svc.evaluate_symbol("LONG"))
    assert [d.close for d in report.history] == [100, 100, 100, 100, 100, 104]
    assert report.result.signal == Signal.SELL


def test_round_notifies_non_neutral_in_window(tmp_path):
    svc = _service(tmp_path, ["BUYME", "SELLME", "FLAT"])
    out = asyncio.run(svc.evaluate_all_favorites())
    assert sorted(out.results) == ["BUYME", "FLAT", "SELLME"]
    assert out.notified == ["BUYME", "SELLME"]
    assert out.suppressed == []
    assert sorted(svc.notifier.sent) == [("BUYME", Signal.BUY, 98.0), ("SELLME", Signal.SELL, 104.0)]


def test_round_outside_window_suppresses(tmp_path):
    svc = _service(tmp_path, ["BUYME", "FLAT"], now=MONDAY_10)
    out = asyncio.run(svc.evaluate_all_favorites())
    assert out.notified == []
    assert out.suppressed == ["BUYME"]
    assert svc.notifier.sent == []


def test_round_force_bypasses_window(tmp_path):
    svc = _service(tmp_path, ["BUYME"], now=MONDAY_10)
    out = asyncio.run(svc.evaluate_all_favorites(force=True))
    assert out.notified == ["BUYME"]


def test_round_force_still_blocked_on_weekend(tmp_path):
    svc = _service(tmp_path, ["BUYME", "SELLME"], now=SATURDAY_11)
    out = asyncio.run(svc.evaluate_all_favorites(force=True))
    assert out.notified == []
    assert out.suppressed == ["BUYME", "SELLME"]
    assert svc.notifier.sent == []


def test_one_failure_does_not_abort_others(tmp_path):
    provider = FakeProvider(fail={"BUYME"})
    svc = _service(tmp_path, ["BUYME", "SELLME", "SHORT"], provider=provider)
    out = asyncio.run(svc.evaluate_all_favorites())
    assert set(out.failures) == {"BUYME", "SHORT"}
    assert "boom" in out.failures["BUYME"]
    assert "InsufficientDataError" in out.failures["SHORT"]
    assert out.notified == ["SELLME"]
    assert sorted(provider.calls) == ["BUYME", "SELLME", "SHORT"]


def test_notifier_failure_is_isolated(tmp_path):
    notifier = RecordingNotifier(fail={"BUYME"})
    svc = _service(tmp_path, ["BUYME", "SELLME"], notifier=notifier)
    out = asyncio.run(svc.evaluate_all_favorites())
    assert "BUYME" in out.failures
    assert out.notified == ["SELLME"]


def test_fetch_failure_falls_back_when_enabled(tmp_path):
    provider = FakeProvider(fail={"BUYME"})
    svc = _service(tmp_path, ["BUYME"], provider=provider, use_fallback=True)
    out = asyncio.run(svc.evaluate_all_favorites())
    # fallback series: 22200 vs a 21630 mean is +2.64%, NEUTRAL
    assert out.failures == {}
    assert out.results["BUYME"].signal == Signal.NEUTRAL


def test_empty_favorites(tmp_path):
    svc = _service(tmp_path, [])
    out = asyncio.run(svc.evaluate_all_favorites())
    assert out.results == {} and out.notified == [] and out.failures == {}


def _scheduler(service=None, tz=timezone.utc, **kw):
    kw.setdefault("sync_times", [TimeOfDay(h, 0) for h in range(9, 19)])
    kw.setdefault("notification_times", [TimeOfDay(11, 0), TimeOfDay(14, 0)])
    return Scheduler(service, tz=tz, **kw)


def test_next_run_picks_next_slot_same_day():
    at, force = _scheduler().next_run(datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc))
    assert at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert force is False


def test_next_run_notification_slot_is_forced():
    at, force = _scheduler().next_run(MONDAY_10)
    assert at == datetime(2024, 1, 15, 11, 0, tzinfo=timezone.utc)
    assert force is True


def test_next_run_without_forced_notification_slots():
    sch = _scheduler(force_on_notification_times=False)
    _, force = sch.next_run(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))
    assert force is False


def test_next_run_rolls_to_next_day():
    at, force = _scheduler().next_run(datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc))
    assert at == datetime(2024, 1, 16, 9, 0, tzinfo=timezone.utc)
    assert force is False


def test_next_run_follows_dst_change():
    ny = ZoneInfo("America/New_York")
    sch = _scheduler(tz=ny, sync_times=[TimeOfDay(9, 0)], notification_times=[])
    # 2024-03-10 01:00 EST; clocks jump to EDT at 02:00
    now = datetime(2024, 3, 10, 1, 0, tzinfo=ny)
    at, _ = sch.next_run(now)
    assert (at.hour, at.minute) == (9, 0)
    assert at.utcoffset() == timedelta(hours=-4)
    assert at.timestamp() - now.timestamp() == 7 * 3600


def test_scheduler_requires_times():
    with pytest.raises(ValueError):
        _scheduler(sync_times=[], notification_times=[])


def test_register_jobs_one_cron_job_per_slot():
    sch = _scheduler(
        sync_times=[TimeOfDay(10, 0), TimeOfDay(11, 0)],
        notification_times=[TimeOfDay(11, 0), TimeOfDay(14, 30)],
    )
    jobs = sch.register_jobs()
    assert [j.id for j in jobs] == ["evaluate_1000", "evaluate_1100", "evaluate_1430"]
    assert [j.kwargs for j in jobs] == [{"force": False}, {"force": True}, {"force": True}]
    assert all(isinstance(j.trigger, CronTrigger) for j in jobs)
    fields = {f.name: str(f) for f in jobs[2].trigger.fields}
    assert fields["hour"] == "14" and fields["minute"] == "30"
    assert len(sch.scheduler.get_jobs()) == 3


def test_run_round_survives_errors():
    calls = []

    class FlakyService:
        async def evaluate_all_favorites(self, force=False):
            calls.append(force)
            if len(calls) == 1:
                raise ValueError("corrupt favorites")
            return EvaluationRound()

    sch = _scheduler(FlakyService())
    assert asyncio.run(sch.run_round(True)) is None
    assert isinstance(asyncio.run(sch.run_round(False)), EvaluationRound)
    assert calls == [True, False]


def test_run_forever_starts_and_stops_scheduler():
    sch = _scheduler(sync_times=[TimeOfDay(10, 30)], notification_times=[])

    async def _run():
        stop = asyncio.Event()
        stop.set()
        await sch.run_forever(stop)

    asyncio.run(_run())
    assert not sch.scheduler.running
