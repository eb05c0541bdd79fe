from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta, tzinfo
from typing import Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import re

from .models import TimeOfDay


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})(?::(\d{2}))?$")

SATURDAY = 5
SUNDAY = 6


def parse_tz(tz_str: str) -> tzinfo:
    raw = (tz_str or "UTC").strip()
    if raw.upper() == "UTC":
        return timezone.utc
    m = _TZ_RE.match(raw.upper())
    if m:
        sign = 1 if m.group(1) == "+" else -1
        delta = timedelta(hours=int(m.group(2)), minutes=int(m.group(3) or 0))
        return timezone(sign * delta)
    try:
        return ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"Unsupported timezone: {tz_str} (use 'UTC', 'UTC+3', 'UTC+5:30' or an IANA name)"
        ) from None


@dataclass
class NotificationWindow:
    times: Sequence[TimeOfDay] = field(default_factory=list)
    window_minutes: int = 30
    timezone: str = "Asia/Kolkata"

    def __post_init__(self) -> None:
        self.times = [t if isinstance(t, TimeOfDay) else TimeOfDay.parse(t) for t in self.times]
        self._tz = parse_tz(self.timezone)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def localize(self, now: datetime) -> datetime:
        # Naive datetimes are taken to be wall-clock time in the configured zone.
        if now.tzinfo is None:
            return now.replace(tzinfo=self._tz)
        return now.astimezone(self._tz)

    def is_weekend(self, now: datetime) -> bool:
        return self.localize(now).weekday() in (SATURDAY, SUNDAY)

    def should_notify(self, now: datetime, force: bool = False) -> bool:
        """Decide whether a detected signal may be announced at ``now``.

        Order matters: the weekend block comes first and holds even when
        ``force`` is set; ``force`` then skips only the time-window check.
        Each window is inclusive at both ends: [t, t + window_minutes].
        """
        local = self.localize(now)
        if local.weekday() in (SATURDAY, SUNDAY):
            return False
        if force:
            return True

        current = local.hour * 60 + local.minute
        for t in self.times:
            start = t.total_minutes
            if start <= current <= start + self.window_minutes:
                return True
        return False
