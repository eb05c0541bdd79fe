from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List


@dataclass(frozen=True)
class DailyClose:
    timestamp: int  # epoch seconds
    close: float


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AnalysisResult:
    mean: float
    current_price: float
    difference: float
    percentage_change: float
    signal: Signal


@dataclass(frozen=True)
class TimeOfDay:
    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= int(self.hour) <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if not 0 <= int(self.minute) <= 59:
            raise ValueError(f"minute out of range: {self.minute}")

    @property
    def total_minutes(self) -> int:
        return self.hour * 60 + self.minute

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        """Parse 'HH:MM' (or a bare 'HH')."""
        raw = str(text).strip()
        if ":" in raw:
            h, m = raw.split(":", 1)
        else:
            h, m = raw, "0"
        try:
            return cls(int(h), int(m))
        except ValueError as e:
            raise ValueError(f"Invalid time of day: {text!r} ({e})") from None

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class SymbolReport:
    symbol: str
    history: List[DailyClose]
    result: AnalysisResult
