from __future__ import annotations
from typing import Sequence

from .models import AnalysisResult, DailyClose, Signal

MIN_HISTORY = 6
BASELINE_DAYS = 5

BUY_THRESHOLD_PCT = -1.5
SELL_THRESHOLD_PCT = 3.0


class InsufficientDataError(ValueError):
    def __init__(self, available: int, required: int = MIN_HISTORY):
        super().__init__(f"need at least {required} daily closes, got {available}")
        self.available = available
        self.required = required


def classify(percentage_change: float) -> Signal:
    # Strict bounds: -1.5 and 3.0 themselves are NEUTRAL.
    if percentage_change < BUY_THRESHOLD_PCT:
        return Signal.BUY
    if percentage_change > SELL_THRESHOLD_PCT:
        return Signal.SELL
    return Signal.NEUTRAL


def analyze(history: Sequence[DailyClose]) -> AnalysisResult:
    """Compare the latest close against the mean of the 5 closes before it.

    Only the trailing 6 entries are used; anything earlier is ignored.
    Raises InsufficientDataError when fewer than 6 entries are supplied.
    """
    if len(history) < MIN_HISTORY:
        raise InsufficientDataError(len(history))

    window = list(history)[-MIN_HISTORY:]
    baseline = window[:BASELINE_DAYS]
    current_price = float(window[-1].close)

    mean = sum(float(d.close) for d in baseline) / float(BASELINE_DAYS)
    difference = current_price - mean
    percentage_change = (difference / mean) * 100.0 if mean != 0 else 0.0

    return AnalysisResult(
        mean=mean,
        current_price=current_price,
        difference=difference,
        percentage_change=percentage_change,
        signal=classify(percentage_change),
    )
