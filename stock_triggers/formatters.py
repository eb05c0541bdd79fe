from __future__ import annotations

import html
from datetime import datetime, timezone, tzinfo
from typing import List

from .models import Signal, SymbolReport


def _fmt_day(ts_s: int, tz: tzinfo = timezone.utc) -> str:
    dt = datetime.fromtimestamp(ts_s, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%d/%m")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _signed(val: float) -> str:
    return f"{'+' if val > 0 else ''}{val:.2f}"


def alert_title(symbol: str, signal: Signal) -> str:
    return f"{symbol}: {signal.value} Signal!"


def alert_body(price: float) -> str:
    return f"Price is {price:.2f}. Check the app!"


def format_alert(symbol: str, signal: Signal, price: float, cfg) -> str:
    """Telegram text for a background alert."""
    parse_mode = (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    lines = [
        _bold(alert_title(symbol, signal), parse_mode),
        _escape_text(alert_body(price), parse_mode),
    ]
    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))
    return "\n".join(lines)


def format_report(report: SymbolReport, tz: tzinfo = timezone.utc) -> str:
    res = report.result
    lines: List[str] = [
        report.symbol,
        f"Current: {res.current_price:.2f}",
        f"5-Day Mean: {res.mean:.2f}",
        "",
    ]
    if res.signal == Signal.NEUTRAL:
        lines.append("Hold / Neutral")
        lines.append(f"Change: {res.percentage_change:.2f}% (Diff: {res.difference:.2f})")
    else:
        lines.append(res.signal.value)
        lines.append(f"Diff: {_signed(res.difference)}")
        lines.append(f"{_signed(res.percentage_change)}%")

    if report.history:
        lines.append("")
        lines.append(f"Last {len(report.history)} Days Trend")
        for d in report.history:
            lines.append(f"  {_fmt_day(d.timestamp, tz)}  {d.close:.2f}")
    return "\n".join(lines)
