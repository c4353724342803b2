from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from uptime_monitor.models import STATUS_UP, DailyRollup


def _positive_response_times(rows: Iterable[dict[str, Any]]) -> list[float]:
    out: list[float] = []
    for r in rows:
        v = r.get("response_time")
        if v is None:
            continue
        try:
            ms = float(v)
        except Exception:
            continue
        if ms > 0:
            out.append(ms)
    return out


def compute_availability(rows: list[dict[str, Any]]) -> tuple[int, int, float]:
    """
    Returns (total, up_count, up_percent). up_percent is 0.0 when there are no rows.
    """
    total = len(rows)
    if total <= 0:
        return 0, 0, 0.0
    up_count = sum(1 for r in rows if str(r.get("status") or "") == STATUS_UP)
    return total, up_count, (up_count / float(total)) * 100.0


def compute_daily_rollup(rows: list[dict[str, Any]], *, monitor_id: int, date: str) -> DailyRollup:
    """
    Aggregate one monitor's history rows for one day.

    Response-time statistics only consider checks that returned a positive response time;
    a day without any yields 0 for min/avg/max.
    """
    total, up_count, availability = compute_availability(rows)
    times = _positive_response_times(rows)
    if times:
        avg_ms = sum(times) / float(len(times))
        min_ms = min(times)
        max_ms = max(times)
    else:
        avg_ms = min_ms = max_ms = 0.0

    return DailyRollup(
        monitor_id=int(monitor_id),
        date=str(date),
        total_checks=total,
        up_checks=up_count,
        down_checks=total - up_count,
        avg_response_time=round(avg_ms, 2),
        min_response_time=float(min_ms),
        max_response_time=float(max_ms),
        availability=round(availability, 2),
    )


def group_by_monitor(rows: Iterable[dict[str, Any]]) -> dict[int, list[dict[str, Any]]]:
    out: dict[int, list[dict[str, Any]]] = defaultdict(list)
    for r in rows:
        try:
            monitor_id = int(r["monitor_id"])
        except Exception:
            continue
        out[monitor_id].append(r)
    return dict(out)
