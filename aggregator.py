"""Fold the full record set into a multi-window UsageSnapshot.

The whole retained history is refolded on every pass. All window starts
come from one captured ``now`` so the windows agree with each other.
Cost and tokens count every record (streamed fragments are billed too);
request counters only count completed responses.
"""

from datetime import date, datetime, timedelta
from typing import Iterable

from models import ModelStats, ProjectStats, UsageRecord, UsageSnapshot, WindowTotals

FIVE_HOURS = timedelta(hours=5)

WINDOWS = ("today", "week", "month", "all_time", "five_hour")


def _local_midnight(day: date) -> datetime:
    # Naive -> aware in the system zone, so DST offsets follow the day itself.
    return datetime(day.year, day.month, day.day).astimezone()


def window_starts(now: datetime) -> dict[str, datetime]:
    """Start instants of the calendar and rolling windows for ``now``."""
    local_now = now.astimezone()
    today = local_now.date()
    return {
        "today": _local_midnight(today),
        "week": _local_midnight(today - timedelta(days=today.weekday())),
        "month": _local_midnight(today.replace(day=1)),
        "five_hour": now - FIVE_HOURS,
    }


def compute_snapshot(records: Iterable[UsageRecord], now: datetime | None = None) -> UsageSnapshot:
    now = (now or datetime.now()).astimezone()
    starts = window_starts(now)

    totals = {name: {"cost": 0.0, "tokens": 0, "requests": 0} for name in WINDOWS}
    by_model: dict[str, dict] = {}
    by_project: dict[str, dict] = {}
    earliest_five_hour: datetime | None = None
    count = 0

    for record in records:
        count += 1
        cost = record.cost
        tokens = record.total_tokens
        done = 1 if record.completed else 0

        for name in WINDOWS:
            start = starts.get(name)
            if start is not None and record.timestamp < start:
                continue
            acc = totals[name]
            acc["cost"] += cost
            acc["tokens"] += tokens
            acc["requests"] += done

        if record.timestamp >= starts["five_hour"]:
            if earliest_five_hour is None or record.timestamp < earliest_five_hour:
                earliest_five_hour = record.timestamp

        m = by_model.setdefault(record.model.value, {
            "model": record.model,
            "display_name": record.model.display_name,
            "cost": 0.0, "input_tokens": 0, "output_tokens": 0,
            "cache_write_tokens": 0, "cache_read_tokens": 0, "request_count": 0,
        })
        m["cost"] += cost
        m["input_tokens"] += record.input_tokens
        m["output_tokens"] += record.output_tokens
        m["cache_write_tokens"] += record.cache_creation_tokens
        m["cache_read_tokens"] += record.cache_read_tokens
        m["request_count"] += done

        p = by_project.setdefault(record.project, {
            "project": record.project, "cost": 0.0, "total_tokens": 0, "request_count": 0,
        })
        p["cost"] += cost
        p["total_tokens"] += tokens
        p["request_count"] += done

    return UsageSnapshot(
        today=WindowTotals(**totals["today"]),
        week=WindowTotals(**totals["week"]),
        month=WindowTotals(**totals["month"]),
        all_time=WindowTotals(**totals["all_time"]),
        five_hour=WindowTotals(**totals["five_hour"]),
        five_hour_resets_at=earliest_five_hour + FIVE_HOURS if earliest_five_hour else None,
        by_model={k: ModelStats(**v) for k, v in by_model.items()},
        by_project={k: ProjectStats(**v) for k, v in by_project.items()},
        record_count=count,
        computed_at=now,
    )
