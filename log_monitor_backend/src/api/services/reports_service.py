from __future__ import annotations

import logging
import statistics
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Tuple

from fastapi import Request

from src.api.models import DailyMessageStats, Device
from src.api.schemas.common import utc_now
from src.api.schemas.messages import (
    MessageTypeCountOut,
    MessageTypeCountResponse,
    MonthReportResponse,
    MonthReportRow,
)
from src.api.state import get_state

logger = logging.getLogger(__name__)

DEFAULT_REPORT_DAYS = 30


def _summarize(
    device_id: int, message_type: str, days: List[DailyMessageStats], describe: Callable[[int], Device]
) -> dict:
    """Fold the daily buckets of one (device, message type) pair into a report row (without rank)."""
    totals = [d.total for d in days]
    total = sum(totals)
    total_critical = sum(d.critical for d in days)

    components: Counter = Counter()
    for d in days:
        components.update(d.components)
    # Ties go to the alphabetically first component so the row is stable.
    most_active = min(components.items(), key=lambda kv: (-kv[1], kv[0]))[0] if components else None

    firsts = [d.first_critical_at for d in days if d.first_critical_at is not None]
    lasts = [d.last_critical_at for d in days if d.last_critical_at is not None]
    first_critical = min(firsts) if firsts else None
    last_critical = max(lasts) if lasts else None

    # The mean gap between consecutive timestamps is the whole span over the gap count.
    interval = None
    if first_critical is not None and last_critical is not None and total_critical > 1:
        interval = (last_critical - first_critical).total_seconds() / (total_critical - 1)

    return {
        "device_id": device_id,
        "name": describe(device_id).name,
        "message_type": message_type,
        "active_days": len(days),
        "total_messages": total,
        "avg_daily_messages": round(total / len(days), 2),
        "max_daily_messages": max(totals),
        "median_daily_messages": float(statistics.median(totals)),
        "total_critical": total_critical,
        "max_daily_critical": max(d.critical for d in days),
        "max_daily_components": max(len(d.components) for d in days),
        "most_active_component": most_active,
        "first_critical_at": first_critical,
        "last_critical_at": last_critical,
        "avg_critical_interval_sec": interval,
        "critical_percentage": round(100.0 * total_critical / total, 2) if total else 0.0,
    }


# PUBLIC_INTERFACE
def build_month_report(
    stats: List[DailyMessageStats], describe: Callable[[int], Device], min_messages: int = 0
) -> List[MonthReportRow]:
    """
    Turn daily buckets into report rows.

    Rows with fewer than ``min_messages`` messages are dropped. ``volume_rank`` is a dense
    rank by total volume over the remaining rows; rows are ordered by device id and then by
    volume, busiest first.
    """
    grouped: Dict[Tuple[int, str], List[DailyMessageStats]] = {}
    for s in stats:
        grouped.setdefault((s.device_id, s.message_type), []).append(s)

    rows = [_summarize(device_id, message_type, days, describe) for (device_id, message_type), days in grouped.items()]
    rows = [r for r in rows if r["total_messages"] >= min_messages]

    ranks = {v: i for i, v in enumerate(sorted({r["total_messages"] for r in rows}, reverse=True), start=1)}
    rows.sort(key=lambda r: (r["device_id"], -r["total_messages"], r["message_type"]))
    return [MonthReportRow(**r, volume_rank=ranks[r["total_messages"]]) for r in rows]


# PUBLIC_INTERFACE
def count_by_message_type(request: Request, message_type: str) -> MessageTypeCountResponse:
    """Count stored messages of one type per device, enriched from the device directory."""
    state = get_state(request.app)
    counts = state.stores.messages.count_by_message_type(message_type, timeout=state.config.store_timeout_sec)

    items: List[MessageTypeCountOut] = []
    for device_id, count in counts:
        device = state.classifier.describe_device(device_id)
        items.append(
            MessageTypeCountOut(
                device_id=device_id,
                name=device.name,
                device_type=device.device_type,
                address=device.address,
                responsible=list(device.responsible),
                count=count,
            )
        )
    return MessageTypeCountResponse(message_type=message_type, items=items, total=len(items))


# PUBLIC_INTERFACE
def month_report(
    request: Request, days: int = DEFAULT_REPORT_DAYS, min_messages: int = 0, now: datetime | None = None
) -> MonthReportResponse:
    """Volume and criticality statistics per device and message type for the last ``days`` days."""
    state = get_state(request.app)
    start = (now or utc_now()) - timedelta(days=days)
    stats = state.stores.messages.daily_stats(since=start, timeout=state.config.store_timeout_sec)
    rows = build_month_report(stats, state.classifier.describe_device, min_messages=min_messages)
    logger.debug("Month report since %s: %s buckets -> %s rows", start.isoformat(), len(stats), len(rows))
    return MonthReportResponse(start=start, items=rows, total=len(rows))
