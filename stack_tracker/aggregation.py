"""Portfolio-level analytics derived from canonical tool records.

All functions here are pure folds over an in-memory collection.  They read the
stored ``monthly_cost``/``yearly_cost`` fields and never re-run normalization.
Unparseable dates simply fail to match any window or month so the functions
stay total.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence

from .config import DEFAULT_RENEWAL_WINDOW_DAYS
from .dates import MONTH_LABELS, add_months, month_start, parse_iso_date
from .models import (
    BillingCycle,
    CostHistoryEntry,
    CostTrendPoint,
    PortfolioStats,
    TrackedTool,
)
from .normalization import round_currency

TREND_MONTHS = 12


def compute_stats(
    tools: Iterable[TrackedTool],
    today: date,
    renewal_window_days: int = DEFAULT_RENEWAL_WINDOW_DAYS,
) -> PortfolioStats:
    """Summarise a tool collection for the dashboard cards.

    ``upcoming_renewal_count`` counts renewal dates inside
    ``[today, today + renewal_window_days]``, both ends inclusive.
    """

    total_monthly = 0.0
    total_yearly = 0.0
    active_count = 0
    upcoming = 0

    for tool in tools:
        total_monthly += tool.monthly_cost
        total_yearly += tool.yearly_cost
        if tool.status.is_active:
            active_count += 1
        if renews_within(tool, today, renewal_window_days):
            upcoming += 1

    return PortfolioStats(
        total_monthly=round_currency(total_monthly),
        total_yearly=round_currency(total_yearly),
        active_count=active_count,
        upcoming_renewal_count=upcoming,
    )


def renews_within(tool: TrackedTool, today: date, window_days: int = DEFAULT_RENEWAL_WINDOW_DAYS) -> bool:
    renewal = parse_iso_date(tool.renewal_date)
    if renewal is None:
        return False
    return today <= renewal <= today + timedelta(days=window_days)


def compute_trend(tools: Sequence[TrackedTool], today: date) -> list[CostTrendPoint]:
    """Project total spend for the next twelve calendar months.

    The first point is ``today``'s month.  Labels carry the month name only, so
    the sequence wraps from December to January without a year marker.
    """

    points: list[CostTrendPoint] = []
    for offset in range(TREND_MONTHS):
        month = (today.month - 1 + offset) % 12
        total = sum(monthly_contribution(tool, month) for tool in tools)
        points.append(
            CostTrendPoint(
                month=month,
                label=MONTH_LABELS[month],
                total=int(round_currency(total, places=0)),
            )
        )
    return points


def monthly_contribution(tool: TrackedTool, month: int) -> float:
    """Return what ``tool`` costs in calendar month ``month`` (0 = January)."""

    renewal_month = renewal_month_index(tool)

    if tool.billing_cycle is BillingCycle.YEARLY:
        return tool.yearly_cost if month == renewal_month else 0.0

    if tool.months_per_year >= 12:
        return tool.monthly_cost

    if tool.usage_months:
        return tool.monthly_cost if month in tool.usage_months else 0.0

    # No explicit months: assume a contiguous window starting at renewal.
    if renewal_month is None:
        return 0.0
    if (month - renewal_month + 12) % 12 < tool.months_per_year:
        return tool.monthly_cost
    return 0.0


def category_breakdown(tools: Iterable[TrackedTool]) -> list[tuple[str, float]]:
    """Monthly cost per category, most expensive first."""

    totals: dict[str, float] = defaultdict(float)
    for tool in tools:
        totals[tool.category or "Uncategorised"] += tool.monthly_cost
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [(category, round_currency(value)) for category, value in ranked]


def top_tools(tools: Iterable[TrackedTool], limit: int = 5) -> list[TrackedTool]:
    return sorted(tools, key=lambda tool: tool.monthly_cost, reverse=True)[: max(limit, 0)]


def cost_history_series(
    entries: Sequence[CostHistoryEntry],
    today: date,
) -> list[tuple[date, float]]:
    """Rebuild the historical monthly spend from cost snapshots.

    One point is produced per calendar month from the month of the earliest
    snapshot up to ``today``'s month.  For every month the latest snapshot of
    each tool recorded before the month ends is carried forward; its monthly
    cost counts only when that snapshot's status is Active or Trial.
    """

    if not entries:
        return []

    first = min(entry.recorded_at for entry in entries).date()
    latest_by_tool: dict[str, CostHistoryEntry] = {}
    ordered = sorted(entries, key=lambda entry: entry.recorded_at)
    position = 0

    series: list[tuple[date, float]] = []
    current = month_start(first)
    while current <= today:
        cutoff = _end_of_month(current)
        while position < len(ordered) and ordered[position].recorded_at <= cutoff:
            entry = ordered[position]
            latest_by_tool[entry.tool_id] = entry
            position += 1
        total = sum(
            entry.monthly_cost for entry in latest_by_tool.values() if entry.status.is_active
        )
        series.append((current, round_currency(total)))
        current = add_months(current, 1)
    return series


def _end_of_month(value: date) -> datetime:
    last_day = add_months(value, 1) - timedelta(days=1)
    return datetime.combine(last_day, time.max)


def renewal_month_index(tool: TrackedTool) -> Optional[int]:
    renewal = parse_iso_date(tool.renewal_date)
    return renewal.month - 1 if renewal is not None else None
