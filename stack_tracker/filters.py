"""Dashboard filtering for tracked tools."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable

from .aggregation import renews_within
from .config import DEFAULT_RENEWAL_WINDOW_DAYS
from .models import SubscriptionStatus, TrackedTool


class FilterTab(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    INACTIVE = "inactive"
    UPCOMING = "upcoming"


@dataclass(slots=True)
class ToolFilter:
    """Criteria combined with AND; empty selections match everything."""

    search: str = ""
    tab: FilterTab = FilterTab.ALL
    categories: list[str] = field(default_factory=list)
    owners: list[str] = field(default_factory=list)


def apply_filters(
    tools: Iterable[TrackedTool],
    criteria: ToolFilter,
    today: date,
    renewal_window_days: int = DEFAULT_RENEWAL_WINDOW_DAYS,
) -> list[TrackedTool]:
    search = criteria.search.strip().lower()
    categories = set(criteria.categories)
    owners = set(criteria.owners)

    matches: list[TrackedTool] = []
    for tool in tools:
        if search and not _matches_search(tool, search):
            continue
        if not _matches_tab(tool, criteria.tab, today, renewal_window_days):
            continue
        if categories and tool.category not in categories:
            continue
        if owners and tool.owner not in owners:
            continue
        matches.append(tool)
    return matches


def _matches_search(tool: TrackedTool, search: str) -> bool:
    haystacks = (tool.name, tool.category, tool.owner)
    return any(search in (value or "").lower() for value in haystacks)


def _matches_tab(tool: TrackedTool, tab: FilterTab, today: date, window_days: int) -> bool:
    if tab is FilterTab.ACTIVE:
        return tool.status.is_active
    if tab is FilterTab.INACTIVE:
        return tool.status is SubscriptionStatus.INACTIVE
    if tab is FilterTab.UPCOMING:
        return renews_within(tool, today, window_days)
    return True
