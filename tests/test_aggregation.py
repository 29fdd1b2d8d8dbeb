from datetime import date, datetime

from conftest import TODAY, make_tool

from stack_tracker.aggregation import (
    category_breakdown,
    compute_stats,
    compute_trend,
    cost_history_series,
    top_tools,
)
from stack_tracker.models import (
    BillingCycle,
    CostHistoryEntry,
    PortfolioStats,
    SubscriptionStatus,
)


class TestComputeStats:
    def test_empty_collection_is_all_zero(self):
        assert compute_stats([], TODAY) == PortfolioStats(0.0, 0.0, 0, 0)

    def test_totals_and_counts(self):
        tools = [
            make_tool(monthly_cost=10, yearly_cost=120, renewal_date="2026-10-18"),
            make_tool(monthly_cost=20, yearly_cost=240, status=SubscriptionStatus.TRIAL, renewal_date="2026-10-25"),
            make_tool(monthly_cost=5, yearly_cost=60, status=SubscriptionStatus.PAUSED, renewal_date="2026-10-26"),
            make_tool(monthly_cost=1, yearly_cost=12, status=SubscriptionStatus.INACTIVE, renewal_date="garbage"),
            make_tool(monthly_cost=2, yearly_cost=24, status=SubscriptionStatus.EXPIRED, renewal_date="2026-10-17"),
        ]
        stats = compute_stats(tools, TODAY)
        assert stats.total_monthly == 38.0
        assert stats.total_yearly == 456.0
        assert stats.active_count == 2
        assert stats.upcoming_renewal_count == 2

    def test_no_renewals_in_window(self):
        tools = [make_tool(renewal_date="2027-01-01"), make_tool(renewal_date="")]
        assert compute_stats(tools, TODAY).upcoming_renewal_count == 0

    def test_float_noise_is_rounded_away(self):
        tools = [make_tool(monthly_cost=0.1, yearly_cost=1.2), make_tool(monthly_cost=0.2, yearly_cost=2.4)]
        assert compute_stats(tools, TODAY).total_monthly == 0.3


class TestComputeTrend:
    def test_twelve_points_starting_at_current_month(self):
        points = compute_trend([], TODAY)
        assert len(points) == 12
        assert [point.month for point in points[:4]] == [9, 10, 11, 0]
        assert points[0].label == "Oct"
        assert points[3].label == "Jan"
        assert all(point.total == 0 for point in points)

    def test_yearly_tool_fires_only_in_renewal_month(self):
        tool = make_tool(
            billing_cycle=BillingCycle.YEARLY,
            monthly_cost=100,
            yearly_cost=1200,
            renewal_date="2027-01-15",
        )
        totals = [point.total for point in compute_trend([tool], TODAY)]
        assert totals[3] == 1200
        assert sum(totals) == 1200
        assert totals.count(0) == 11

    def test_full_year_monthly_tool_fires_every_month(self):
        tool = make_tool(monthly_cost=30, yearly_cost=360, renewal_date="not a date")
        assert [point.total for point in compute_trend([tool], TODAY)] == [30] * 12

    def test_explicit_usage_months(self):
        tool = make_tool(monthly_cost=40, yearly_cost=80, months_per_year=2, usage_months=(5, 6))
        points = compute_trend([tool], TODAY)
        firing = [point.month for point in points if point.total]
        assert sorted(firing) == [5, 6]
        assert points[8].total == 40 and points[9].total == 40

    def test_contiguous_window_from_renewal_month(self):
        tool = make_tool(monthly_cost=10, yearly_cost=30, months_per_year=3, renewal_date="2026-12-01")
        totals = [point.total for point in compute_trend([tool], TODAY)]
        assert totals == [0, 0, 10, 10, 10, 0, 0, 0, 0, 0, 0, 0]

    def test_malformed_dates_never_match(self):
        tools = [
            make_tool(billing_cycle=BillingCycle.YEARLY, yearly_cost=500, renewal_date="31/02/2027"),
            make_tool(monthly_cost=10, yearly_cost=30, months_per_year=3, renewal_date=""),
        ]
        assert all(point.total == 0 for point in compute_trend(tools, TODAY))

    def test_totals_round_half_up(self):
        tools = [make_tool(monthly_cost=12.25), make_tool(monthly_cost=0.25)]
        assert compute_trend(tools, TODAY)[0].total == 13


def test_category_breakdown_sorted_by_cost():
    tools = [
        make_tool(category="HR", monthly_cost=10),
        make_tool(category="Marketing", monthly_cost=25),
        make_tool(category="Marketing", monthly_cost=5),
        make_tool(category="", monthly_cost=1),
    ]
    assert category_breakdown(tools) == [("Marketing", 30.0), ("HR", 10.0), ("Uncategorised", 1.0)]


def test_top_tools_limits_and_orders():
    tools = [make_tool(name=name, monthly_cost=cost) for name, cost in [("a", 5), ("b", 50), ("c", 20)]]
    assert [tool.name for tool in top_tools(tools, 2)] == ["b", "c"]


class TestCostHistorySeries:
    def test_empty_history(self):
        assert cost_history_series([], TODAY) == []

    def test_carries_forward_latest_snapshot_per_tool(self):
        entries = [
            CostHistoryEntry("a", 100.0, 1200.0, SubscriptionStatus.ACTIVE, datetime(2026, 8, 10, 9, 0)),
            CostHistoryEntry("b", 50.0, 600.0, SubscriptionStatus.TRIAL, datetime(2026, 9, 5, 12, 0)),
            CostHistoryEntry("a", 100.0, 1200.0, SubscriptionStatus.PAUSED, datetime(2026, 10, 1, 8, 0)),
        ]
        assert cost_history_series(entries, TODAY) == [
            (date(2026, 8, 1), 100.0),
            (date(2026, 9, 1), 150.0),
            (date(2026, 10, 1), 50.0),
        ]

    def test_spans_year_boundary(self):
        entries = [CostHistoryEntry("a", 10.0, 120.0, SubscriptionStatus.ACTIVE, datetime(2025, 12, 31, 23, 0))]
        series = cost_history_series(entries, date(2026, 2, 3))
        assert [month for month, _ in series] == [date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1)]
        assert all(cost == 10.0 for _, cost in series)
