from conftest import TODAY, make_tool

from stack_tracker.exporters import EXPORT_COLUMNS, export_filename, export_tools_csv, tools_to_dataframe
from stack_tracker.filters import FilterTab, ToolFilter, apply_filters
from stack_tracker.models import SubscriptionStatus


def _tools():
    return [
        make_tool(name="Slack", category="Administration", owner="Esther Schwan"),
        make_tool(name="Canva", category="Grafik", owner="Sven Rittau", status=SubscriptionStatus.TRIAL),
        make_tool(name="Zoom", category="Audio & Video", owner="Sven Rittau", status=SubscriptionStatus.INACTIVE),
        make_tool(name="HubSpot", category="Sales", owner="Verena Lindner", renewal_date="2026-10-20"),
    ]


def _names(tools):
    return [tool.name for tool in tools]


class TestApplyFilters:
    def test_default_filter_matches_everything(self):
        assert len(apply_filters(_tools(), ToolFilter(), TODAY)) == 4

    def test_search_covers_name_category_and_owner(self):
        assert _names(apply_filters(_tools(), ToolFilter(search="SVEN"), TODAY)) == ["Canva", "Zoom"]
        assert _names(apply_filters(_tools(), ToolFilter(search="grafik"), TODAY)) == ["Canva"]

    def test_active_tab_includes_trials(self):
        assert _names(apply_filters(_tools(), ToolFilter(tab=FilterTab.ACTIVE), TODAY)) == ["Slack", "Canva", "HubSpot"]

    def test_inactive_tab(self):
        assert _names(apply_filters(_tools(), ToolFilter(tab=FilterTab.INACTIVE), TODAY)) == ["Zoom"]

    def test_upcoming_tab_uses_renewal_window(self):
        assert _names(apply_filters(_tools(), ToolFilter(tab=FilterTab.UPCOMING), TODAY)) == ["HubSpot"]

    def test_categories_and_owners_combine(self):
        criteria = ToolFilter(categories=["Grafik", "Audio & Video"], owners=["Sven Rittau"], tab=FilterTab.ACTIVE)
        assert _names(apply_filters(_tools(), criteria, TODAY)) == ["Canva"]


class TestExport:
    def test_dataframe_layout(self):
        frame = tools_to_dataframe(_tools())
        assert list(frame.columns) == list(EXPORT_COLUMNS)
        assert len(frame) == 4

    def test_csv_uses_stored_costs(self):
        tool = make_tool(name="Figma", monthly_cost=151.26, yearly_cost=1815.12, quantity=2)
        text = export_tools_csv([tool])
        assert text.startswith("\ufeff")
        header, row = text.lstrip("\ufeff").splitlines()
        assert header.split(";") == list(EXPORT_COLUMNS)
        values = dict(zip(header.split(";"), row.split(";")))
        assert values["Monthly cost"] == "151.26"
        assert values["Yearly cost"] == "1815.12"
        assert values["Licences"] == "2"
        assert values["Status"] == "Active"

    def test_empty_export_has_header_only(self):
        assert export_tools_csv([]).lstrip("\ufeff").splitlines() == [";".join(EXPORT_COLUMNS)]

    def test_filename(self):
        assert export_filename(TODAY) == "saas-stack-2026-10-18.csv"
