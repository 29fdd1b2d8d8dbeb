"""CSV export of the tool inventory and the contract list.

The export is meant to be opened in a German-locale Excel, hence the semicolon
delimiter and the UTF-8 byte-order mark.  Costs are written exactly as stored.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable

import pandas as pd

from .models import Contract, TrackedTool

EXPORT_COLUMNS: tuple[str, ...] = (
    "Name",
    "Category",
    "Description",
    "Monthly cost",
    "Yearly cost",
    "Status",
    "Owner",
    "Renewal date",
    "Cancellation date",
    "Licences",
    "Months per year",
    "URL",
)

CONTRACT_EXPORT_COLUMNS: tuple[str, ...] = (
    "Partner",
    "Description",
    "Category",
    "Event",
    "Billing cycle",
    "Amount (net)",
    "Currency",
    "Status",
    "Created",
)


def tools_to_dataframe(tools: Iterable[TrackedTool]) -> pd.DataFrame:
    """Return one row per tool with the export column layout."""

    rows = [
        {
            "Name": tool.name,
            "Category": tool.category,
            "Description": tool.description,
            "Monthly cost": tool.monthly_cost,
            "Yearly cost": tool.yearly_cost,
            "Status": tool.status.value,
            "Owner": tool.owner,
            "Renewal date": tool.renewal_date,
            "Cancellation date": tool.cancellation_date or "",
            "Licences": tool.quantity,
            "Months per year": tool.months_per_year,
            "URL": tool.url,
        }
        for tool in tools
    ]
    return pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))


def export_tools_csv(tools: Iterable[TrackedTool]) -> str:
    """Serialise ``tools`` to CSV text prefixed with a BOM for Excel."""

    return _to_excel_csv(tools_to_dataframe(tools))


def export_filename(today: date) -> str:
    return f"saas-stack-{today.isoformat()}.csv"


def contracts_to_dataframe(contracts: Iterable[Contract]) -> pd.DataFrame:
    rows = [
        {
            "Partner": contract.provider,
            "Description": contract.description,
            "Category": contract.category,
            "Event": contract.assigned_event,
            "Billing cycle": contract.billing_cycle.value,
            "Amount (net)": contract.amount,
            "Currency": contract.currency,
            "Status": contract.status,
            "Created": contract.created_at.date().isoformat(),
        }
        for contract in contracts
    ]
    return pd.DataFrame(rows, columns=list(CONTRACT_EXPORT_COLUMNS))


def export_contracts_csv(contracts: Iterable[Contract]) -> str:
    return _to_excel_csv(contracts_to_dataframe(contracts))


def contracts_export_filename(today: date) -> str:
    return f"contracts-export-{today.isoformat()}.csv"


def _to_excel_csv(dataframe: pd.DataFrame) -> str:
    csv_text = dataframe.to_csv(sep=";", index=False, lineterminator="\n")
    return "\ufeff" + csv_text
