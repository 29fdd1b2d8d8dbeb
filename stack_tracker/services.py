"""High-level application services orchestrating the stack_tracker backend."""
from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Mapping, Optional

from .aggregation import (
    category_breakdown,
    compute_stats,
    compute_trend,
    cost_history_series,
    top_tools,
)
from .config import AppConfig
from .contracts import (
    assigned_events,
    build_contract,
    contract_to_form,
    contracts_total,
    filter_by_event,
)
from .database import SQLiteRepository
from .exporters import (
    contracts_export_filename,
    export_contracts_csv,
    export_filename,
    export_tools_csv,
)
from .filters import ToolFilter, apply_filters
from .models import (
    BillingCycle,
    Contract,
    CostHistoryEntry,
    CostTrendPoint,
    Currency,
    ExchangeRate,
    InvoiceDetails,
    PortfolioStats,
    PriceMode,
    ToolSuggestion,
    TrackedTool,
)
from .normalization import build_tool, tool_to_form
from .rate_service import ExchangeRateService
from .suggestion_service import SuggestionService

logger = logging.getLogger(__name__)


class InvalidChangeError(ValueError):
    """Raised when an edit tries to set fields it is not allowed to touch."""


BULK_EDITABLE_FIELDS = frozenset({"status", "owner", "category"})
DERIVED_FIELDS = frozenset({"monthly_cost", "yearly_cost"})
# Stored costs are already quantity-aggregated, converted and net, so these
# only make sense together with a new raw amount.
REPRICING_FIELDS = frozenset({"price_mode", "currency", "exchange_rate", "tax_inclusive"})


class ToolService:
    """Coordinates normalization, persistence and summarisation logic."""

    def __init__(
        self,
        config: AppConfig,
        repository: SQLiteRepository,
        rate_service: ExchangeRateService,
        suggestion_service: SuggestionService,
    ) -> None:
        self._config = config
        self._repository = repository
        self._rate_service = rate_service
        self._suggestion_service = suggestion_service

    # ------------------------------------------------------------------
    # Tool workflows
    # ------------------------------------------------------------------
    def list_tools(self) -> list[TrackedTool]:
        return self._repository.list_tools()

    def get_tool(self, tool_id: str) -> TrackedTool:
        return self._repository.get_tool(tool_id)

    def add_tool(self, form: Mapping[str, object]) -> TrackedTool:
        """Normalise a new-tool form submission and persist it."""

        _reject_derived_fields(form)
        tool = self._build(form)
        self._repository.insert_tool(tool)
        self._record_snapshot(tool)
        logger.info("Added tool %s (%s) at %.2f/month", tool.name, tool.id, tool.monthly_cost)
        return tool

    def update_tool(self, tool_id: str, changes: Mapping[str, object]) -> TrackedTool:
        """Apply an edit by re-running normalization on the merged raw input.

        Fields missing from ``changes`` are taken from the stored record, whose
        costs are re-entered as a net base-currency total.  When only the
        billing cycle changes, the stored figure matching the new cycle is used
        as the price.  Pricing adjustments (mode, currency, rate, tax) are only
        accepted together with a new ``raw_amount``.
        """

        _reject_derived_fields(changes)
        repricing = REPRICING_FIELDS & set(changes)
        if repricing and "raw_amount" not in changes:
            raise InvalidChangeError(
                f"{', '.join(sorted(repricing))} can only be changed together with raw_amount"
            )

        # Resolve any FX quote before taking the lock.
        changes = self._with_exchange_rate(changes)
        with self._repository.lock:
            existing = self._repository.get_tool(tool_id)
            form = tool_to_form(existing)
            if "billing_cycle" in changes and "raw_amount" not in changes:
                yearly = _is_yearly(changes.get("billing_cycle"))
                form["raw_amount"] = existing.yearly_cost if yearly else existing.monthly_cost
            form.update(changes)

            tool = self._build(form, tool_id=existing.id, created_at=existing.created_at)
            self._repository.update_tool(tool)
            self._record_snapshot(tool)
        logger.info("Updated tool %s (%s) at %.2f/month", tool.name, tool.id, tool.monthly_cost)
        return tool

    def remove_tool(self, tool_id: str) -> None:
        self._repository.delete_tool(tool_id)
        logger.info("Removed tool %s", tool_id)

    def bulk_update(self, tool_ids: Iterable[str], changes: Mapping[str, object]) -> list[TrackedTool]:
        """Apply the same metadata change to several tools.

        Only status, owner and category may be changed in bulk; anything that
        influences cost has to go through a per-tool edit.
        """

        unsupported = set(changes) - BULK_EDITABLE_FIELDS
        if unsupported:
            raise InvalidChangeError(f"Fields cannot be bulk-updated: {', '.join(sorted(unsupported))}")
        return [self.update_tool(tool_id, changes) for tool_id in tool_ids]

    def bulk_delete(self, tool_ids: Iterable[str]) -> int:
        removed = 0
        for tool_id in tool_ids:
            self.remove_tool(tool_id)
            removed += 1
        return removed

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------
    def stats(self, today: Optional[date] = None) -> PortfolioStats:
        return compute_stats(
            self._repository.list_tools(),
            today or date.today(),
            renewal_window_days=self._config.renewal_window_days,
        )

    def trend(self, today: Optional[date] = None) -> list[CostTrendPoint]:
        return compute_trend(self._repository.list_tools(), today or date.today())

    def breakdown(self, limit: int = 5) -> dict[str, object]:
        tools = self._repository.list_tools()
        return {
            "categories": category_breakdown(tools),
            "top_tools": top_tools(tools, limit),
        }

    def history(self, tool_id: Optional[str] = None) -> list[CostHistoryEntry]:
        return self._repository.list_history(tool_id)

    def history_series(self, today: Optional[date] = None) -> list[tuple[date, float]]:
        return cost_history_series(self._repository.list_history(), today or date.today())

    def filtered(self, criteria: ToolFilter, today: Optional[date] = None) -> list[TrackedTool]:
        return apply_filters(
            self._repository.list_tools(),
            criteria,
            today or date.today(),
            renewal_window_days=self._config.renewal_window_days,
        )

    def export_csv(self, criteria: Optional[ToolFilter] = None, today: Optional[date] = None) -> tuple[str, str]:
        """Return ``(filename, csv_text)`` for the (optionally filtered) inventory."""

        today = today or date.today()
        tools = self.filtered(criteria, today) if criteria else self._repository.list_tools()
        return export_filename(today), export_tools_csv(tools)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    def current_exchange_rate(self) -> ExchangeRate:
        """Return the foreign-to-base rate, preferring a fresh quote.

        Fresh quotes are persisted.  When the provider is unreachable the last
        stored quote is used, and only without one does the static fallback
        apply.
        """

        base = self._config.foreign_currency
        quote = self._config.base_currency
        rate = self._rate_service.fetch_latest_rate(base, quote)
        if rate is not None:
            self._repository.upsert_fx_rates([rate])
            return rate
        stored = self._repository.get_latest_fx_rate(base, quote)
        if stored is not None:
            return stored
        return self._rate_service.fallback_rate(base, quote)

    def suggest(self, tool_name: str) -> Optional[ToolSuggestion]:
        return self._suggestion_service.suggest_tool_details(tool_name)

    def read_invoice(self, data: str, mime_type: str) -> Optional[InvoiceDetails]:
        return self._suggestion_service.analyze_invoice(data, mime_type)

    def audit(self) -> str:
        return self._suggestion_service.audit_stack(self._repository.list_tools())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _with_exchange_rate(self, form: Mapping[str, object]) -> dict[str, object]:
        form = dict(form)
        if _is_foreign(form.get("currency")) and form.get("exchange_rate") in (None, ""):
            form["exchange_rate"] = self.current_exchange_rate().rate
        return form

    def _build(self, form: Mapping[str, object], **identity) -> TrackedTool:
        return build_tool(
            self._with_exchange_rate(form),
            tax_rate=self._config.tax_rate,
            fallback_exchange_rate=self._config.fallback_exchange_rate,
            **identity,
        )

    def _record_snapshot(self, tool: TrackedTool) -> None:
        self._repository.record_snapshot(
            CostHistoryEntry(
                tool_id=tool.id,
                monthly_cost=tool.monthly_cost,
                yearly_cost=tool.yearly_cost,
                status=tool.status,
            )
        )


class ContractService:
    """CRUD, category list and CSV export for contracts."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self._repository = repository

    def list_contracts(self, event: Optional[str] = None) -> list[Contract]:
        return filter_by_event(self._repository.list_contracts(), event)

    def get_contract(self, contract_id: str) -> Contract:
        return self._repository.get_contract(contract_id)

    def add_contract(self, form: Mapping[str, object]) -> Contract:
        contract = build_contract(form)
        _require_provider(contract)
        with self._repository.lock:
            self._repository.add_contract_category(contract.category)
            self._repository.insert_contract(contract)
        logger.info("Added contract with %s (%s)", contract.provider, contract.id)
        return contract

    def update_contract(self, contract_id: str, changes: Mapping[str, object]) -> Contract:
        with self._repository.lock:
            existing = self._repository.get_contract(contract_id)
            form = contract_to_form(existing)
            form.update(changes)
            contract = build_contract(form, contract_id=existing.id, created_at=existing.created_at)
            _require_provider(contract)
            self._repository.add_contract_category(contract.category)
            self._repository.update_contract(contract)
        logger.info("Updated contract %s", contract.id)
        return contract

    def remove_contract(self, contract_id: str) -> None:
        self._repository.delete_contract(contract_id)
        logger.info("Removed contract %s", contract_id)

    def categories(self) -> list[str]:
        return self._repository.list_contract_categories()

    def add_category(self, name: str) -> list[str]:
        cleaned = name.strip()
        if not cleaned:
            raise InvalidChangeError("Category name must not be empty")
        self._repository.add_contract_category(cleaned)
        return self.categories()

    def summary(self, event: Optional[str] = None) -> dict[str, object]:
        contracts = self.list_contracts(event)
        return {
            "count": len(contracts),
            "total_amount": contracts_total(contracts),
            "events": assigned_events(self._repository.list_contracts()),
        }

    def export_csv(self, event: Optional[str] = None, today: Optional[date] = None) -> tuple[str, str]:
        today = today or date.today()
        return contracts_export_filename(today), export_contracts_csv(self.list_contracts(event))


def suggestion_to_form(tool_name: str, suggestion: ToolSuggestion) -> dict[str, object]:
    """Translate an AI suggestion into raw form input for :func:`build_tool`.

    The estimate is a monthly total in the base currency over a full year.
    """

    return {
        "name": tool_name,
        "category": suggestion.category,
        "description": suggestion.description,
        "url": suggestion.url,
        "raw_amount": suggestion.estimated_monthly_cost,
        "price_mode": PriceMode.TOTAL,
        "currency": Currency.BASE,
        "tax_inclusive": False,
        "billing_cycle": BillingCycle.MONTHLY,
        "months_per_year": 12,
    }


def invoice_to_form(details: InvoiceDetails) -> dict[str, object]:
    """Translate an analysed invoice into raw form input for :func:`build_tool`.

    The invoice amount is taken as a net monthly total in the base currency.
    An unknown category is left out so the form keeps its own value.
    """

    form: dict[str, object] = {
        "name": details.name,
        "description": details.description,
        "renewal_date": details.renewal_date,
        "raw_amount": details.monthly_cost,
        "price_mode": PriceMode.TOTAL,
        "currency": Currency.BASE,
        "tax_inclusive": False,
        "billing_cycle": BillingCycle.MONTHLY,
        "months_per_year": 12,
    }
    if details.category is not None:
        form["category"] = details.category
    return form


def _is_yearly(value: object) -> bool:
    try:
        return BillingCycle(value) is BillingCycle.YEARLY
    except ValueError:
        return False


def _is_foreign(value: object) -> bool:
    if value is None:
        return False
    try:
        return Currency(value) is Currency.FOREIGN
    except ValueError:
        return False


def _reject_derived_fields(form: Mapping[str, object]) -> None:
    supplied = DERIVED_FIELDS & set(form)
    if supplied:
        raise InvalidChangeError(
            f"{', '.join(sorted(supplied))} are derived from the price input and cannot be set directly"
        )


def _require_provider(contract: Contract) -> None:
    if not contract.provider:
        raise InvalidChangeError("A contract needs a provider")
