"""FastAPI application exposing the stack_tracker backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from typing import Annotated, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import load_config
from .database import RecordNotFoundError, SQLiteRepository
from .filters import FilterTab, ToolFilter
from .rate_service import ExchangeRateService
from .services import (
    ContractService,
    InvalidChangeError,
    ToolService,
    invoice_to_form,
    suggestion_to_form,
)
from .suggestion_service import SuggestionService

logger = logging.getLogger(__name__)

# UI preferences persisted server-side.
SETTING_KEYS = frozenset({"dark_mode", "onboarding_seen"})
# Tool fields an edit may reset by sending an explicit null.
CLEARABLE_FIELDS = frozenset({"cancellation_date", "description", "url", "owner", "added_by", "category"})


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    logging.basicConfig(level=config.log_level)
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    tool_service = ToolService(
        config,
        repository,
        ExchangeRateService(config),
        SuggestionService(config),
    )

    app.state.config = config
    app.state.repository = repository
    app.state.tools = tool_service
    app.state.contracts = ContractService(repository)
    logger.info("stack_tracker started with database %s", config.database_file)

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="stack_tracker backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(_: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidChangeError)
async def invalid_change_handler(_: Request, exc: InvalidChangeError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# Request bodies ------------------------------------------------------------

Amount = Union[float, str, None]


class ToolUpdatePayload(BaseModel):
    """Partial tool form.  Only fields that are sent are applied."""

    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    owner: Optional[str] = None
    added_by: Optional[str] = None
    status: Optional[str] = None
    renewal_date: Optional[str] = None
    cancellation_date: Optional[str] = None
    raw_amount: Amount = None
    price_mode: Optional[str] = None
    quantity: Amount = None
    currency: Optional[str] = None
    exchange_rate: Amount = None
    tax_inclusive: Optional[bool] = None
    billing_cycle: Optional[str] = None
    months_per_year: Amount = None
    usage_months: Optional[list[int]] = None


class ToolPayload(ToolUpdatePayload):
    name: str
    renewal_date: str
    raw_amount: Amount = 0


class BulkUpdatePayload(BaseModel):
    ids: list[str] = Field(min_length=1)
    changes: dict[str, str]


class BulkDeletePayload(BaseModel):
    ids: list[str] = Field(min_length=1)


class SuggestPayload(BaseModel):
    name: str = Field(min_length=1)


class InvoicePayload(BaseModel):
    data: str = Field(min_length=1, description="Base64 encoded file, optionally as a data: URL")
    mime_type: str = "application/pdf"


class ContractUpdatePayload(BaseModel):
    provider: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    amount: Amount = None
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    status: Optional[str] = None
    assigned_event: Optional[str] = None


class ContractPayload(ContractUpdatePayload):
    provider: str = Field(min_length=1)
    amount: Amount = 0


class CategoryPayload(BaseModel):
    name: str = Field(min_length=1)


# Dependency injection ------------------------------------------------------

def get_tool_service() -> ToolService:
    service: ToolService = app.state.tools
    return service


def get_repository() -> SQLiteRepository:
    repository: SQLiteRepository = app.state.repository
    return repository


def get_contract_service() -> ContractService:
    service: ContractService = app.state.contracts
    return service


ToolServiceDep = Annotated[ToolService, Depends(get_tool_service)]
ContractServiceDep = Annotated[ContractService, Depends(get_contract_service)]


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get("/tools")
def list_tools(
    tool_service: ToolServiceDep,
    search: str = "",
    tab: FilterTab = FilterTab.ALL,
    category: Annotated[list[str] | None, Query()] = None,
    owner: Annotated[list[str] | None, Query()] = None,
    as_of: Optional[date] = None,
) -> dict[str, object]:
    criteria = ToolFilter(search=search, tab=tab, categories=category or [], owners=owner or [])
    tools = tool_service.filtered(criteria, as_of)
    return {"tools": [tool.to_dict() for tool in tools], "count": len(tools)}


@app.post("/tools", status_code=201)
def create_tool(payload: ToolPayload, tool_service: ToolServiceDep) -> dict[str, object]:
    """Normalise the submitted pricing and store the new tool."""

    tool = tool_service.add_tool(payload.model_dump(exclude_none=True))
    return tool.to_dict()


@app.get("/tools/{tool_id}")
def get_tool(tool_id: str, tool_service: ToolServiceDep) -> dict[str, object]:
    return tool_service.get_tool(tool_id).to_dict()


@app.put("/tools/{tool_id}")
def update_tool(tool_id: str, payload: ToolUpdatePayload, tool_service: ToolServiceDep) -> dict[str, object]:
    tool = tool_service.update_tool(tool_id, _edit_changes(payload))
    return tool.to_dict()


@app.delete("/tools/{tool_id}")
def delete_tool(tool_id: str, tool_service: ToolServiceDep) -> dict[str, str]:
    tool_service.remove_tool(tool_id)
    return {"deleted": tool_id}


@app.post("/tools/bulk-update")
def bulk_update(payload: BulkUpdatePayload, tool_service: ToolServiceDep) -> dict[str, object]:
    tools = tool_service.bulk_update(payload.ids, payload.changes)
    return {"tools": [tool.to_dict() for tool in tools], "count": len(tools)}


@app.post("/tools/bulk-delete")
def bulk_delete(payload: BulkDeletePayload, tool_service: ToolServiceDep) -> dict[str, int]:
    return {"deleted": tool_service.bulk_delete(payload.ids)}


@app.get("/stats")
def stats(tool_service: ToolServiceDep, as_of: Optional[date] = None) -> dict[str, object]:
    return asdict(tool_service.stats(as_of))


@app.get("/trend")
def trend(tool_service: ToolServiceDep, as_of: Optional[date] = None) -> dict[str, object]:
    points = tool_service.trend(as_of)
    return {"points": [asdict(point) for point in points]}


@app.get("/analytics/categories")
def categories(
    tool_service: ToolServiceDep,
    limit: Annotated[int, Query(ge=1, le=50)] = 5,
) -> dict[str, object]:
    breakdown = tool_service.breakdown(limit)
    return {
        "categories": [
            {"category": category, "monthly_cost": value} for category, value in breakdown["categories"]
        ],
        "top_tools": [
            {"id": tool.id, "name": tool.name, "monthly_cost": tool.monthly_cost}
            for tool in breakdown["top_tools"]
        ],
    }


@app.get("/history")
def history(tool_service: ToolServiceDep, tool_id: Optional[str] = None) -> dict[str, object]:
    entries = tool_service.history(tool_id)
    return {
        "entries": [
            {
                "tool_id": entry.tool_id,
                "monthly_cost": entry.monthly_cost,
                "yearly_cost": entry.yearly_cost,
                "status": entry.status.value,
                "recorded_at": entry.recorded_at.isoformat(timespec="seconds"),
            }
            for entry in entries
        ]
    }


@app.get("/history/series")
def history_series(tool_service: ToolServiceDep, as_of: Optional[date] = None) -> dict[str, object]:
    series = tool_service.history_series(as_of)
    return {"points": [{"month": month.isoformat(), "cost": cost} for month, cost in series]}


@app.get("/export.csv")
def export_csv(
    tool_service: ToolServiceDep,
    search: str = "",
    tab: FilterTab = FilterTab.ALL,
    as_of: Optional[date] = None,
) -> Response:
    criteria = ToolFilter(search=search, tab=tab) if search or tab is not FilterTab.ALL else None
    filename, content = tool_service.export_csv(criteria, as_of)
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/fx/rate")
def exchange_rate(tool_service: ToolServiceDep) -> dict[str, object]:
    rate = tool_service.current_exchange_rate()
    return {
        "base": rate.base,
        "quote": rate.quote,
        "valuation_date": rate.valuation_date.isoformat(),
        "rate": rate.rate,
        "source": rate.source,
    }


@app.post("/ai/suggest")
def suggest_tool(payload: SuggestPayload, tool_service: ToolServiceDep) -> dict[str, object]:
    suggestion = tool_service.suggest(payload.name)
    if suggestion is None:
        raise HTTPException(status_code=503, detail="Suggestion unavailable. Check the Gemini API key.")
    return {
        "suggestion": asdict(suggestion),
        "form": {key: getattr(value, "value", value) for key, value in suggestion_to_form(payload.name, suggestion).items()},
    }


@app.post("/ai/invoice")
def read_invoice(payload: InvoicePayload, tool_service: ToolServiceDep) -> dict[str, object]:
    """Pre-fill the tool form from an uploaded invoice."""

    details = tool_service.read_invoice(payload.data, payload.mime_type)
    if details is None:
        raise HTTPException(status_code=503, detail="Invoice analysis unavailable. Check the Gemini API key.")
    return {
        "invoice": asdict(details),
        "form": {key: getattr(value, "value", value) for key, value in invoice_to_form(details).items()},
    }


@app.post("/ai/audit")
def audit_stack(tool_service: ToolServiceDep) -> dict[str, str]:
    return {"report": tool_service.audit()}


# Contracts -----------------------------------------------------------------


@app.get("/contracts")
def list_contracts(contract_service: ContractServiceDep, event: Optional[str] = None) -> dict[str, object]:
    contracts = contract_service.list_contracts(event)
    return {"contracts": [contract.to_dict() for contract in contracts], "count": len(contracts)}


@app.post("/contracts", status_code=201)
def create_contract(payload: ContractPayload, contract_service: ContractServiceDep) -> dict[str, object]:
    return contract_service.add_contract(payload.model_dump(exclude_none=True)).to_dict()


@app.get("/contracts/summary")
def contract_summary(contract_service: ContractServiceDep, event: Optional[str] = None) -> dict[str, object]:
    return contract_service.summary(event)


@app.get("/contracts/categories")
def contract_categories(contract_service: ContractServiceDep) -> dict[str, list[str]]:
    return {"categories": contract_service.categories()}


@app.post("/contracts/categories", status_code=201)
def add_contract_category(payload: CategoryPayload, contract_service: ContractServiceDep) -> dict[str, list[str]]:
    return {"categories": contract_service.add_category(payload.name)}


@app.get("/contracts/export.csv")
def export_contracts(
    contract_service: ContractServiceDep,
    event: Optional[str] = None,
    as_of: Optional[date] = None,
) -> Response:
    filename, content = contract_service.export_csv(event, as_of)
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/contracts/{contract_id}")
def get_contract(contract_id: str, contract_service: ContractServiceDep) -> dict[str, object]:
    return contract_service.get_contract(contract_id).to_dict()


@app.put("/contracts/{contract_id}")
def update_contract(
    contract_id: str,
    payload: ContractUpdatePayload,
    contract_service: ContractServiceDep,
) -> dict[str, object]:
    changes = _edit_changes(payload, clearable=frozenset({"description", "assigned_event"}))
    return contract_service.update_contract(contract_id, changes).to_dict()


@app.delete("/contracts/{contract_id}")
def delete_contract(contract_id: str, contract_service: ContractServiceDep) -> dict[str, str]:
    contract_service.remove_contract(contract_id)
    return {"deleted": contract_id}


# Settings ------------------------------------------------------------------


@app.get("/settings/{key}")
def get_setting(key: str, repository: Annotated[SQLiteRepository, Depends(get_repository)]) -> dict[str, object]:
    _check_setting_key(key)
    value = repository.get_setting(key, "false")
    return {"key": key, "value": value == "true"}


@app.put("/settings/{key}")
def set_setting(
    key: str,
    value: bool,
    repository: Annotated[SQLiteRepository, Depends(get_repository)],
) -> dict[str, object]:
    _check_setting_key(key)
    repository.set_setting(key, "true" if value else "false")
    return {"key": key, "value": value}


def _check_setting_key(key: str) -> None:
    if key not in SETTING_KEYS:
        raise HTTPException(status_code=404, detail=f"Unknown setting {key!r}")


def _edit_changes(payload: BaseModel, clearable: frozenset[str] = CLEARABLE_FIELDS) -> dict[str, object]:
    """Return the fields sent with an edit.

    An explicit ``null`` clears a field listed in ``clearable``; for any other
    field it is ignored.
    """

    return {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in clearable
    }
