"""SQLite persistence layer for the stack_tracker backend.

The repository provides a small, well-typed API that hides SQL details from the
rest of the code.  It stores tools exactly as handed over: cost fields arrive
already normalised and are never recomputed here.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .models import (
    BillingCycle,
    Contract,
    ContractBillingCycle,
    CostHistoryEntry,
    ExchangeRate,
    SubscriptionStatus,
    TrackedTool,
)

Params = Union[Sequence[Any], Mapping[str, Any]]


class RecordNotFoundError(LookupError):
    """Raised when an id does not exist in the store."""

    kind = "Record"

    def __init__(self, record_id: str) -> None:
        super().__init__(f"{self.kind} {record_id!r} not found")
        self.record_id = record_id


class ToolNotFoundError(RecordNotFoundError):
    kind = "Tool"


class ContractNotFoundError(RecordNotFoundError):
    kind = "Contract"


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        # FastAPI runs sync routes in a thread pool, so the connection is
        # shared across threads and every statement runs under ``lock``.
        # Callers doing read-modify-write hold the same (re-entrant) lock.
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self.lock = threading.RLock()
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        with self.lock:
            self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self.lock:
            cursor = self._connection.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS tools (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category TEXT,
                    description TEXT,
                    url TEXT,
                    owner TEXT,
                    added_by TEXT,
                    status TEXT NOT NULL,
                    quantity INTEGER NOT NULL DEFAULT 1,
                    billing_cycle TEXT NOT NULL DEFAULT 'monthly',
                    months_per_year INTEGER NOT NULL DEFAULT 12,
                    usage_months TEXT NOT NULL DEFAULT '[]',
                    monthly_cost REAL NOT NULL,
                    yearly_cost REAL NOT NULL,
                    renewal_date TEXT,
                    cancellation_date TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS cost_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tool_id TEXT NOT NULL,
                    monthly_cost REAL NOT NULL,
                    yearly_cost REAL NOT NULL,
                    status TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS contracts (
                    id TEXT PRIMARY KEY,
                    provider TEXT NOT NULL,
                    description TEXT,
                    category TEXT NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT NOT NULL,
                    billing_cycle TEXT NOT NULL,
                    status TEXT NOT NULL,
                    assigned_event TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS contract_categories (
                    name TEXT PRIMARY KEY
                );

                CREATE TABLE IF NOT EXISTS fx_rates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    base TEXT NOT NULL,
                    quote TEXT NOT NULL,
                    valuation_date TEXT NOT NULL,
                    rate REAL NOT NULL,
                    source TEXT NOT NULL,
                    UNIQUE(base, quote, valuation_date, source)
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            self._connection.commit()

    # ------------------------------------------------------------------
    # Tool persistence
    # ------------------------------------------------------------------
    def list_tools(self) -> list[TrackedTool]:
        """Return every tool, newest first."""

        rows = self._fetchall("SELECT * FROM tools ORDER BY created_at DESC, name ASC")
        return [_row_to_tool(row) for row in rows]

    def get_tool(self, tool_id: str) -> TrackedTool:
        row = self._fetchone("SELECT * FROM tools WHERE id = ?", (tool_id,))
        if row is None:
            raise ToolNotFoundError(tool_id)
        return _row_to_tool(row)

    def insert_tool(self, tool: TrackedTool) -> TrackedTool:
        self._write(
            """
            INSERT INTO tools (
                id, name, category, description, url, owner, added_by, status,
                quantity, billing_cycle, months_per_year, usage_months,
                monthly_cost, yearly_cost, renewal_date, cancellation_date,
                created_at
            ) VALUES (
                :id, :name, :category, :description, :url, :owner, :added_by, :status,
                :quantity, :billing_cycle, :months_per_year, :usage_months,
                :monthly_cost, :yearly_cost, :renewal_date, :cancellation_date,
                :created_at
            )
            """,
            _tool_params(tool),
        )
        return tool

    def update_tool(self, tool: TrackedTool) -> TrackedTool:
        """Replace the stored row for ``tool.id`` with ``tool``."""

        updated = self._write(
            """
            UPDATE tools SET
                name=:name,
                category=:category,
                description=:description,
                url=:url,
                owner=:owner,
                added_by=:added_by,
                status=:status,
                quantity=:quantity,
                billing_cycle=:billing_cycle,
                months_per_year=:months_per_year,
                usage_months=:usage_months,
                monthly_cost=:monthly_cost,
                yearly_cost=:yearly_cost,
                renewal_date=:renewal_date,
                cancellation_date=:cancellation_date
            WHERE id=:id
            """,
            _tool_params(tool),
        )
        if updated == 0:
            raise ToolNotFoundError(tool.id)
        return tool

    def delete_tool(self, tool_id: str) -> None:
        if self._write("DELETE FROM tools WHERE id = ?", (tool_id,)) == 0:
            raise ToolNotFoundError(tool_id)

    # ------------------------------------------------------------------
    # Cost history
    # ------------------------------------------------------------------
    def record_snapshot(self, entry: CostHistoryEntry) -> None:
        self._write(
            """
            INSERT INTO cost_history (tool_id, monthly_cost, yearly_cost, status, recorded_at)
            VALUES (:tool_id, :monthly_cost, :yearly_cost, :status, :recorded_at)
            """,
            {
                "tool_id": entry.tool_id,
                "monthly_cost": entry.monthly_cost,
                "yearly_cost": entry.yearly_cost,
                "status": entry.status.value,
                "recorded_at": entry.recorded_at.isoformat(),
            },
        )

    def list_history(self, tool_id: Optional[str] = None) -> list[CostHistoryEntry]:
        """Return snapshots oldest first, optionally for a single tool."""

        if tool_id is None:
            rows = self._fetchall("SELECT * FROM cost_history ORDER BY recorded_at ASC, id ASC")
        else:
            rows = self._fetchall(
                "SELECT * FROM cost_history WHERE tool_id = ? ORDER BY recorded_at ASC, id ASC",
                (tool_id,),
            )
        return [
            CostHistoryEntry(
                tool_id=row["tool_id"],
                monthly_cost=float(row["monthly_cost"]),
                yearly_cost=float(row["yearly_cost"]),
                status=SubscriptionStatus(row["status"]),
                recorded_at=datetime.fromisoformat(row["recorded_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------
    def list_contracts(self) -> list[Contract]:
        """Return every contract, newest first."""

        rows = self._fetchall("SELECT * FROM contracts ORDER BY created_at DESC, provider ASC")
        return [_row_to_contract(row) for row in rows]

    def get_contract(self, contract_id: str) -> Contract:
        row = self._fetchone("SELECT * FROM contracts WHERE id = ?", (contract_id,))
        if row is None:
            raise ContractNotFoundError(contract_id)
        return _row_to_contract(row)

    def insert_contract(self, contract: Contract) -> Contract:
        self._write(
            """
            INSERT INTO contracts (
                id, provider, description, category, amount, currency,
                billing_cycle, status, assigned_event, created_at
            ) VALUES (
                :id, :provider, :description, :category, :amount, :currency,
                :billing_cycle, :status, :assigned_event, :created_at
            )
            """,
            _contract_params(contract),
        )
        return contract

    def update_contract(self, contract: Contract) -> Contract:
        updated = self._write(
            """
            UPDATE contracts SET
                provider=:provider,
                description=:description,
                category=:category,
                amount=:amount,
                currency=:currency,
                billing_cycle=:billing_cycle,
                status=:status,
                assigned_event=:assigned_event
            WHERE id=:id
            """,
            _contract_params(contract),
        )
        if updated == 0:
            raise ContractNotFoundError(contract.id)
        return contract

    def delete_contract(self, contract_id: str) -> None:
        if self._write("DELETE FROM contracts WHERE id = ?", (contract_id,)) == 0:
            raise ContractNotFoundError(contract_id)

    def list_contract_categories(self) -> list[str]:
        rows = self._fetchall("SELECT name FROM contract_categories ORDER BY name ASC")
        return [str(row["name"]) for row in rows]

    def add_contract_category(self, name: str) -> None:
        self._write("INSERT OR IGNORE INTO contract_categories (name) VALUES (?)", (name,))

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------
    def upsert_fx_rates(self, rates: Iterable[ExchangeRate]) -> None:
        with self.lock:
            cursor = self._connection.cursor()
            for rate in rates:
                cursor.execute(
                    """
                    INSERT OR REPLACE INTO fx_rates (base, quote, valuation_date, rate, source)
                    VALUES (:base, :quote, :valuation_date, :rate, :source)
                    """,
                    {
                        "base": rate.base.upper(),
                        "quote": rate.quote.upper(),
                        "valuation_date": rate.valuation_date.isoformat(),
                        "rate": rate.rate,
                        "source": rate.source,
                    },
                )
            self._connection.commit()

    def get_latest_fx_rate(self, base: str, quote: str) -> Optional[ExchangeRate]:
        row = self._fetchone(
            """
            SELECT base, quote, valuation_date, rate, source
            FROM fx_rates
            WHERE base = ? AND quote = ?
            ORDER BY date(valuation_date) DESC, id DESC
            LIMIT 1
            """,
            (base.upper(), quote.upper()),
        )
        if row is None:
            return None
        return ExchangeRate(
            base=row["base"],
            quote=row["quote"],
            valuation_date=date.fromisoformat(row["valuation_date"]),
            rate=float(row["rate"]),
            source=row["source"],
        )

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        self._write("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        if row is None:
            return default
        return str(row["value"])

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------
    def _fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        with self.lock:
            return self._connection.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        with self.lock:
            return self._connection.execute(sql, params).fetchone()

    def _write(self, sql: str, params: Params = ()) -> int:
        """Execute and commit a single statement, returning the affected row count."""

        with self.lock:
            cursor = self._connection.execute(sql, params)
            self._connection.commit()
            return cursor.rowcount


def _tool_params(tool: TrackedTool) -> dict[str, object]:
    return {
        "id": tool.id,
        "name": tool.name,
        "category": tool.category,
        "description": tool.description,
        "url": tool.url,
        "owner": tool.owner,
        "added_by": tool.added_by,
        "status": tool.status.value,
        "quantity": tool.quantity,
        "billing_cycle": tool.billing_cycle.value,
        "months_per_year": tool.months_per_year,
        "usage_months": json.dumps(list(tool.usage_months)),
        "monthly_cost": tool.monthly_cost,
        "yearly_cost": tool.yearly_cost,
        "renewal_date": tool.renewal_date,
        "cancellation_date": tool.cancellation_date,
        "created_at": tool.created_at.isoformat(),
    }


def _row_to_tool(row: sqlite3.Row) -> TrackedTool:
    return TrackedTool(
        id=row["id"],
        name=row["name"],
        category=row["category"] or "",
        description=row["description"] or "",
        url=row["url"] or "",
        owner=row["owner"] or "",
        added_by=row["added_by"] or "",
        status=SubscriptionStatus(row["status"]),
        quantity=int(row["quantity"]),
        billing_cycle=BillingCycle(row["billing_cycle"]),
        months_per_year=int(row["months_per_year"]),
        usage_months=tuple(json.loads(row["usage_months"] or "[]")),
        monthly_cost=float(row["monthly_cost"]),
        yearly_cost=float(row["yearly_cost"]),
        renewal_date=row["renewal_date"] or "",
        cancellation_date=row["cancellation_date"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _contract_params(contract: Contract) -> dict[str, object]:
    return {
        "id": contract.id,
        "provider": contract.provider,
        "description": contract.description,
        "category": contract.category,
        "amount": contract.amount,
        "currency": contract.currency,
        "billing_cycle": contract.billing_cycle.value,
        "status": contract.status,
        "assigned_event": contract.assigned_event,
        "created_at": contract.created_at.isoformat(),
    }


def _row_to_contract(row: sqlite3.Row) -> Contract:
    return Contract(
        id=row["id"],
        provider=row["provider"],
        description=row["description"] or "",
        category=row["category"],
        amount=float(row["amount"]),
        currency=row["currency"],
        billing_cycle=ContractBillingCycle(row["billing_cycle"]),
        status=row["status"],
        assigned_event=row["assigned_event"] or "",
        created_at=datetime.fromisoformat(row["created_at"]),
    )
