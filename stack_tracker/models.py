"""Domain models used by the stack_tracker backend.

The classes defined here are intentionally lightweight data containers that do
not know anything about persistence or transport concerns.  Cost fields on
:class:`TrackedTool` are only ever produced by
:func:`stack_tracker.normalization.build_tool`; nothing else assigns them.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4


class SubscriptionStatus(str, Enum):
    ACTIVE = "Active"
    TRIAL = "Trial"
    PAUSED = "Paused"
    EXPIRED = "Expired"
    INACTIVE = "Inactive"

    @classmethod
    def _missing_(cls, value: object) -> Optional["SubscriptionStatus"]:
        # Records created by the first web release carry German labels.
        if not isinstance(value, str):
            return None
        lookup = {
            "aktiv": cls.ACTIVE,
            "testphase": cls.TRIAL,
            "pausiert": cls.PAUSED,
            "abgelaufen": cls.EXPIRED,
            "inaktiv": cls.INACTIVE,
        }
        lookup.update({member.value.lower(): member for member in cls})
        return lookup.get(value.strip().lower())

    @property
    def is_active(self) -> bool:
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def _missing_(cls, value: object) -> Optional["BillingCycle"]:
        if isinstance(value, str):
            return {"monthly": cls.MONTHLY, "yearly": cls.YEARLY}.get(value.strip().lower())
        return None


class PriceMode(str, Enum):
    PER_UNIT = "perUnit"
    TOTAL = "total"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PriceMode"]:
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "").replace("-", "")
            return {"perunit": cls.PER_UNIT, "unit": cls.PER_UNIT, "total": cls.TOTAL}.get(key)
        return None


class Currency(str, Enum):
    """Input currencies accepted by the pricing form.

    ``BASE`` is the currency all stored costs are expressed in; ``FOREIGN`` is
    the single foreign currency that is converted on entry.
    """

    BASE = "EUR"
    FOREIGN = "USD"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Currency"]:
        if isinstance(value, str):
            lookup = {"base": cls.BASE, "foreign": cls.FOREIGN, "eur": cls.BASE, "usd": cls.FOREIGN}
            return lookup.get(value.strip().lower())
        return None


TOOL_CATEGORIES: tuple[str, ...] = (
    "Administration",
    "Audio & Video",
    "Automation",
    "Eventmanagement",
    "Finance",
    "Grafik",
    "HR",
    "Infrastructure",
    "Marketing",
    "Podcast",
    "Sales",
    "Webseite",
)

DEFAULT_CONTRACT_CATEGORY = "Other"


class ContractBillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ContractBillingCycle"]:
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            return {member.value: member for member in cls}.get(key)
        return None


@dataclass(slots=True)
class PricingInput:
    """Raw pricing values as typed into the tool form (or suggested by AI).

    Values are deliberately loosely typed: the normalization engine coerces
    them, so a form handler can pass request data through untouched.
    """

    raw_amount: object = 0.0
    price_mode: PriceMode = PriceMode.TOTAL
    quantity: object = 1
    currency: Currency = Currency.BASE
    exchange_rate: object = None
    tax_inclusive: bool = False
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    months_per_year: object = 12


@dataclass(slots=True, frozen=True)
class NormalisedCost:
    monthly_cost: float
    yearly_cost: float


@dataclass(slots=True)
class TrackedTool:
    """Canonical record of a tracked tool or subscription."""

    name: str
    renewal_date: str
    monthly_cost: float = 0.0
    yearly_cost: float = 0.0
    id: str = field(default_factory=lambda: uuid4().hex)
    category: str = ""
    description: str = ""
    url: str = ""
    owner: str = ""
    added_by: str = ""
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    quantity: int = 1
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    months_per_year: int = 12
    usage_months: tuple[int, ...] = ()
    cancellation_date: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["billing_cycle"] = self.billing_cycle.value
        payload["usage_months"] = list(self.usage_months)
        payload["created_at"] = self.created_at.isoformat(timespec="seconds")
        return payload


@dataclass(slots=True, frozen=True)
class PortfolioStats:
    total_monthly: float = 0.0
    total_yearly: float = 0.0
    active_count: int = 0
    upcoming_renewal_count: int = 0


@dataclass(slots=True, frozen=True)
class CostTrendPoint:
    """Projected spend for one calendar month (0 = January)."""

    month: int
    label: str
    total: int


@dataclass(slots=True)
class CostHistoryEntry:
    """Snapshot of a tool's canonical cost at the time it was saved."""

    tool_id: str
    monthly_cost: float
    yearly_cost: float
    status: SubscriptionStatus
    recorded_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class ExchangeRate:
    """FX rate as fetched from the provider or persisted in the database."""

    base: str
    quote: str
    valuation_date: date
    rate: float
    source: str


@dataclass(slots=True)
class ToolSuggestion:
    """Candidate values proposed by the AI suggestion service."""

    category: str
    description: str
    estimated_monthly_cost: float
    url: str


@dataclass(slots=True)
class InvoiceDetails:
    """Values read off an uploaded invoice by the AI service.

    ``category`` is ``None`` when the model answered with a category outside
    :data:`TOOL_CATEGORIES`.
    """

    name: str
    category: Optional[str]
    monthly_cost: float
    renewal_date: str
    description: str = ""


@dataclass(slots=True)
class Contract:
    """A non-SaaS contract such as a venue booking or a service provider.

    Contracts keep the amount as entered; they are not part of the tool cost
    roll-ups.
    """

    provider: str
    amount: float = 0.0
    id: str = field(default_factory=lambda: uuid4().hex)
    description: str = ""
    category: str = DEFAULT_CONTRACT_CATEGORY
    currency: str = "EUR"
    billing_cycle: ContractBillingCycle = ContractBillingCycle.MONTHLY
    status: str = "active"
    assigned_event: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["billing_cycle"] = self.billing_cycle.value
        payload["created_at"] = self.created_at.isoformat(timespec="seconds")
        return payload


__all__ = [
    "BillingCycle",
    "Contract",
    "ContractBillingCycle",
    "CostHistoryEntry",
    "CostTrendPoint",
    "Currency",
    "DEFAULT_CONTRACT_CATEGORY",
    "ExchangeRate",
    "InvoiceDetails",
    "NormalisedCost",
    "PortfolioStats",
    "PriceMode",
    "PricingInput",
    "SubscriptionStatus",
    "TOOL_CATEGORIES",
    "ToolSuggestion",
    "TrackedTool",
]
