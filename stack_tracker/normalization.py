"""Cost normalization engine.

Every tracked tool stores two canonical numbers, ``monthly_cost`` and
``yearly_cost``.  Both are derived here, in one pass, from whatever the user
(or the AI suggestion service) typed into the tool form.  The adjustments are
applied in a fixed order:

1. per-unit prices are multiplied by the licence quantity,
2. foreign-currency amounts are converted with the injected exchange rate,
3. gross amounts are reduced to net using the tax rate,
4. yearly amounts are spread over the months the tool is actually used.

The resulting monthly figure is rounded half-up to cents and the yearly figure
is derived from the *rounded* monthly figure, so the stored pair always
satisfies ``yearly_cost == round(monthly_cost * months_per_year, 2)``.

Nothing in this module performs I/O or raises for odd numeric input: missing or
malformed values are coerced to safe defaults so a stored record can never end
up holding ``NaN``.
"""
from __future__ import annotations

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Iterable, Mapping, Optional

from .config import DEFAULT_EXCHANGE_RATE, DEFAULT_TAX_RATE
from .dates import parse_iso_date
from .models import (
    BillingCycle,
    Currency,
    NormalisedCost,
    PriceMode,
    PricingInput,
    SubscriptionStatus,
    TrackedTool,
)

MIN_MONTHS_PER_YEAR = 1
MAX_MONTHS_PER_YEAR = 12


def normalise_cost(
    pricing: PricingInput,
    tax_rate: float = DEFAULT_TAX_RATE,
    fallback_exchange_rate: float = DEFAULT_EXCHANGE_RATE,
) -> NormalisedCost:
    """Convert raw pricing input into the canonical monthly/yearly pair.

    Args:
        pricing: Raw form values.  Fields are coerced, never trusted.
        tax_rate: VAT rate used when ``pricing.tax_inclusive`` is set.
        fallback_exchange_rate: Rate used when the input is in the foreign
            currency but no rate was supplied at all.

    Returns:
        The rounded, non-negative :class:`NormalisedCost`.
    """

    amount = coerce_amount(pricing.raw_amount)
    quantity = coerce_quantity(pricing.quantity)
    months = clamp_months(pricing.months_per_year)
    price_mode = _coerce_enum(PriceMode, pricing.price_mode, PriceMode.TOTAL)
    currency = _coerce_enum(Currency, pricing.currency, Currency.BASE)
    billing_cycle = _coerce_enum(BillingCycle, pricing.billing_cycle, BillingCycle.MONTHLY)

    if price_mode is PriceMode.PER_UNIT:
        amount *= quantity

    if currency is Currency.FOREIGN:
        amount *= coerce_exchange_rate(pricing.exchange_rate, fallback_exchange_rate)

    if coerce_flag(pricing.tax_inclusive):
        amount = amount / (1 + _coerce_tax_rate(tax_rate))

    if billing_cycle is BillingCycle.YEARLY:
        monthly = amount / months
    else:
        monthly = amount

    monthly_cost = round_currency(monthly)
    yearly_cost = round_currency(monthly_cost * months)
    return NormalisedCost(monthly_cost=monthly_cost, yearly_cost=yearly_cost)


def resolve_usage(months_per_year: object, usage_months: Optional[Iterable[object]]) -> tuple[int, tuple[int, ...]]:
    """Reconcile a month count with an optional explicit set of usage months.

    Explicit month indices (0 = January) win over the count.  Invalid indices
    are dropped and duplicates collapsed; when no valid index remains the count
    is clamped to ``[1, 12]`` instead.
    """

    months: set[int] = set()
    for candidate in usage_months or ():
        number = coerce_number(candidate)
        if number is None or number != int(number):
            continue
        if 0 <= int(number) <= 11:
            months.add(int(number))

    if months:
        return len(months), tuple(sorted(months))
    return clamp_months(months_per_year), ()


def build_tool(
    form: Mapping[str, object],
    *,
    tool_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    tax_rate: float = DEFAULT_TAX_RATE,
    fallback_exchange_rate: float = DEFAULT_EXCHANGE_RATE,
) -> TrackedTool:
    """Create a canonical :class:`TrackedTool` from a raw form submission.

    This is the only place where ``monthly_cost`` and ``yearly_cost`` are
    assigned.  Both create and edit flows call it; edits pass the existing
    ``tool_id`` and ``created_at`` so identity is preserved.
    """

    months, usage = resolve_usage(form.get("months_per_year", 12), form.get("usage_months"))
    quantity = coerce_quantity(form.get("quantity", 1))
    billing_cycle = _coerce_enum(BillingCycle, form.get("billing_cycle"), BillingCycle.MONTHLY)

    pricing = PricingInput(
        raw_amount=form.get("raw_amount"),
        price_mode=_coerce_enum(PriceMode, form.get("price_mode"), PriceMode.TOTAL),
        quantity=quantity,
        currency=_coerce_enum(Currency, form.get("currency"), Currency.BASE),
        exchange_rate=form.get("exchange_rate"),
        tax_inclusive=coerce_flag(form.get("tax_inclusive", False)),
        billing_cycle=billing_cycle,
        months_per_year=months,
    )
    cost = normalise_cost(pricing, tax_rate=tax_rate, fallback_exchange_rate=fallback_exchange_rate)

    tool = TrackedTool(
        name=_clean_string(form.get("name")),
        renewal_date=_normalise_date_string(form.get("renewal_date")) or "",
        monthly_cost=cost.monthly_cost,
        yearly_cost=cost.yearly_cost,
        category=_clean_string(form.get("category")),
        description=_clean_string(form.get("description")),
        url=_clean_string(form.get("url")),
        owner=_clean_string(form.get("owner")),
        added_by=_clean_string(form.get("added_by")),
        status=_coerce_enum(SubscriptionStatus, form.get("status"), SubscriptionStatus.ACTIVE),
        quantity=quantity,
        billing_cycle=billing_cycle,
        months_per_year=months,
        usage_months=usage,
        cancellation_date=_normalise_date_string(form.get("cancellation_date")),
    )
    if tool_id is not None:
        tool.id = tool_id
    if created_at is not None:
        tool.created_at = created_at
    return tool


def tool_to_form(tool: TrackedTool) -> dict[str, object]:
    """Return the raw form values that reproduce ``tool`` through :func:`build_tool`.

    Stored costs are already net, in the base currency and quantity-aggregated,
    so the equivalent input is a ``total`` price in the base currency.  Yearly
    tools are re-entered with their yearly figure, matching how the edit form
    is pre-filled.
    """

    raw_amount = tool.yearly_cost if tool.billing_cycle is BillingCycle.YEARLY else tool.monthly_cost
    return {
        "name": tool.name,
        "category": tool.category,
        "description": tool.description,
        "url": tool.url,
        "owner": tool.owner,
        "added_by": tool.added_by,
        "status": tool.status,
        "renewal_date": tool.renewal_date,
        "cancellation_date": tool.cancellation_date,
        "raw_amount": raw_amount,
        "price_mode": PriceMode.TOTAL,
        "quantity": tool.quantity,
        "currency": Currency.BASE,
        "exchange_rate": None,
        "tax_inclusive": False,
        "billing_cycle": tool.billing_cycle,
        "months_per_year": tool.months_per_year,
        "usage_months": list(tool.usage_months),
    }


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def round_currency(value: float, places: int = 2) -> float:
    """Round half-up to ``places`` decimals (``2.675 -> 2.68``)."""

    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number):
        return 0.0

    exact = Decimal(repr(number))
    with localcontext() as context:
        # quantize() needs every integer digit plus the cents to fit.
        context.prec = max(context.prec, exact.adjusted() + places + 2)
        rounded = exact.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    result = float(rounded)
    # Avoid persisting a negative zero.
    return result + 0.0


def coerce_number(value: object) -> Optional[float]:
    """Return ``value`` as a finite float or ``None`` when it is not numeric.

    Strings may use a decimal comma or carry thousands separators made of
    apostrophes/spaces (``"1'299,00"``).
    """

    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return None
    else:
        stringified = str(value).strip()
        if not stringified:
            return None
        normalised = stringified.replace("'", "").replace(" ", "").replace(",", ".")
        try:
            number = float(Decimal(normalised))
        except (InvalidOperation, ValueError):
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def coerce_amount(value: object) -> float:
    number = coerce_number(value)
    if number is None or number < 0:
        return 0.0
    return number


def coerce_quantity(value: object) -> int:
    number = coerce_number(value)
    if number is None or number < 1:
        return 1
    return int(number)


def clamp_months(value: object) -> int:
    """Clamp a months-per-year value to ``[1, 12]``; missing values mean 12."""

    number = coerce_number(value)
    if number is None:
        return MAX_MONTHS_PER_YEAR
    return max(MIN_MONTHS_PER_YEAR, min(MAX_MONTHS_PER_YEAR, int(number)))


def coerce_exchange_rate(value: object, fallback: float = DEFAULT_EXCHANGE_RATE) -> float:
    """Return a usable exchange rate.

    An absent rate (``None`` or a blank string) means the rate source was not
    consulted and the documented fallback applies.  A rate that *was* supplied
    but is not a non-negative number is treated as zero.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        return fallback
    number = coerce_number(value)
    if number is None or number < 0:
        return 0.0
    return number


def coerce_flag(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on", "gross"}
    return bool(value)


def _coerce_tax_rate(value: object) -> float:
    number = coerce_number(value)
    if number is None or number < 0:
        return DEFAULT_TAX_RATE
    return number


def _coerce_enum(enum_cls, value, default):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _normalise_date_string(value: object) -> Optional[str]:
    """Return an ISO date string, keeping unparseable input verbatim."""

    parsed = parse_iso_date(value)
    if parsed is not None:
        return parsed.isoformat()
    cleaned = _clean_string(value)
    return cleaned or None
