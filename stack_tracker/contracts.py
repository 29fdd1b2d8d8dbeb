"""Contract records: non-SaaS agreements such as venues and service providers.

Contracts carry their amount as entered (net, in the stated currency) and are
kept out of the tool cost roll-ups.  The helpers here mirror the tool form
handling in :mod:`stack_tracker.normalization` without any price arithmetic.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional

from .models import DEFAULT_CONTRACT_CATEGORY, Contract, ContractBillingCycle
from .normalization import coerce_amount, round_currency

DEFAULT_CONTRACT_STATUS = "active"


def build_contract(
    form: Mapping[str, object],
    *,
    contract_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Contract:
    """Create a :class:`Contract` from raw form values.

    Missing or malformed values fall back to defaults: a blank category
    becomes ``Other``, an unknown billing cycle becomes monthly and the amount
    is coerced to a non-negative figure rounded to cents.
    """

    try:
        billing_cycle = ContractBillingCycle(form.get("billing_cycle") or ContractBillingCycle.MONTHLY)
    except ValueError:
        billing_cycle = ContractBillingCycle.MONTHLY

    contract = Contract(
        provider=_text(form.get("provider")),
        amount=round_currency(coerce_amount(form.get("amount"))),
        description=_text(form.get("description")),
        category=_text(form.get("category")) or DEFAULT_CONTRACT_CATEGORY,
        currency=(_text(form.get("currency")) or "EUR").upper(),
        billing_cycle=billing_cycle,
        status=_text(form.get("status")).lower() or DEFAULT_CONTRACT_STATUS,
        assigned_event=_text(form.get("assigned_event")),
    )
    if contract_id is not None:
        contract.id = contract_id
    if created_at is not None:
        contract.created_at = created_at
    return contract


def contract_to_form(contract: Contract) -> dict[str, object]:
    return {
        "provider": contract.provider,
        "amount": contract.amount,
        "description": contract.description,
        "category": contract.category,
        "currency": contract.currency,
        "billing_cycle": contract.billing_cycle,
        "status": contract.status,
        "assigned_event": contract.assigned_event,
    }


def filter_by_event(contracts: Iterable[Contract], event: Optional[str]) -> list[Contract]:
    """Keep contracts assigned to ``event``; a blank event keeps everything."""

    if not event:
        return list(contracts)
    return [contract for contract in contracts if contract.assigned_event == event]


def assigned_events(contracts: Iterable[Contract]) -> list[str]:
    return sorted({contract.assigned_event for contract in contracts if contract.assigned_event})


def contracts_total(contracts: Iterable[Contract]) -> float:
    return round_currency(sum(contract.amount for contract in contracts))


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()
