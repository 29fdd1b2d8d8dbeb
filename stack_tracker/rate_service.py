"""Exchange-rate helpers for the stack_tracker backend."""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

import requests

from .config import AppConfig
from .models import ExchangeRate

logger = logging.getLogger(__name__)


class ExchangeRateService:
    """Fetch foreign-to-base FX rates from the Frankfurter API."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def fetch_latest_rate(self, base: str, quote: str) -> Optional[ExchangeRate]:
        """Return the latest published rate or ``None`` when it is unavailable.

        Network failures and unexpected payloads both degrade to ``None`` so
        callers can decide whether a fallback is acceptable.
        """

        base = base.upper()
        quote = quote.upper()
        try:
            response = requests.get(
                self._config.frankfurter_endpoint,
                params={"from": base, "to": quote},
                timeout=30,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("FX rate fetch %s->%s failed: %s", base, quote, exc)
            return None

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            return None
        rate_value = rates.get(quote)
        if rate_value is None:
            return None
        try:
            rate = float(rate_value)
        except (TypeError, ValueError):
            return None
        if rate <= 0:
            return None

        valuation_date = _parse_valuation_date(payload.get("date"))
        return ExchangeRate(
            base=base,
            quote=quote,
            valuation_date=valuation_date,
            rate=rate,
            source="frankfurter",
        )

    def get_rate(self, base: Optional[str] = None, quote: Optional[str] = None) -> ExchangeRate:
        """Return the latest rate, falling back to the configured static rate.

        Without arguments the configured foreign currency is converted into the
        base currency, which is the only conversion the pricing form needs.
        """

        base = (base or self._config.foreign_currency).upper()
        quote = (quote or self._config.base_currency).upper()
        if base == quote:
            return ExchangeRate(base=base, quote=quote, valuation_date=date.today(), rate=1.0, source="identity")

        rate = self.fetch_latest_rate(base, quote)
        if rate is not None:
            return rate
        return self.fallback_rate(base, quote)

    def fallback_rate(self, base: str, quote: str) -> ExchangeRate:
        base = base.upper()
        quote = quote.upper()
        logger.info("Using fallback FX rate %s for %s->%s", self._config.fallback_exchange_rate, base, quote)
        return ExchangeRate(
            base=base,
            quote=quote,
            valuation_date=date.today(),
            rate=self._config.fallback_exchange_rate,
            source="fallback",
        )


def _parse_valuation_date(value: object) -> date:
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    return date.today()
