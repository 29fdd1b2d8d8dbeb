"""Application configuration utilities for the stack_tracker backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  The pure cost
engines never import it; callers pass the relevant values (tax rate, fallback
exchange rate, renewal window) in explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_TAX_RATE = 0.19
DEFAULT_EXCHANGE_RATE = 0.92
DEFAULT_RENEWAL_WINDOW_DAYS = 7


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        database_file: Absolute path to the SQLite database holding tracked
            tools, cost history snapshots, FX rates and UI settings.
        base_currency: Currency every stored cost is expressed in.
        foreign_currency: The single foreign currency accepted as price input.
        tax_rate: VAT rate used to convert gross prices to net.
        fallback_exchange_rate: Foreign-to-base rate used whenever the rate
            provider cannot be reached.
        renewal_window_days: Size of the "upcoming renewal" window.
        frankfurter_endpoint: Endpoint of the Frankfurter FX rate API.
        gemini_api_key: Optional API key for the Gemini suggestion service.
        gemini_model: Model name used for suggestions and stack audits.
        gemini_endpoint: Base URL of the Gemini REST API.
        log_level: Name of the root log level applied by the API lifespan.
    """

    project_root: Path
    database_file: Path
    base_currency: str
    foreign_currency: str
    tax_rate: float
    fallback_exchange_rate: float
    renewal_window_days: int
    frankfurter_endpoint: str
    gemini_api_key: Optional[str]
    gemini_model: str
    gemini_endpoint: str
    log_level: str


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values.  Numeric variables that
    cannot be parsed fall back to their defaults instead of failing start-up.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "STACK_TRACKER_DB_FILE",
            project_root / "stack_tracker.db",
        )
    )

    base_currency = getenv_with_default("STACK_TRACKER_BASE_CURRENCY", "EUR").upper()
    foreign_currency = getenv_with_default("STACK_TRACKER_FOREIGN_CURRENCY", "USD").upper()
    tax_rate = _float_setting("STACK_TRACKER_TAX_RATE", DEFAULT_TAX_RATE)
    fallback_exchange_rate = _float_setting("STACK_TRACKER_FALLBACK_RATE", DEFAULT_EXCHANGE_RATE)
    renewal_window_days = int(_float_setting("STACK_TRACKER_RENEWAL_WINDOW_DAYS", DEFAULT_RENEWAL_WINDOW_DAYS))

    frankfurter_endpoint = getenv_with_default(
        "FRANKFURTER_ENDPOINT",
        "https://api.frankfurter.app/latest",
    )
    gemini_api_key = getenv_with_default("GEMINI_API_KEY")
    gemini_model = getenv_with_default("GEMINI_MODEL", "gemini-2.0-flash")
    gemini_endpoint = getenv_with_default(
        "GEMINI_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta",
    )
    log_level = getenv_with_default("STACK_TRACKER_LOG_LEVEL", "INFO").upper()

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        base_currency=base_currency,
        foreign_currency=foreign_currency,
        tax_rate=tax_rate,
        fallback_exchange_rate=fallback_exchange_rate,
        renewal_window_days=renewal_window_days,
        frankfurter_endpoint=frankfurter_endpoint,
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        gemini_endpoint=gemini_endpoint,
        log_level=log_level,
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform and easy to serialise.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)


def _float_setting(name: str, default: float) -> float:
    raw = getenv_with_default(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
