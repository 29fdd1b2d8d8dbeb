from datetime import date

import pytest
import requests

from stack_tracker.config import AppConfig
from stack_tracker.database import SQLiteRepository
from stack_tracker.models import BillingCycle, SubscriptionStatus, TrackedTool
from stack_tracker.rate_service import ExchangeRateService
from stack_tracker.services import ContractService, ToolService
from stack_tracker.suggestion_service import SuggestionService

TODAY = date(2026, 10, 18)


class FakeResponse:
    """Minimal stand-in for :class:`requests.Response`."""

    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture(autouse=True)
def no_network(monkeypatch):
    """Fail every outgoing HTTP call unless a test installs its own fake."""

    def _refuse(*args, **kwargs):
        raise requests.ConnectionError("network disabled in tests")

    monkeypatch.setattr(requests, "get", _refuse)
    monkeypatch.setattr(requests, "post", _refuse)


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "test.db",
        base_currency="EUR",
        foreign_currency="USD",
        tax_rate=0.19,
        fallback_exchange_rate=0.92,
        renewal_window_days=7,
        frankfurter_endpoint="https://fx.test/latest",
        gemini_api_key=None,
        gemini_model="gemini-test",
        gemini_endpoint="https://ai.test/v1beta",
        log_level="INFO",
    )


@pytest.fixture
def repository(config):
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture
def service(config, repository):
    return ToolService(config, repository, ExchangeRateService(config), SuggestionService(config))


@pytest.fixture
def contract_service(repository):
    return ContractService(repository)


def make_tool(**overrides) -> TrackedTool:
    values = {
        "name": "Slack",
        "renewal_date": "2027-03-01",
        "monthly_cost": 10.0,
        "yearly_cost": 120.0,
        "category": "Administration",
        "owner": "Esther Schwan",
        "status": SubscriptionStatus.ACTIVE,
        "billing_cycle": BillingCycle.MONTHLY,
        "months_per_year": 12,
    }
    values.update(overrides)
    return TrackedTool(**values)
