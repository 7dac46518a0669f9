from __future__ import annotations

from decimal import Decimal

import pytest

from faturador.services.gateway_client import (
    CancelState,
    CancelStatusResult,
    GatewayState,
    IssueResult,
    StatusResult,
)
from faturador.utils.service_codes import ServiceCode
from faturador.utils.store import CATEGORIES, CUSTOMERS, TRANSACTIONS, Store

TENANT = "acme"


class StubGateway:
    """In-memory gateway: numbers invoices SBX-1, SBX-2, ... and records every call.

    Set ``issue_errors[n]`` to make the n-th issue call (1-based) raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.issue_errors: dict[int, Exception] = {}
        self.issue_result: IssueResult | None = None
        self.status_result = StatusResult(state=GatewayState.PENDING)
        self.cancel_error: Exception | None = None
        self.cancel_status_result = CancelStatusResult(state=CancelState.NOT_REQUESTED)
        self.connection_error: Exception | None = None
        self.download_url = "https://gw.example/nfse/abc.pdf?sig=1"
        self.substitute_result: IssueResult | None = None
        self.substitute_error: Exception | None = None
        self._issued = 0

    def _calls_of(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def issue(self, payload, environment, token):
        self.calls.append(("issue", payload, environment, token))
        n = len(self._calls_of("issue"))
        if n in self.issue_errors:
            raise self.issue_errors[n]
        if self.issue_result is not None:
            return self.issue_result
        self._issued += 1
        return IssueResult(
            integration_id=payload["idIntegracao"],
            invoice_number=f"SBX-{self._issued}",
            invoice_key="KEY123",
        )

    def status(self, integration_id, environment, token):
        self.calls.append(("status", integration_id, environment, token))
        return self.status_result

    def cancel(self, integration_id, reason, environment, token):
        self.calls.append(("cancel", integration_id, reason, environment, token))
        if self.cancel_error is not None:
            raise self.cancel_error

    def cancel_status(self, integration_id, environment, token):
        self.calls.append(("cancel_status", integration_id, environment, token))
        return self.cancel_status_result

    def download(self, integration_id, fmt, environment, token):
        self.calls.append(("download", integration_id, fmt, environment, token))
        return self.download_url

    def substitute(self, integration_id, payload, environment, token):
        self.calls.append(("substitute", integration_id, payload, environment, token))
        if self.substitute_error is not None:
            raise self.substitute_error
        if self.substitute_result is not None:
            return self.substitute_result
        return IssueResult(integration_id="sub-1", invoice_number="SBX-99", invoice_key="SUBKEY")

    def check_connection(self, environment, token):
        self.calls.append(("check_connection", environment, token))
        if self.connection_error is not None:
            raise self.connection_error


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from real config dirs, keyrings and tokens."""
    monkeypatch.setenv("FATURADOR_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("FATURADOR_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("FATURADOR_API_TOKEN", "test-token")
    monkeypatch.delenv(f"FATURADOR_API_TOKEN_{TENANT.upper()}", raising=False)
    monkeypatch.setattr("faturador.config._get_keyring_token", lambda tenant_id: None)


@pytest.fixture
def tenant_id() -> str:
    return TENANT


@pytest.fixture
def store(tmp_path) -> Store:
    return Store(tmp_path / "data")


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def service_codes() -> dict[str, ServiceCode]:
    return {
        "1.01": ServiceCode(
            code="1.01",
            cnae="62.01-5-01",
            description="Análise e desenvolvimento de sistemas",
            category="Informática",
            aliquota=Decimal("5"),
        ),
        "17.01": ServiceCode(
            code="17.01",
            cnae="70.20-4-00",
            description="Assessoria ou consultoria",
            category="Consultoria",
            aliquota=Decimal("2"),
        ),
    }


@pytest.fixture
def category(store, tenant_id) -> dict:
    return store.insert(CATEGORIES, {"company_id": tenant_id, "name": "Receitas de serviços"})


@pytest.fixture
def customer(store, tenant_id) -> dict:
    return store.insert(
        CUSTOMERS,
        {
            "company_id": tenant_id,
            "tax_id": "12345678000190",
            "person_type": "PJ",
            "name": "Empresa Exemplo Ltda",
            "email": "contato@empresa.com",
            "address": {
                "street": "Av. Paulista",
                "number": "1000",
                "neighborhood": "Bela Vista",
                "city_code": "3550308",
                "zip": "01310-100",
                "state": "SP",
            },
        },
    )


@pytest.fixture
def make_tx(store, tenant_id, customer):
    """Factory for receivable transactions; keyword args override fields."""

    def _make(**fields) -> dict:
        record = {
            "company_id": tenant_id,
            "type": "RECEIVABLE",
            "description": "Desenvolvimento de software",
            "gross_amount": "1000.00",
            "due_date": "2025-12-31",
            "customer_id": customer["id"],
            "invoice_status": "pending",
        }
        record.update(fields)
        return store.insert(TRANSACTIONS, record)

    return _make


@pytest.fixture
def issued_tx(store, make_tx):
    """A transaction already issued under SANDBOX."""
    return make_tx(
        invoice_status="issued",
        invoice_number="SBX-1",
        invoice_environment="SANDBOX",
        invoice_integration_id="int-1",
        invoice_attempt_id="int-1",
    )
