from __future__ import annotations

import itertools

import pytest

from faturador.models.batch import BatchReport, BatchRow, RowStatus
from faturador.models.customer import (
    Address,
    Customer,
    PersonType,
    infer_person_type,
    normalize_tax_id,
)
from faturador.models.fiscal_config import FiscalConfig
from faturador.models.invoice import (
    Environment,
    InvoiceEvent,
    InvoiceStatus,
    allowed_events,
    check_justification,
    parse_status,
    transition,
)
from faturador.services.exceptions import InvalidTransitionError, PreconditionError

VALID_REASON = "Erro no valor do servico"


def _guard_args(event: InvoiceEvent) -> dict:
    if event is InvoiceEvent.CONFIRM:
        return {"invoice_number": "123"}
    if event in (InvoiceEvent.REJECT, InvoiceEvent.CANCEL, InvoiceEvent.REPLACE):
        return {"reason": VALID_REASON}
    return {}


class TestEnvironment:
    def test_parse_default_sandbox(self):
        assert Environment.parse(None) is Environment.SANDBOX
        assert Environment.parse("") is Environment.SANDBOX

    def test_parse_case_insensitive(self):
        assert Environment.parse(" production ") is Environment.PRODUCTION

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="Ambiente invalido"):
            Environment.parse("homologacao")


class TestTransition:
    def test_happy_path(self):
        state = InvoiceStatus.NONE
        state = transition(state, InvoiceEvent.QUEUE)
        assert state is InvoiceStatus.PENDING
        state = transition(state, InvoiceEvent.SUBMIT)
        assert state is InvoiceStatus.PROCESSING
        state = transition(state, InvoiceEvent.CONFIRM, invoice_number="SBX-1")
        assert state is InvoiceStatus.ISSUED
        state = transition(state, InvoiceEvent.CANCEL, reason=VALID_REASON)
        assert state is InvoiceStatus.CANCELLED

    def test_rejected_can_start_new_cycle(self):
        state = transition(InvoiceStatus.PROCESSING, InvoiceEvent.REJECT, reason="CNPJ invalido")
        assert state is InvoiceStatus.REJECTED
        assert transition(state, InvoiceEvent.SUBMIT) is InvoiceStatus.PROCESSING

    def test_confirm_requires_number(self):
        with pytest.raises(InvalidTransitionError, match="numero"):
            transition(InvoiceStatus.PROCESSING, InvoiceEvent.CONFIRM)
        with pytest.raises(InvalidTransitionError):
            transition(InvoiceStatus.PROCESSING, InvoiceEvent.CONFIRM, invoice_number="  ")

    def test_reject_requires_reason(self):
        with pytest.raises(InvalidTransitionError, match="motivo"):
            transition(InvoiceStatus.PROCESSING, InvoiceEvent.REJECT, reason="")

    def test_cannot_skip_processing(self):
        for start in (InvoiceStatus.NONE, InvoiceStatus.PENDING, InvoiceStatus.REJECTED):
            with pytest.raises(InvalidTransitionError):
                transition(start, InvoiceEvent.CONFIRM, invoice_number="1")

    def test_cancel_only_from_issued(self):
        for start in InvoiceStatus:
            if start is InvoiceStatus.ISSUED:
                continue
            with pytest.raises(InvalidTransitionError):
                transition(start, InvoiceEvent.CANCEL, reason=VALID_REASON)

    def test_terminal_states_have_no_events(self):
        assert allowed_events(InvoiceStatus.CANCELLED) == set()
        assert allowed_events(InvoiceStatus.REPLACED) == set()

    def test_invalid_transition_names_allowed_events(self):
        with pytest.raises(InvalidTransitionError, match=r"permitidos: cancel, replace"):
            transition(InvoiceStatus.ISSUED, InvoiceEvent.SUBMIT)
        with pytest.raises(InvalidTransitionError, match="permitidos: nenhum"):
            transition(InvoiceStatus.CANCELLED, InvoiceEvent.QUEUE)

    def test_in_flight_not_issuable(self):
        assert InvoiceStatus.PROCESSING.in_flight
        assert not InvoiceStatus.PROCESSING.issuable
        assert not InvoiceStatus.ISSUED.issuable
        assert InvoiceStatus.REJECTED.issuable

    def test_all_sequences_respect_invariants(self):
        """Walk every event sequence up to length 5 from 'none'."""
        events = list(InvoiceEvent)
        for length in range(1, 6):
            for seq in itertools.product(events, repeat=length):
                state = InvoiceStatus.NONE
                number = None
                for event in seq:
                    previous = state
                    try:
                        state = transition(state, event, **_guard_args(event))
                    except InvalidTransitionError:
                        break
                    if event is InvoiceEvent.CONFIRM:
                        number = _guard_args(event)["invoice_number"]
                    if state is InvoiceStatus.ISSUED:
                        assert previous is InvoiceStatus.PROCESSING
                        assert number
                    if state in (InvoiceStatus.CANCELLED, InvoiceStatus.REPLACED):
                        assert previous is InvoiceStatus.ISSUED


class TestJustification:
    def test_fourteen_chars_rejected(self):
        with pytest.raises(PreconditionError, match="15"):
            check_justification("a" * 14)

    def test_fifteen_chars_accepted(self):
        assert check_justification("a" * 15) == "a" * 15

    def test_whitespace_does_not_count(self):
        with pytest.raises(PreconditionError):
            check_justification("   " + "a" * 14 + "   ")

    def test_cancel_with_short_reason(self):
        with pytest.raises(PreconditionError):
            transition(InvoiceStatus.ISSUED, InvoiceEvent.CANCEL, reason="curto")


class TestParseStatus:
    def test_empty_is_none(self):
        assert parse_status(None) is InvoiceStatus.NONE
        assert parse_status("") is InvoiceStatus.NONE

    def test_known(self):
        assert parse_status("issued") is InvoiceStatus.ISSUED

    def test_unknown(self):
        with pytest.raises(ValueError, match="desconhecido"):
            parse_status("emitida")


class TestCustomer:
    def test_normalize_tax_id(self):
        assert normalize_tax_id("12.345.678/0001-90") == "12345678000190"
        assert normalize_tax_id(None) == ""

    def test_infer_person_type(self):
        assert infer_person_type("123.456.789-09") is PersonType.INDIVIDUAL
        assert infer_person_type("12345678000190") is PersonType.ORGANIZATION

    def test_from_dict_infers_type(self):
        c = Customer.from_dict(
            {"id": "c1", "company_id": "acme", "tax_id": "123.456.789-09", "name": "Maria da Silva"}
        )
        assert c.tax_id == "12345678909"
        assert c.person_type is PersonType.INDIVIDUAL
        assert c.name == "Maria da Silva"
        assert c.address.number == "S/N"

    def test_address_round_trip(self):
        addr = Address(street="Rua A", number="10", city_code="3534401", state="SP")
        assert Address.from_dict(addr.to_dict()) == addr


class TestFiscalConfig:
    def test_defaults_to_placeholder(self):
        cfg = FiscalConfig.from_dict({"company_id": "acme"})
        assert cfg.environment is Environment.SANDBOX
        assert cfg.has_placeholder_credentials

    def test_real_token(self):
        cfg = FiscalConfig.from_dict(
            {"company_id": "acme", "environment": "PRODUCTION", "api_token": "abc"}
        )
        assert cfg.environment is Environment.PRODUCTION
        assert not cfg.has_placeholder_credentials


class TestBatchModels:
    def _row(self, index: int = 1) -> BatchRow:
        return BatchRow(
            index=index,
            descricao="Consultoria",
            valor="100",
            tomador_cpf_cnpj="12345678909",
            tomador_razao_social="Fulano",
            codigo_servico="1.01",
        )

    def test_mark_success_clears_error(self):
        row = self._row()
        row.mark_error("falhou")
        row.mark_success("10")
        assert row.status is RowStatus.SUCCESS
        assert row.error_message is None
        assert row.invoice_number == "10"

    def test_report_counts(self):
        ok, bad, waiting = self._row(1), self._row(2), self._row(3)
        ok.mark_success("1")
        bad.mark_error("Valor inválido")
        report = BatchReport(rows=[ok, bad, waiting])
        assert report.success == 1
        assert report.error == 1
        d = report.as_dict()
        assert d["success"] == 1
        assert d["rows"][1]["error_message"] == "Valor inválido"
