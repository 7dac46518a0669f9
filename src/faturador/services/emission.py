from __future__ import annotations

import logging
import uuid
from typing import Any

from faturador.models.customer import Customer
from faturador.models.invoice import Environment, InvoiceEvent, InvoiceStatus, parse_status
from faturador.services import tax
from faturador.services.environment import resolve_issuance_context
from faturador.services.exceptions import (
    GatewayError,
    GatewayRejectError,
    InvalidTransitionError,
    PreconditionError,
)
from faturador.services.gateway_client import Gateway, IssueResult
from faturador.services.transitions import apply_transition, get_transaction
from faturador.utils.service_codes import ServiceCode, find_service_code, load_service_codes
from faturador.utils.store import CUSTOMERS, TRANSACTIONS, Store, now_iso
from faturador.utils.validators import validate_monetary, validate_percent

logger = logging.getLogger(__name__)


def build_payload(
    tx: dict[str, Any],
    customer: Customer | None,
    service: ServiceCode,
    description: str,
    breakdown: tax.TaxBreakdown,
    attempt_id: str,
    emitter_tax_id: str | None = None,
) -> dict[str, Any]:
    """Gateway request body for one NFS-e."""
    payload: dict[str, Any] = {
        "idIntegracao": attempt_id,
        "servico": [
            {
                "codigo": service.code,
                "cnae": service.cnae,
                "discriminacao": description,
                "iss": {
                    "aliquota": f"{breakdown.iss_rate:.2f}",
                    "valor": f"{breakdown.iss_amount:.2f}",
                    "retido": False,
                },
                "valor": {
                    "servico": f"{breakdown.gross_amount:.2f}",
                    "liquido": f"{breakdown.net_amount:.2f}",
                },
            }
        ],
    }
    if emitter_tax_id:
        payload["prestador"] = {"cpfCnpj": emitter_tax_id}
    if customer is not None:
        payload["tomador"] = {
            "cpfCnpj": customer.tax_id,
            "razaoSocial": customer.name,
            "email": customer.email,
            "endereco": {
                "logradouro": customer.address.street,
                "numero": customer.address.number,
                "bairro": customer.address.neighborhood,
                "codigoCidade": customer.address.city_code,
                "cep": customer.address.zip,
                "estado": customer.address.state,
            },
        }
    if tx.get("due_date"):
        payload["vencimento"] = tx["due_date"]
    return payload


def _resolve_rate(tx: dict[str, Any], service: ServiceCode) -> str:
    explicit = tx.get("iss_rate")
    if explicit not in (None, ""):
        return validate_percent(str(explicit))
    return validate_percent(str(service.aliquota))


def _load_customer(store: Store, tx: dict[str, Any]) -> Customer | None:
    customer_id = tx.get("customer_id")
    if not customer_id:
        return None
    record = store.get(CUSTOMERS, customer_id)
    return Customer.from_dict(record) if record else None


def _withheld_rates(tx: dict[str, Any]) -> dict[str, str]:
    """Validated PIS/COFINS/CSLL/IRPJ/INSS rates present on the transaction."""
    rates: dict[str, str] = {}
    for name in tax.WITHHELD_TAXES:
        value = tx.get(f"{name}_rate")
        if value in (None, ""):
            continue
        try:
            rates[name] = validate_percent(str(value))
        except ValueError as exc:
            raise ValueError(f"Aliquota de {name.upper()} invalida: {exc}") from None
    return rates


def issue_invoice(
    store: Store,
    gateway: Gateway,
    transaction_id: str,
    service_code: str,
    service_description: str = "",
    *,
    service_codes: dict[str, ServiceCode] | None = None,
    emitter_tax_id: str | None = None,
) -> dict[str, Any]:
    """Issue the NFS-e for one transaction and return the updated record.

    The transaction is moved to ``processing`` before the gateway is called,
    so a crash mid-call leaves a visible in-flight invoice. The environment is
    read once here and stamped on the invoice; later tenant switches do not
    affect it.

    Raises:
        PreconditionError: already in flight or issued, unknown service code,
            missing credentials. Nothing is written.
        ValueError: malformed amount or rate on the transaction.
        GatewayRejectError: the gateway refused the document; the invoice is
            persisted as ``rejected``.
        GatewayError: no verdict (network/timeout/5xx); the invoice stays
            ``processing`` for reconciliation.
    """
    tx = get_transaction(store, transaction_id)
    current = parse_status(tx.get("invoice_status"))
    if not current.issuable:
        raise InvalidTransitionError(
            f"Transacao ja possui nota em andamento ou emitida (status '{current.value}')"
        )

    service = find_service_code(
        service_code, service_codes if service_codes is not None else load_service_codes()
    )
    if service is None:
        raise PreconditionError(f"Codigo de servico desconhecido: '{service_code}'")

    gross = validate_monetary(str(tx.get("gross_amount", "")))
    rate = _resolve_rate(tx, service)
    env, token = resolve_issuance_context(store, tx["company_id"])
    description = (
        (service_description or "").strip()
        or tx.get("description")
        or service.description
    )

    breakdown = tax.breakdown(gross, rate, _withheld_rates(tx))
    attempt_id = str(uuid.uuid4())
    customer = _load_customer(store, tx)

    tx = apply_transition(
        store,
        tx,
        InvoiceEvent.SUBMIT,
        {
            "service_code": service.code,
            "service_description": description,
            "iss_rate": rate,
            "net_amount": f"{breakdown.net_amount:.2f}",
            "tax_breakdown": breakdown.to_dict(),
            "invoice_environment": env.value,
            "invoice_attempt_id": attempt_id,
            "invoice_integration_id": attempt_id,
            "invoice_number": None,
            "invoice_key": None,
            "invoice_error": None,
        },
        message=f"Enviada ao gateway ({env.value})",
    )
    logger.info("Issuing NFS-e for %s (%s, attempt %s)", transaction_id, env.value, attempt_id)

    payload = build_payload(
        tx, customer, service, description, breakdown, attempt_id, emitter_tax_id
    )
    try:
        result = gateway.issue(payload, env, token)
    except GatewayRejectError as exc:
        logger.info("NFS-e for %s rejected: %s", transaction_id, exc)
        apply_transition(
            store,
            tx,
            InvoiceEvent.REJECT,
            {"invoice_error": str(exc)},
            reason=str(exc),
        )
        raise
    except GatewayError:
        logger.warning(
            "Gateway failure issuing %s; invoice left in processing", transaction_id, exc_info=True
        )
        store.update(TRANSACTIONS, transaction_id, {"invoice_error": "Sem resposta do gateway"})
        raise

    return record_issue_result(store, tx, result, env)


def record_issue_result(
    store: Store, tx: dict[str, Any], result: IssueResult, env: Environment
) -> dict[str, Any]:
    """Persist a successful gateway answer.

    Without an invoice number the gateway has only accepted the request: the
    integration id is stored and the invoice stays ``processing``.
    """
    links = {
        "invoice_integration_id": result.integration_id,
        "invoice_key": result.invoice_key,
        "invoice_pdf_url": result.pdf_url,
        "invoice_xml_url": result.xml_url,
    }
    if not result.invoice_number:
        logger.info("NFS-e for %s accepted, awaiting authorisation", tx["id"])
        updated = store.compare_and_set(
            TRANSACTIONS,
            tx["id"],
            "invoice_status",
            InvoiceStatus.PROCESSING.value,
            {k: v for k, v in links.items() if v is not None},
        )
        return updated if updated is not None else get_transaction(store, tx["id"])

    updated = apply_transition(
        store,
        tx,
        InvoiceEvent.CONFIRM,
        {
            **links,
            "invoice_number": result.invoice_number,
            # stamped from the value read at submission, never re-read
            "invoice_environment": env.value,
            "invoice_issued_at": now_iso(),
            "invoice_error": None,
        },
        invoice_number=result.invoice_number,
        message=f"NFS-e {result.invoice_number} emitida",
    )
    logger.info("NFS-e %s issued for %s (%s)", result.invoice_number, tx["id"], env.value)
    return updated
