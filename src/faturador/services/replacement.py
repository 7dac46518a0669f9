"""Substitution of an issued NFS-e by a corrected one.

Not every municipality supports it; when the gateway refuses, the operator
has to cancel and issue a new invoice instead.
"""

from __future__ import annotations

import logging
from typing import Any

from faturador.models.invoice import (
    Environment,
    InvoiceEvent,
    InvoiceStatus,
    check_justification,
    parse_status,
)
from faturador.services.emission import record_issue_result
from faturador.services.environment import credentials_for
from faturador.services.exceptions import PreconditionError
from faturador.services.gateway_client import Gateway
from faturador.services.transitions import apply_transition, get_transaction
from faturador.utils.service_codes import ServiceCode, find_service_code, load_service_codes
from faturador.utils.store import TRANSACTIONS, Store
from faturador.utils.validators import validate_monetary

logger = logging.getLogger(__name__)


def replace_invoice(
    store: Store,
    gateway: Gateway,
    transaction_id: str,
    reason: str,
    *,
    service_code: str | None = None,
    service_description: str | None = None,
    gross_amount: str | None = None,
    service_codes: dict[str, ServiceCode] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Substitute an issued NFS-e. Returns (original, replacement).

    The replacement is a new receivable in the original's environment. A new
    service code must exist in the reference table. If the gateway call
    fails nothing is written and the original stays issued.
    """
    motivo = check_justification(reason)
    original = get_transaction(store, transaction_id)
    status = parse_status(original.get("invoice_status"))
    if status is not InvoiceStatus.ISSUED:
        raise PreconditionError("Apenas notas emitidas podem ser substituidas")
    integration_id = original.get("invoice_integration_id")
    if not integration_id:
        raise PreconditionError("ID de integracao nao encontrado na nota original")

    env = Environment.parse(original.get("invoice_environment"))
    token = credentials_for(store, original["company_id"])

    code = original.get("service_code")
    if service_code:
        service = find_service_code(
            service_code, service_codes if service_codes is not None else load_service_codes()
        )
        if service is None:
            raise PreconditionError(f"Codigo de servico desconhecido: '{service_code}'")
        code = service.code
    description = (
        service_description
        or original.get("service_description")
        or original.get("description", "")
    )
    amount = validate_monetary(gross_amount) if gross_amount else original.get("gross_amount")

    result = gateway.substitute(
        integration_id,
        {
            "motivo": motivo,
            "servicoDescricao": description,
            "servicoCodigo": code,
            "servicoValorUnitario": amount,
        },
        env,
        token,
    )

    draft = store.insert(
        TRANSACTIONS,
        {
            "company_id": original["company_id"],
            "type": "RECEIVABLE",
            "description": f"[SUBSTITUIÇÃO] {description}",
            "gross_amount": amount,
            "due_date": original.get("due_date"),
            "payment_status": original.get("payment_status", "PENDING"),
            "customer_id": original.get("customer_id"),
            "category_id": original.get("category_id"),
            "service_code": code,
            "service_description": description,
            "iss_rate": original.get("iss_rate"),
            "invoice_status": InvoiceStatus.PENDING.value,
            "invoice_replaces": transaction_id,
        },
    )
    replacement = apply_transition(
        store,
        draft,
        InvoiceEvent.SUBMIT,
        {
            "invoice_environment": env.value,
            "invoice_integration_id": result.integration_id,
            "invoice_attempt_id": result.integration_id,
        },
        message=f"Substitui a NFS-e {original.get('invoice_number')}",
    )
    replacement = record_issue_result(store, replacement, result, env)

    original = apply_transition(
        store,
        original,
        InvoiceEvent.REPLACE,
        {"invoice_replaced_by": replacement["id"]},
        reason=motivo,
    )
    logger.info(
        "NFS-e %s replaced by transaction %s", original.get("invoice_number"), replacement["id"]
    )
    return original, replacement
